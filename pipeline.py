"""
pipeline.py
------------
Main orchestration layer. Two entry points over the same RiskAggregator:

    1. assess_transaction(request)  →  one transfer, JSON-ready dict
    2. RiskReplayPipeline.run(df)   →  every transaction in a CSV export,
                                       each scored against the same user's
                                       earlier transactions

Output serialization (reason text, camelCase keys, flat replay rows)
happens here and nowhere else.

Usage:
    from pipeline import assess_transaction, RiskReplayPipeline

    result = assess_transaction({"userId": "u1", "amount": 2500, ...})
    assessments_df = RiskReplayPipeline().run(transactions_df)
"""

import logging
import pandas as pd
from typing import Any, Callable, Dict, List, Mapping, Optional

from core.errors import InvalidInputError
from core.models import RiskAssessment, Transaction
from core.risk_aggregator import RiskAggregator
from core.reason_text import render_advice, render_alert, render_reason
from config.config_loader import get_replay_config

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["user_id", "timestamp", "amount", "payee_id", "payee_name"]

OUTPUT_COLUMNS = [
    "user_id", "timestamp", "amount", "payee_id", "payee_name",
    "history_size", "risk_score", "decision", "risk_level",
    "amount_score", "time_score", "recipient_score", "confidence",
    "list_override", "delay_seconds", "reason_codes", "reasons",
]


# =============================================================================
# SINGLE REQUEST
# =============================================================================

def assess_transaction(
    request: Mapping[str, Any],
    blacklist_lookup: Optional[Callable[[str], bool]] = None,
    whitelist_lookup: Optional[Callable[[str], bool]] = None,
    aggregator: Optional[RiskAggregator] = None,
) -> Dict[str, Any]:
    """
    Scores one transfer request.

    Args:
        request: {userId, amount, payeeId, payeeName, timestamp, history[]}.
            snake_case keys are accepted as well.
        blacklist_lookup / whitelist_lookup: payee_id -> bool callables.
        aggregator: Reuse a configured aggregator. Built from config when None.

    Returns:
        {riskScore, decision, reasons, subScores, confidence, riskLevel,
         listOverride, delaySeconds, delayUntil, alerts, advice}

    Raises:
        InvalidInputError: the request cannot be scored.
    """
    aggregator = aggregator or RiskAggregator()
    user_id = request.get("userId", request.get("user_id"))

    assessment = aggregator.assess(
        user_id,
        request,
        request.get("history") or [],
        blacklist_lookup=blacklist_lookup,
        whitelist_lookup=whitelist_lookup,
    )
    return serialize_assessment(assessment)


def serialize_assessment(assessment: RiskAssessment) -> Dict[str, Any]:
    """RiskAssessment → JSON-ready dict. The only place display text is produced."""
    return {
        "riskScore": assessment.risk_score,
        "decision": assessment.decision.value,
        "reasons": [render_reason(r) for r in assessment.reasons],
        "reasonCodes": [r.kind.value for r in assessment.reasons],
        "subScores": dict(assessment.sub_scores),
        "confidence": assessment.confidence,
        "riskLevel": assessment.risk_level.value,
        "listOverride": assessment.list_override,
        "delaySeconds": assessment.delay_seconds,
        "delayUntil": assessment.delay_until.isoformat() if assessment.delay_until else None,
        "alerts": [
            {
                "type": a.alert_type,
                "kind": a.kind.value,
                "severity": a.severity,
                "message": render_alert(a),
            }
            for a in assessment.alerts
        ],
        "advice": [render_advice(a) for a in assessment.advice],
    }


# =============================================================================
# BATCH REPLAY
# =============================================================================

class RiskReplayPipeline:
    """
    Replays a transaction export through the risk engine.

    Each transaction is assessed as if it were being submitted, against
    that user's earlier transactions inside the lookback window.
    """

    def __init__(
        self,
        lookback_days: int | None = None,
        blacklist_lookup: Optional[Callable[[str], bool]] = None,
        whitelist_lookup: Optional[Callable[[str], bool]] = None,
        aggregator: Optional[RiskAggregator] = None,
    ):
        """
        Args:
            lookback_days: Override default lookback window from config.
        """
        if lookback_days is None:
            lookback_days = get_replay_config()["default_lookback_days"]
        self.lookback_days = lookback_days
        self.blacklist_lookup = blacklist_lookup
        self.whitelist_lookup = whitelist_lookup
        self.aggregator = aggregator or RiskAggregator()

        logger.info(
            f"Replay pipeline initialized. Lookback: {self.lookback_days} days. "
            f"Thresholds: {self.aggregator.thresholds.to_dict()}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, transactions: pd.DataFrame) -> pd.DataFrame:
        """
        Run the replay.

        Args:
            transactions: DataFrame with columns user_id, timestamp, amount,
                payee_id, payee_name.

        Returns:
            DataFrame with one assessment row per input transaction,
            sorted by user and time.
        """
        logger.info(f"Replay starting. Input: {len(transactions):,} transactions.")
        df = self._prepare(transactions)

        assessments: List[RiskAssessment] = []
        history_sizes: List[int] = []
        payee_names: List[str] = []

        for user_id, group in df.groupby("user_id", sort=True):
            user_rows = self._to_transactions(group)
            start = 0
            for i, tx in enumerate(user_rows):
                cutoff = tx.timestamp - pd.Timedelta(days=self.lookback_days)
                while user_rows[start].timestamp < cutoff:
                    start += 1
                history = user_rows[start:i]

                assessments.append(self.aggregator.assess(
                    user_id, tx, history,
                    blacklist_lookup=self.blacklist_lookup,
                    whitelist_lookup=self.whitelist_lookup,
                ))
                history_sizes.append(len(history))
                payee_names.append(tx.payee_name)

        output_df = self._serialize_assessments(assessments, history_sizes, payee_names)
        logger.info(
            f"Replay complete. Output rows: {len(output_df):,}. "
            f"Decisions: {output_df['decision'].value_counts().to_dict() if not output_df.empty else {}}."
        )
        return output_df

    # -------------------------------------------------------------------------
    # INTERNAL: INPUT
    # -------------------------------------------------------------------------

    @staticmethod
    def _prepare(transactions: pd.DataFrame) -> pd.DataFrame:
        """Validates input, parses timestamps and orders rows by user and time."""
        missing = [c for c in REQUIRED_COLUMNS if c not in transactions.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        df = transactions.copy()
        if not pd.api.types.is_datetime64_any_dtype(df["timestamp"]):
            try:
                df["timestamp"] = pd.to_datetime(df["timestamp"])
            except (ValueError, TypeError) as e:
                raise InvalidInputError(f"Unparseable timestamp column: {e}", "timestamp") from None

        blank_timestamps = int(df["timestamp"].isna().sum())
        if blank_timestamps:
            raise InvalidInputError(f"{blank_timestamps} row(s) have no timestamp", "timestamp")

        blank_payees = df["payee_id"].isna() | (df["payee_id"].astype(str).str.strip() == "")
        if blank_payees.any():
            raise InvalidInputError(f"{int(blank_payees.sum())} row(s) have no payee_id", "payee_id")

        df["user_id"] = df["user_id"].astype(str)
        df["payee_name"] = df["payee_name"].fillna("").astype(str)

        return df.sort_values(["user_id", "timestamp"], kind="stable").reset_index(drop=True)

    @staticmethod
    def _to_transactions(group: pd.DataFrame) -> List[Transaction]:
        return [
            Transaction(
                amount=row.amount,
                timestamp=row.timestamp.to_pydatetime(),
                payee_id=row.payee_id,
                payee_name=row.payee_name,
            )
            for row in group.itertuples(index=False)
        ]

    # -------------------------------------------------------------------------
    # INTERNAL: OUTPUT SERIALIZATION
    # -------------------------------------------------------------------------

    @staticmethod
    def _serialize_assessments(
        assessments: List[RiskAssessment], history_sizes: List[int], payee_names: List[str]
    ) -> pd.DataFrame:
        if not assessments:
            return pd.DataFrame(columns=OUTPUT_COLUMNS)

        rows = []
        for a, history_size, payee_name in zip(assessments, history_sizes, payee_names):
            rows.append({
                "user_id": a.user_id,
                "timestamp": a.timestamp,
                "amount": a.amount,
                "payee_id": a.payee_id,
                "payee_name": payee_name,
                "history_size": history_size,
                "risk_score": a.risk_score,
                "decision": a.decision.value,
                "risk_level": a.risk_level.value,
                "amount_score": a.sub_scores["amount"],
                "time_score": a.sub_scores["time"],
                "recipient_score": a.sub_scores["recipient"],
                "confidence": a.confidence,
                "list_override": a.list_override,
                "delay_seconds": a.delay_seconds,
                "reason_codes": "|".join(r.kind.value for r in a.reasons),
                "reasons": " | ".join(render_reason(r) for r in a.reasons),
            })

        return pd.DataFrame(rows, columns=OUTPUT_COLUMNS)
