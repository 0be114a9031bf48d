"""
recipient_profiler.py
----------------------
Per-payee behavioral profiles and recipient anomaly detection.

Profiles are built from the user's history, grouped by payee_id (the
stable payment address; display names are never matched):

    - count / total / average / min / max amount, first / last instant
    - frequency: transactions per month over the observed span, average
      days between, regularity = max(0, 1 - σ(interval) / mean(interval))
    - typical hours: hours with >= 20% of the payee's peak-hour count
    - payee risk score (rarity, high amounts, amount variability, recent burst)
    - frequent-payee flag and a coarse category label

Anything time-relative ("last 24 hours") is anchored at `as_of`, which
defaults to the newest history instant. The wall clock is never read.

Detection for an incoming transfer:
    - unknown payee → new payee, +25, confidence 1
    - known payee  → amount deviation vs the payee's average / max, plus an
                     unusual-hour flag appended to the reason
"""

import logging
import numpy as np
import pandas as pd
from typing import Any, Dict, Iterable

from core.models import (
    Advice, AdviceKind, ReasonKind, RecipientAnomalyResult, RecipientFrequency, RecipientProfile,
    RiskReason, Transaction,
)
from core.history import (
    check_timezone_consistency, coerce_amount, coerce_payee_id, coerce_timestamp, epoch_seconds,
    history_frame, prepare_history,
)
from config.config_loader import get_recipient_detection_config

logger = logging.getLogger(__name__)

SOURCE = "recipient"
SECONDS_PER_DAY = 86400.0


class RecipientProfiler:
    """
    Stateless recipient profiler.

    Usage:
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(history, as_of=transaction.timestamp)
        result = profiler.detect_anomaly(payee_id, payee_name, amount, profiles, timestamp)
    """

    def __init__(self, config: Dict[str, Any] | None = None):
        self.config = config if config is not None else get_recipient_detection_config()
        self.min_transactions = int(self.config["min_transactions"])
        self.frequent_min_count = int(self.config["frequent_min_count"])
        self.frequent_share = float(self.config["frequent_share"])
        self.typical_hour_share = float(self.config["typical_hour_share"])
        self.new_payee_points = float(self.config["new_payee_points"])
        self.rare_payee_points = float(self.config["rare_payee_points"])
        self.high_amount_points = float(self.config["high_amount_unfamiliar_points"])
        self.high_amount_threshold = float(self.config["high_amount_unfamiliar_threshold"])
        self.deviation_anomaly = float(self.config["deviation_anomaly"])
        self.max_amount_multiplier = float(self.config["max_amount_multiplier"])
        self.known_payee_confidence = float(self.config["known_payee_confidence"])
        self.recent_window_seconds = float(self.config["recent_window_hours"]) * 3600

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def build_profiles(
        self, history: Iterable[Any], as_of: Any | None = None
    ) -> Dict[str, RecipientProfile]:
        """
        Builds one RecipientProfile per payee_id seen in history.

        Args:
            history: The user's past transactions.
            as_of: Anchor for the trailing-24h burst check. Defaults to the
                newest history timestamp.

        Returns:
            Dict payee_id -> RecipientProfile. Empty for an empty history.
        """
        transactions = prepare_history(history)
        if not transactions:
            return {}

        anchor = coerce_timestamp(as_of, "as_of") if as_of is not None else transactions[-1].timestamp
        check_timezone_consistency([anchor] + [tx.timestamp for tx in transactions])
        anchor_epoch = epoch_seconds(anchor)

        df = history_frame(transactions)
        total = len(df)
        profiles: Dict[str, RecipientProfile] = {}

        for payee_id, group in df.groupby("payee_id", sort=False):
            group = group.sort_values("epoch_seconds", kind="stable")
            profiles[payee_id] = self._build_profile(payee_id, group, transactions, total, anchor_epoch)

        logger.debug(f"Built {len(profiles)} recipient profiles from {total} transactions.")
        return profiles

    def detect_anomaly(
        self,
        payee_id: Any,
        payee_name: str,
        amount: Any,
        profiles: Dict[str, RecipientProfile],
        timestamp: Any | None = None,
    ) -> RecipientAnomalyResult:
        """
        Scores a transfer to `payee_id` against the user's recipient profiles.

        Args:
            payee_id: Stable payee identifier.
            payee_name: Display name (reported only).
            amount: Transfer amount.
            profiles: Output of build_profiles().
            timestamp: Transfer instant; its hour is checked against the
                payee's typical hours. Skipped when None.
        """
        payee_id = coerce_payee_id(payee_id)
        amount = coerce_amount(amount)
        hour = coerce_timestamp(timestamp).hour if timestamp is not None else None

        history_size = sum(p.transaction_count for p in profiles.values())
        insufficient = history_size < self.min_transactions
        profile = profiles.get(payee_id)

        if profile is None:
            return self._new_payee_result(payee_id, payee_name, amount, insufficient)

        if insufficient:
            # Known payee but too little history to judge deviation
            return RecipientAnomalyResult(
                is_anomalous=False,
                is_new_payee=False,
                is_rare_payee=not profile.is_frequent_payee,
                is_frequent_payee=profile.is_frequent_payee,
                confidence=0.0,
                reason=RiskReason(
                    ReasonKind.INSUFFICIENT_RECIPIENT_HISTORY, SOURCE,
                    params={"available": history_size, "required": self.min_transactions},
                ),
                deviation=0.0,
                risk_score=0,
                profile=profile,
                insufficient_data=True,
            )

        return self._known_payee_result(payee_id, payee_name, amount, hour, profile)

    def recommendations(self, result: RecipientAnomalyResult) -> list[Advice]:
        """Advice to surface next to a recipient anomaly."""
        if not (result.is_anomalous or result.is_new_payee):
            return []

        advice = [Advice(AdviceKind.VERIFY_RECIPIENT_IDENTITY)]
        if result.is_new_payee:
            advice.append(Advice(AdviceKind.DOUBLE_CHECK_NEW_PAYEE))
            advice.append(Advice(AdviceKind.CONFIRM_PAYMENT_EXPECTED))
        elif result.is_rare_payee:
            advice.append(Advice(AdviceKind.REVIEW_RARE_PAYEE))
        if result.deviation > self.deviation_anomaly:
            advice.append(Advice(AdviceKind.UNUSUAL_AMOUNT_FOR_PAYEE))
        return advice

    # -------------------------------------------------------------------------
    # INTERNAL: DETECTION
    # -------------------------------------------------------------------------

    def _new_payee_result(
        self, payee_id: str, payee_name: str, amount: float, insufficient: bool
    ) -> RecipientAnomalyResult:
        params = {"payee_id": payee_id, "payee_name": payee_name}
        factors = [RiskReason(ReasonKind.NEW_PAYEE, SOURCE, self.new_payee_points, params)]
        if amount > self.high_amount_threshold:
            factors.append(RiskReason(
                ReasonKind.HIGH_AMOUNT_UNFAMILIAR_PAYEE, SOURCE, self.high_amount_points,
                {**params, "amount": amount},
            ))

        # Never asserted as an anomaly on a starved history
        return RecipientAnomalyResult(
            is_anomalous=not insufficient,
            is_new_payee=True,
            is_rare_payee=True,
            is_frequent_payee=False,
            confidence=1.0,
            reason=RiskReason(ReasonKind.NEW_PAYEE, SOURCE, params=params),
            deviation=0.0,
            risk_score=min(int(sum(f.points for f in factors)), 100),
            profile=None,
            insufficient_data=insufficient,
            factors=factors,
        )

    def _known_payee_result(
        self, payee_id: str, payee_name: str, amount: float, hour: int | None, profile: RecipientProfile
    ) -> RecipientAnomalyResult:
        is_rare = not profile.is_frequent_payee
        deviation = abs(amount - profile.average_amount) / profile.average_amount
        params = {"payee_id": payee_id, "payee_name": payee_name or profile.payee_name}

        is_anomalous = False
        if is_rare:
            reason = RiskReason(ReasonKind.RARE_PAYEE, SOURCE, params=dict(params))
        else:
            reason = RiskReason(ReasonKind.KNOWN_PAYEE, SOURCE, params=dict(params))

        if deviation > self.deviation_anomaly:
            is_anomalous = True
            reason = RiskReason(
                ReasonKind.PAYEE_AMOUNT_DEVIATION, SOURCE,
                params={**params, "deviation": deviation, "average": profile.average_amount},
            )
        elif amount > profile.max_amount * self.max_amount_multiplier:
            is_anomalous = True
            reason = RiskReason(
                ReasonKind.PAYEE_AMOUNT_ABOVE_MAX, SOURCE,
                params={**params, "multiple": amount / profile.max_amount, "max_amount": profile.max_amount},
            )

        unusual_hour = hour is not None and bool(profile.typical_hours) and hour not in profile.typical_hours
        if unusual_hour:
            # Appended to whatever reason is already there
            is_anomalous = True
            reason = RiskReason(reason.kind, SOURCE, params={**reason.params, "unusual_hour": hour})

        factors = self._score_factors(amount, deviation, is_rare, params)
        if unusual_hour:
            factors.append(RiskReason(
                ReasonKind.PAYEE_UNUSUAL_HOUR, SOURCE,
                params={**params, "hour": hour, "typical_hours": list(profile.typical_hours)},
            ))

        return RecipientAnomalyResult(
            is_anomalous=is_anomalous,
            is_new_payee=False,
            is_rare_payee=is_rare,
            is_frequent_payee=profile.is_frequent_payee,
            confidence=self.known_payee_confidence,
            reason=reason,
            deviation=deviation,
            risk_score=min(int(sum(f.points for f in factors)), 100),
            profile=profile,
            factors=factors,
        )

    def _score_factors(self, amount: float, deviation: float, is_rare: bool, params: dict) -> list[RiskReason]:
        """rare +15; deviation >3 +20, >2 +15, >1.5 +10; rare and amount > 10,000 +20."""
        factors = []
        if is_rare:
            factors.append(RiskReason(ReasonKind.RARE_PAYEE, SOURCE, self.rare_payee_points, params))

        if deviation > 3:
            points = 20
        elif deviation > 2:
            points = 15
        elif deviation > 1.5:
            points = 10
        else:
            points = 0
        if points:
            factors.append(RiskReason(
                ReasonKind.PAYEE_AMOUNT_DEVIATION, SOURCE, points, {**params, "deviation": deviation}
            ))

        if is_rare and amount > self.high_amount_threshold:
            factors.append(RiskReason(
                ReasonKind.HIGH_AMOUNT_UNFAMILIAR_PAYEE, SOURCE, self.high_amount_points,
                {**params, "amount": amount},
            ))
        return factors

    # -------------------------------------------------------------------------
    # INTERNAL: PROFILE CONSTRUCTION
    # -------------------------------------------------------------------------

    def _build_profile(
        self,
        payee_id: str,
        group: pd.DataFrame,
        transactions: list[Transaction],
        total_transactions: int,
        anchor_epoch: float,
    ) -> RecipientProfile:
        amounts = group["amount"].to_numpy(dtype=float)
        epochs = group["epoch_seconds"].to_numpy(dtype=float)
        positions = group["position"].tolist()
        count = len(amounts)

        # Most recent non-empty display name
        names = [n for n in group["payee_name"].tolist() if n]
        payee_name = names[-1] if names else ""

        return RecipientProfile(
            payee_id=payee_id,
            payee_name=payee_name,
            transaction_count=count,
            total_amount=float(amounts.sum()),
            average_amount=float(amounts.mean()),
            min_amount=float(amounts.min()),
            max_amount=float(amounts.max()),
            first_transaction=transactions[positions[0]].timestamp,
            last_transaction=transactions[positions[-1]].timestamp,
            frequency=self._compute_frequency(epochs),
            typical_hours=self._compute_typical_hours(group["hour"]),
            risk_score=self._compute_payee_risk(amounts, epochs, total_transactions, anchor_epoch),
            is_frequent_payee=count >= max(self.frequent_min_count, total_transactions * self.frequent_share),
            category=self._categorize(count, float(amounts.mean())),
        )

    @staticmethod
    def _compute_frequency(epochs: np.ndarray) -> RecipientFrequency:
        """
        Frequency block over the payee's observed span. Regularity needs
        at least 3 transactions (two intervals).
        """
        count = len(epochs)
        if count < 2:
            return RecipientFrequency()

        total_days = (epochs[-1] - epochs[0]) / SECONDS_PER_DAY
        if total_days == 0:
            return RecipientFrequency()

        regularity = 0.0
        if count >= 3:
            intervals = np.diff(epochs) / SECONDS_PER_DAY
            mean_interval = float(np.mean(intervals))
            std_interval = float(np.std(intervals))
            regularity = max(0.0, 1.0 - std_interval / mean_interval)

        return RecipientFrequency(
            transactions_per_month=round(count / total_days * 30, 4),
            average_days_between=round(total_days / (count - 1), 4),
            regularity_score=round(regularity, 4),
        )

    def _compute_typical_hours(self, hours: pd.Series) -> list[int]:
        counts = hours.value_counts()
        threshold = counts.max() * self.typical_hour_share
        return sorted(int(h) for h, c in counts.items() if c >= threshold)

    def _compute_payee_risk(
        self, amounts: np.ndarray, epochs: np.ndarray, total_transactions: int, anchor_epoch: float
    ) -> int:
        risk = 0

        frequency_ratio = len(amounts) / total_transactions
        if frequency_ratio < 0.01:
            risk += 20
        elif frequency_ratio < 0.05:
            risk += 10

        max_amount = float(amounts.max())
        if max_amount > 50000:
            risk += 15
        elif max_amount > 10000:
            risk += 10

        mean_amount = float(amounts.mean())
        if mean_amount > 0 and float(np.std(amounts)) / mean_amount > 1:
            risk += 10

        window_start = anchor_epoch - self.recent_window_seconds
        recent = int(np.sum((epochs >= window_start) & (epochs <= anchor_epoch)))
        if recent > 2:
            risk += 15

        return min(risk, 100)

    @staticmethod
    def _categorize(count: int, avg_amount: float) -> str:
        if count >= 10 and avg_amount < 500:
            return "regular_small"
        if count >= 5 and 1000 <= avg_amount <= 5000:
            return "regular_medium"
        if count >= 3 and avg_amount > 5000:
            return "regular_large"
        if count == 1:
            return "one_time"
        if count <= 3:
            return "occasional"
        return "unknown"

