"""
risk_aggregator.py
-------------------
Merges the three detector outputs into one RiskAssessment.

Flow for one transfer:
    1. Validate the transaction and history (InvalidInputError, no partial result)
    2. Run amount, time and recipient detectors (independent, order-insensitive)
    3. score = round(Σ weight × sub_score), clamped to [0, 100]
    4. thresholds → decision, then policy:
         - amount below the auto-approve floor → APPROVE
         - whitelist hit → decision capped at WARN
         - blacklist hit → BLOCK (wins over everything, including whitelist)
    5. Reasons: list/policy reasons first, then every detector factor
       weighted by its detector weight, highest impact first

The aggregator holds only validated config and the three detectors. It
keeps no state between calls.
"""

import logging
import numbers
from typing import Any, Callable, Dict, Iterable, Optional

from core.models import Decision, ReasonKind, RiskAssessment, RiskReason
from core.errors import AssessmentError, ConfigurationError
from core.history import check_timezone_consistency, prepare_history, to_transaction
from core.decision import (
    DecisionThresholds, cap_decision, delay_until, parse_override_roles, risk_level_for,
)
from core.amount_detector import AmountAnomalyDetector
from core.time_detector import TimeAnomalyDetector
from core.recipient_profiler import RecipientProfiler
from config.config_loader import load_config

logger = logging.getLogger(__name__)

DETECTORS = ("amount", "time", "recipient")

REQUIRED_SECTIONS = ("decision", "aggregation", "amount_detection", "time_detection", "recipient_detection")

# Sample-size gates that must be positive integers
SAMPLE_SIZE_KEYS = {
    "amount_detection": ("min_transactions",),
    "time_detection": ("min_behavioral_transactions", "min_velocity_transactions"),
    "recipient_detection": ("min_transactions",),
}

PayeeLookup = Callable[[str], bool]


class RiskAggregator:
    """
    Scores one transfer against the user's own history.

    Usage:
        aggregator = RiskAggregator()
        assessment = aggregator.assess("user-1", transaction, history, blacklist_lookup=blacklist)
    """

    def __init__(self, config: Dict[str, Any] | None = None):
        self._apply_config(config if config is not None else load_config())

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    @property
    def thresholds(self) -> DecisionThresholds:
        return self._thresholds

    @property
    def weights(self) -> Dict[str, float]:
        return dict(self._weights)

    @property
    def override_roles(self) -> Dict[Decision, tuple]:
        return dict(self._override_roles)

    def reload_config(self, config: Dict[str, Any]) -> None:
        """
        Validates `config` and swaps it in. On ConfigurationError the
        current settings stay in place.
        """
        self._apply_config(config)
        logger.info(
            f"Risk configuration reloaded: thresholds={self._thresholds.to_dict()}, weights={self._weights}"
        )

    def assess(
        self,
        user_id: str,
        transaction: Any,
        history: Iterable[Any] | None,
        blacklist_lookup: Optional[PayeeLookup] = None,
        whitelist_lookup: Optional[PayeeLookup] = None,
    ) -> RiskAssessment:
        """
        Produces the RiskAssessment for one transfer.

        Args:
            user_id: Requesting user. Only echoed back; never used for scoring.
            transaction: Transaction or dict with amount/timestamp/payee_id/payee_name.
            history: The user's past transactions (any order).
            blacklist_lookup: Callable payee_id -> bool. None means no blacklist.
            whitelist_lookup: Callable payee_id -> bool. None means no whitelist.

        Raises:
            InvalidInputError: transaction or history cannot be scored.
        """
        try:
            tx = to_transaction(transaction, prefix="transaction.")
            rows = prepare_history(history)
            check_timezone_consistency([tx.timestamp] + [row.timestamp for row in rows])
        except AssessmentError as e:
            logger.warning(f"Assessment refused for user {user_id}: [{e.code}] {e.message} (field={e.field})")
            raise

        # --- Detectors ---
        amount_result = self._amount_detector.detect_anomaly(tx.amount, rows)
        time_result = self._time_detector.detect_patterns(user_id, tx.timestamp, tx.amount, rows)
        profiles = self._recipient_profiler.build_profiles(rows, as_of=tx.timestamp)
        recipient_result = self._recipient_profiler.detect_anomaly(
            tx.payee_id, tx.payee_name, tx.amount, profiles, tx.timestamp
        )

        sub_scores = {
            "amount": amount_result.risk_score,
            "time": time_result.risk_score,
            "recipient": recipient_result.risk_score,
        }
        risk_score = self._weighted_score(sub_scores)

        # --- Lists & policy ---
        blacklisted = bool(blacklist_lookup(tx.payee_id)) if blacklist_lookup is not None else False
        whitelisted = bool(whitelist_lookup(tx.payee_id)) if whitelist_lookup is not None else False

        decision = self._thresholds.decide(risk_score)
        lead_reasons = []
        list_override = None

        if blacklisted:
            decision = Decision.BLOCK
            list_override = "blacklist"
            lead_reasons.append(RiskReason(ReasonKind.BLACKLISTED_PAYEE, "list", params={"payee_id": tx.payee_id}))
        else:
            if whitelisted:
                decision = cap_decision(decision, Decision.WARN)
                list_override = "whitelist"
                lead_reasons.append(RiskReason(ReasonKind.WHITELISTED_PAYEE, "list", params={"payee_id": tx.payee_id}))
            if tx.amount < self._auto_approve_floor and decision != Decision.APPROVE:
                decision = Decision.APPROVE
                lead_reasons.append(RiskReason(
                    ReasonKind.AUTO_APPROVE_LOW_AMOUNT, "policy", params={"floor": self._auto_approve_floor}
                ))

        if list_override:
            logger.info(f"{list_override} hit for user {user_id} payee {tx.payee_id}: decision {decision.value}")

        # --- Reasons ---
        detector_reasons = self._ordered_factors(amount_result, time_result, recipient_result)
        if not lead_reasons and not any(r.points > 0 for r in detector_reasons) and decision == Decision.APPROVE:
            lead_reasons.append(RiskReason(ReasonKind.NO_SIGNIFICANT_RISK, "policy"))

        confidence = (amount_result.confidence + time_result.confidence + recipient_result.confidence) / 3

        assessment = RiskAssessment(
            user_id=str(user_id),
            payee_id=tx.payee_id,
            amount=tx.amount,
            timestamp=tx.timestamp,
            risk_score=risk_score,
            decision=decision,
            risk_level=risk_level_for(risk_score, self._thresholds),
            reasons=lead_reasons + detector_reasons,
            sub_scores=sub_scores,
            confidence=round(confidence, 4),
            list_override=list_override,
            alerts=list(time_result.alerts),
            advice=(
                self._amount_detector.recommendations(amount_result)
                + self._recipient_profiler.recommendations(recipient_result)
            ),
        )
        if decision == Decision.DELAY:
            assessment.delay_seconds = self._delay_seconds
            assessment.delay_until = delay_until(tx.timestamp, self._delay_seconds)

        logger.debug(
            f"Assessed user {user_id} payee {tx.payee_id} amount {tx.amount}: "
            f"score={risk_score} sub_scores={sub_scores} decision={decision.value}"
        )
        return assessment

    # -------------------------------------------------------------------------
    # INTERNAL: SCORING
    # -------------------------------------------------------------------------

    def _weighted_score(self, sub_scores: Dict[str, int]) -> int:
        total = sum(self._weights[name] * sub_scores[name] for name in DETECTORS)
        return int(max(0, min(100, round(total))))

    def _ordered_factors(self, amount_result, time_result, recipient_result) -> list[RiskReason]:
        """
        All detector factors with points scaled by the detector weight,
        sorted by impact (stable, so ties keep detector order). Insufficient-data
        notes ride along with 0 points and therefore sort last.
        """
        factors = []

        amount_factors = list(amount_result.factors)
        if amount_result.insufficient_data:
            amount_factors.append(amount_result.reason)

        recipient_factors = list(recipient_result.factors)
        if recipient_result.insufficient_data and not recipient_result.is_new_payee:
            recipient_factors.append(recipient_result.reason)

        for name, group in (
            ("amount", amount_factors),
            ("time", time_result.factors),
            ("recipient", recipient_factors),
        ):
            weight = self._weights[name]
            factors.extend(
                RiskReason(f.kind, f.source, round(f.points * weight, 4), f.params) for f in group
            )

        return sorted(factors, key=lambda r: -r.points)

    # -------------------------------------------------------------------------
    # INTERNAL: CONFIG
    # -------------------------------------------------------------------------

    def _apply_config(self, config: Dict[str, Any]) -> None:
        """Validates everything first, then swaps all settings together."""
        if not isinstance(config, dict):
            raise ConfigurationError("Configuration must be a mapping")
        missing = [s for s in REQUIRED_SECTIONS if s not in config]
        if missing:
            raise ConfigurationError(f"Missing config sections: {missing}")

        decision_cfg = config["decision"]
        thresholds = DecisionThresholds.from_config(decision_cfg)
        weights = self._validate_weights(config["aggregation"])
        self._validate_sample_sizes(config)

        delay_seconds = decision_cfg.get("delay_seconds", 300)
        if isinstance(delay_seconds, bool) or not isinstance(delay_seconds, numbers.Integral) or delay_seconds <= 0:
            raise ConfigurationError(f"delay_seconds must be a positive integer, got {delay_seconds!r}",
                                     "decision.delay_seconds")
        floor = decision_cfg.get("auto_approve_amount_floor", 0)
        if isinstance(floor, bool) or not isinstance(floor, numbers.Real) or floor < 0:
            raise ConfigurationError(f"auto_approve_amount_floor must be >= 0, got {floor!r}",
                                     "decision.auto_approve_amount_floor")
        override_roles = parse_override_roles(decision_cfg.get("override_roles"))

        try:
            amount_detector = AmountAnomalyDetector(config["amount_detection"])
            time_detector = TimeAnomalyDetector(config["time_detection"])
            recipient_profiler = RecipientProfiler(config["recipient_detection"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid detector configuration: {e}") from None

        self._thresholds = thresholds
        self._weights = weights
        self._delay_seconds = int(delay_seconds)
        self._auto_approve_floor = float(floor)
        self._override_roles = override_roles
        self._amount_detector = amount_detector
        self._time_detector = time_detector
        self._recipient_profiler = recipient_profiler

    @staticmethod
    def _validate_weights(aggregation_cfg: Dict[str, Any]) -> Dict[str, float]:
        raw = (aggregation_cfg or {}).get("detector_weights", {})
        weights = {}
        for name in DETECTORS:
            value = raw.get(name, 1.0)
            if isinstance(value, bool) or not isinstance(value, numbers.Real) or value < 0:
                raise ConfigurationError(
                    f"Detector weight '{name}' must be a non-negative number, got {value!r}",
                    f"aggregation.detector_weights.{name}",
                )
            weights[name] = float(value)
        return weights

    @staticmethod
    def _validate_sample_sizes(config: Dict[str, Any]) -> None:
        for section, keys in SAMPLE_SIZE_KEYS.items():
            for key in keys:
                value = config[section].get(key)
                if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value <= 0:
                    raise ConfigurationError(
                        f"{section}.{key} must be a positive integer, got {value!r}", f"{section}.{key}"
                    )
