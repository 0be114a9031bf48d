"""
amount_detector.py
-------------------
Statistical amount anomaly detection against a user's own history.

Builds an AmountProfile (mean, median, population σ, typical range
mean ± 2σ floored at 0) and flags the incoming amount when ANY of these
rules fires:

    1. |amount - mean| / σ > 3              generic outlier
    2. amount > typical max
    3. amount < typical min AND σ-distance > 2   only clearly low amounts
    4. amount > 5 × mean                    absolute ceiling, ignores σ

The reported reason is the first of rules 1–3 that fires; rule 4 replaces
it whenever it fires. The 5× multiplier is a policy constant in config.yaml.

With fewer than `min_transactions` history rows the detector reports
insufficient data: never anomalous, confidence 0.
"""

import math
import numpy as np
from typing import Any, Dict, Iterable

from core.models import (
    Advice, AdviceKind, AmountAnomalyResult, AmountProfile, ReasonKind, RiskReason,
)
from core.history import coerce_amount, prepare_history
from config.config_loader import get_amount_detection_config


SOURCE = "amount"


class AmountAnomalyDetector:
    """
    Stateless amount detector. Holds only read-only config.

    Usage:
        detector = AmountAnomalyDetector()
        result = detector.detect_anomaly(amount, history)
    """

    def __init__(self, config: Dict[str, Any] | None = None):
        self.config = config if config is not None else get_amount_detection_config()
        self.min_transactions = int(self.config["min_transactions"])
        self.sigma_outlier = float(self.config["sigma_outlier"])
        self.low_outlier_sigma = float(self.config["low_outlier_sigma"])
        self.range_sigmas = float(self.config["typical_range_sigmas"])
        self.mean_multiplier_ceiling = float(self.config["mean_multiplier_ceiling"])
        self.full_confidence_sample = float(self.config["full_confidence_sample"])

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def analyze_patterns(self, history: Iterable[Any]) -> AmountProfile:
        """
        Builds the amount profile for a history.

        Returns:
            AmountProfile with has_enough_data=False (and zeroed stats) when the
            history is shorter than min_transactions.
        """
        transactions = prepare_history(history)
        if len(transactions) < self.min_transactions:
            return AmountProfile(has_enough_data=False, total_transactions=len(transactions))

        amounts = np.sort(np.array([tx.amount for tx in transactions], dtype=float))
        n = len(amounts)

        mean_amt = float(np.mean(amounts))
        median_amt = float(np.median(amounts))
        std_amt = float(np.std(amounts))  # population σ (ddof=0)

        typical_min = max(0.0, mean_amt - self.range_sigmas * std_amt)
        typical_max = mean_amt + self.range_sigmas * std_amt

        # Confidence rises with sample count and falls with relative variability
        cv = std_amt / mean_amt if mean_amt > 0 else 1.0
        confidence = min(n / self.full_confidence_sample, 1.0) * (1.0 - min(cv, 1.0))

        return AmountProfile(
            has_enough_data=True,
            average_amount=mean_amt,
            median_amount=median_amt,
            standard_deviation=std_amt,
            typical_min=typical_min,
            typical_max=typical_max,
            confidence=round(confidence, 4),
            total_transactions=n,
        )

    def detect_anomaly(self, amount: float, history: Iterable[Any]) -> AmountAnomalyResult:
        """
        Scores `amount` against the user's history.

        Args:
            amount: Positive transfer amount.
            history: Transactions or dicts, validated and sorted here.
        """
        amount = coerce_amount(amount)
        profile = self.analyze_patterns(history)

        if not profile.has_enough_data:
            return AmountAnomalyResult(
                is_anomalous=False,
                confidence=0.0,
                reason=RiskReason(
                    ReasonKind.INSUFFICIENT_AMOUNT_HISTORY, SOURCE,
                    params={"available": profile.total_transactions, "required": self.min_transactions},
                ),
                deviation=0.0,
                risk_score=0,
                profile=profile,
            )

        deviation = self._sigma_distance(amount, profile)
        multiple = amount / profile.average_amount

        # --- Rules 1–3: first one wins the reason ---
        is_anomalous = False
        reason = RiskReason(ReasonKind.AMOUNT_WITHIN_RANGE, SOURCE, params={"average": profile.average_amount})

        if deviation > self.sigma_outlier:
            is_anomalous = True
            reason = RiskReason(ReasonKind.AMOUNT_SIGMA_DEVIATION, SOURCE, params={"sigma": deviation})
        elif amount > profile.typical_max:
            is_anomalous = True
            reason = RiskReason(
                ReasonKind.AMOUNT_ABOVE_TYPICAL_MAX, SOURCE, params={"typical_max": profile.typical_max}
            )
        elif self._is_suspicious_low(amount, profile, deviation):
            is_anomalous = True
            reason = RiskReason(
                ReasonKind.AMOUNT_UNUSUALLY_LOW, SOURCE,
                params={"typical_min": profile.typical_min, "sigma": deviation},
            )

        # --- Rule 4: absolute ceiling always overrides ---
        if multiple > self.mean_multiplier_ceiling:
            is_anomalous = True
            reason = RiskReason(
                ReasonKind.AMOUNT_MULTIPLE_OF_AVERAGE, SOURCE,
                params={"multiple": multiple, "average": profile.average_amount},
            )

        factors = self._score_factors(amount, profile, deviation)
        risk_score = min(int(sum(f.points for f in factors)), 100)

        return AmountAnomalyResult(
            is_anomalous=is_anomalous,
            confidence=profile.confidence,
            reason=reason,
            deviation=deviation,
            risk_score=risk_score,
            profile=profile,
            factors=factors,
        )

    def recommendations(self, result: AmountAnomalyResult) -> list[Advice]:
        """Advice to surface next to an amount anomaly. Empty when not anomalous."""
        if not result.is_anomalous:
            return []

        advice = [Advice(AdviceKind.VERIFY_AMOUNT), Advice(AdviceKind.CHECK_RECIPIENT_DETAILS)]
        if result.deviation > self.sigma_outlier:
            advice.append(Advice(AdviceKind.ENABLE_TRANSACTION_LIMITS))
            advice.append(Advice(AdviceKind.REVIEW_RECENT_ACTIVITY))
        if result.profile.average_amount > 0:
            advice.append(Advice(AdviceKind.TYPICAL_AMOUNT_HINT, {"average": result.profile.average_amount}))
        return advice

    # -------------------------------------------------------------------------
    # INTERNAL: RULES & SCORING
    # -------------------------------------------------------------------------

    @staticmethod
    def _sigma_distance(amount: float, profile: AmountProfile) -> float:
        """σ-distance from the mean. Zero-variance histories give 0 at the mean, inf elsewhere."""
        diff = abs(amount - profile.average_amount)
        if profile.standard_deviation == 0:
            return 0.0 if diff == 0 else math.inf
        return diff / profile.standard_deviation

    def _is_suspicious_low(self, amount: float, profile: AmountProfile, deviation: float) -> bool:
        return amount < profile.typical_min and deviation > self.low_outlier_sigma

    def _score_factors(self, amount: float, profile: AmountProfile, deviation: float) -> list[RiskReason]:
        """
        Point-bearing factors, each from one scoring band:
            σ bands:            >3σ +30, >2σ +15, >1.5σ +5
            above typical max:  ratio >2 +25, >1.5 +15, else +10
            mean multiple:      >10× +40, >5× +25, >3× +15
            suspicious low:     +10
        """
        factors: list[RiskReason] = []

        if deviation > 3:
            factors.append(RiskReason(ReasonKind.AMOUNT_SIGMA_DEVIATION, SOURCE, 30, {"sigma": deviation, "band": 3}))
        elif deviation > 2:
            factors.append(RiskReason(ReasonKind.AMOUNT_SIGMA_DEVIATION, SOURCE, 15, {"sigma": deviation, "band": 2}))
        elif deviation > 1.5:
            factors.append(RiskReason(ReasonKind.AMOUNT_SIGMA_DEVIATION, SOURCE, 5, {"sigma": deviation, "band": 1.5}))

        if amount > profile.typical_max:
            excess_ratio = amount / profile.typical_max if profile.typical_max > 0 else math.inf
            points = 25 if excess_ratio > 2 else 15 if excess_ratio > 1.5 else 10
            factors.append(RiskReason(
                ReasonKind.AMOUNT_ABOVE_TYPICAL_MAX, SOURCE, points,
                {"typical_max": profile.typical_max, "excess_ratio": excess_ratio},
            ))

        multiple = amount / profile.average_amount
        if multiple > 10:
            points = 40
        elif multiple > 5:
            points = 25
        elif multiple > 3:
            points = 15
        else:
            points = 0
        if points:
            factors.append(RiskReason(
                ReasonKind.AMOUNT_MULTIPLE_OF_AVERAGE, SOURCE, points,
                {"multiple": multiple, "average": profile.average_amount},
            ))

        if self._is_suspicious_low(amount, profile, deviation):
            factors.append(RiskReason(
                ReasonKind.AMOUNT_UNUSUALLY_LOW, SOURCE, 10,
                {"typical_min": profile.typical_min, "sigma": deviation},
            ))

        return factors
