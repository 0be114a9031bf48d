"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: a single transfer (the one being scored, or a history row).

- AmountProfile / TimePatternSet / RecipientProfile: per-call derived
  profiles. Rebuilt from the supplied history on every call, never cached.

- *AnomalyResult / TimeAnalysisResult: detector outputs. Each carries a
  sub-score and the list of factors (RiskReason) that produced it.

- RiskAssessment: aggregator output. Score, decision, ordered reasons.

Reasons, advice and alerts are closed enumerations with structured params.
Display text is produced by core/reason_text.py, never here.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Decision(str, Enum):
    APPROVE = "APPROVE"
    WARN = "WARN"
    DELAY = "DELAY"
    BLOCK = "BLOCK"

    @property
    def severity(self) -> int:
        return _DECISION_SEVERITY[self]

    @property
    def is_terminal(self) -> bool:
        """APPROVE and BLOCK end the flow. WARN/DELAY are advisory."""
        return self in (Decision.APPROVE, Decision.BLOCK)


_DECISION_SEVERITY = {
    Decision.APPROVE: 0,
    Decision.WARN: 1,
    Decision.DELAY: 2,
    Decision.BLOCK: 3,
}


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ReasonKind(str, Enum):
    # Amount
    INSUFFICIENT_AMOUNT_HISTORY = "INSUFFICIENT_AMOUNT_HISTORY"
    AMOUNT_WITHIN_RANGE = "AMOUNT_WITHIN_RANGE"
    AMOUNT_SIGMA_DEVIATION = "AMOUNT_SIGMA_DEVIATION"
    AMOUNT_ABOVE_TYPICAL_MAX = "AMOUNT_ABOVE_TYPICAL_MAX"
    AMOUNT_UNUSUALLY_LOW = "AMOUNT_UNUSUALLY_LOW"
    AMOUNT_MULTIPLE_OF_AVERAGE = "AMOUNT_MULTIPLE_OF_AVERAGE"

    # Time
    INSUFFICIENT_TIME_HISTORY = "INSUFFICIENT_TIME_HISTORY"
    LATE_NIGHT = "LATE_NIGHT"
    OVERNIGHT = "OVERNIGHT"
    EARLY_MORNING = "EARLY_MORNING"
    WEEKEND_HIGH_AMOUNT = "WEEKEND_HIGH_AMOUNT"
    HIGH_VALUE_OFF_HOURS = "HIGH_VALUE_OFF_HOURS"
    MEDIUM_VALUE_LATE = "MEDIUM_VALUE_LATE"
    FIRST_TIME_HOUR = "FIRST_TIME_HOUR"
    FIRST_TIME_DAY = "FIRST_TIME_DAY"
    HOURLY_DEVIATION = "HOURLY_DEVIATION"
    DAILY_DEVIATION = "DAILY_DEVIATION"
    RAPID_SUCCESSION = "RAPID_SUCCESSION"
    BURST_ACTIVITY = "BURST_ACTIVITY"
    UNUSUAL_MINUTE = "UNUSUAL_MINUTE"
    ROUND_HOUR = "ROUND_HOUR"

    # Recipient
    INSUFFICIENT_RECIPIENT_HISTORY = "INSUFFICIENT_RECIPIENT_HISTORY"
    NEW_PAYEE = "NEW_PAYEE"
    RARE_PAYEE = "RARE_PAYEE"
    KNOWN_PAYEE = "KNOWN_PAYEE"
    PAYEE_AMOUNT_DEVIATION = "PAYEE_AMOUNT_DEVIATION"
    PAYEE_AMOUNT_ABOVE_MAX = "PAYEE_AMOUNT_ABOVE_MAX"
    PAYEE_UNUSUAL_HOUR = "PAYEE_UNUSUAL_HOUR"
    HIGH_AMOUNT_UNFAMILIAR_PAYEE = "HIGH_AMOUNT_UNFAMILIAR_PAYEE"

    # Lists & policy
    BLACKLISTED_PAYEE = "BLACKLISTED_PAYEE"
    WHITELISTED_PAYEE = "WHITELISTED_PAYEE"
    AUTO_APPROVE_LOW_AMOUNT = "AUTO_APPROVE_LOW_AMOUNT"
    NO_SIGNIFICANT_RISK = "NO_SIGNIFICANT_RISK"


class AdviceKind(str, Enum):
    VERIFY_AMOUNT = "VERIFY_AMOUNT"
    CHECK_RECIPIENT_DETAILS = "CHECK_RECIPIENT_DETAILS"
    ENABLE_TRANSACTION_LIMITS = "ENABLE_TRANSACTION_LIMITS"
    REVIEW_RECENT_ACTIVITY = "REVIEW_RECENT_ACTIVITY"
    TYPICAL_AMOUNT_HINT = "TYPICAL_AMOUNT_HINT"
    VERIFY_RECIPIENT_IDENTITY = "VERIFY_RECIPIENT_IDENTITY"
    DOUBLE_CHECK_NEW_PAYEE = "DOUBLE_CHECK_NEW_PAYEE"
    CONFIRM_PAYMENT_EXPECTED = "CONFIRM_PAYMENT_EXPECTED"
    REVIEW_RARE_PAYEE = "REVIEW_RARE_PAYEE"
    UNUSUAL_AMOUNT_FOR_PAYEE = "UNUSUAL_AMOUNT_FOR_PAYEE"


class AlertKind(str, Enum):
    LATE_NIGHT = "LATE_NIGHT"
    OVERNIGHT = "OVERNIGHT"
    HIGH_VALUE_OFF_HOURS = "HIGH_VALUE_OFF_HOURS"
    RAPID_SUCCESSION = "RAPID_SUCCESSION"
    BURST_ACTIVITY = "BURST_ACTIVITY"


# =============================================================================
# INPUT
# =============================================================================

@dataclass(frozen=True)
class Transaction:
    """
    A single funds transfer. Immutable.

    payee_id is the stable matching key (e.g. a payment address).
    payee_name is display-only and never used for matching.
    """

    amount: float
    timestamp: datetime
    payee_id: str
    payee_name: str = ""


@dataclass(frozen=True)
class RiskReason:
    """
    One explanation entry. `points` is the raw contribution to the owning
    detector's sub-score (0 for informational entries).
    """

    kind: ReasonKind
    source: str                      # "amount" | "time" | "recipient" | "list" | "policy"
    points: float = 0.0
    params: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Advice:
    kind: AdviceKind
    params: dict = field(default_factory=dict)


# =============================================================================
# AMOUNT
# =============================================================================

@dataclass
class AmountProfile:
    has_enough_data: bool
    average_amount: float = 0.0
    median_amount: float = 0.0
    standard_deviation: float = 0.0
    typical_min: float = 0.0         # max(0, mean - 2σ)
    typical_max: float = 0.0         # mean + 2σ
    confidence: float = 0.0
    total_transactions: int = 0

    @property
    def coefficient_of_variation(self) -> float:
        if self.average_amount <= 0:
            return 0.0
        return self.standard_deviation / self.average_amount


@dataclass
class AmountAnomalyResult:
    is_anomalous: bool
    confidence: float
    reason: RiskReason
    deviation: float                 # |amount - mean| / σ
    risk_score: int
    profile: AmountProfile
    factors: list[RiskReason] = field(default_factory=list)

    @property
    def insufficient_data(self) -> bool:
        return not self.profile.has_enough_data


# =============================================================================
# TIME
# =============================================================================

@dataclass
class TimePatternSet:
    """
    Every time signal as a named field. Basic signals are always set;
    behavioral/velocity fields stay at their defaults when the matching
    insufficient-data marker is True.
    """

    # Basic (calendar/clock)
    late_night: bool = False
    early_morning: bool = False
    overnight: bool = False
    weekend: bool = False
    business_hours: bool = False
    lunch_hours: bool = False
    dinner_hours: bool = False
    high_value_off_hours: bool = False
    medium_value_late: bool = False
    small_value_overnight: bool = False
    round_hour: bool = False
    quarter_hour: bool = False
    unusual_minute: bool = False

    # Behavioral
    behavioral_insufficient_data: bool = False
    hourly_deviation: float = 0.0
    daily_deviation: float = 0.0
    consistency_score: float = 0.0
    first_time_hour: bool = False
    first_time_day: bool = False
    typical_amount_min: float = 0.0
    typical_amount_max: float = 0.0
    amount_outlier: bool = False

    # Velocity
    velocity_insufficient_data: bool = False
    transactions_last_hour: int = 0
    rapid_pairs: int = 0
    rapid_succession: bool = False
    burst_activity: bool = False
    average_interval_seconds: Optional[float] = None
    velocity_risk: int = 0

    # Seasonal
    month_end_activity: bool = False
    payday_period: bool = False
    seasonal_month: bool = False
    weekend_spending_pattern: bool = False
    weekday_spending_pattern: bool = False
    holiday_period: bool = False

    @property
    def insufficient_data(self) -> bool:
        return self.behavioral_insufficient_data or self.velocity_insufficient_data


@dataclass
class PatternAlert:
    kind: AlertKind
    alert_type: str                  # "WARNING" | "ALERT"
    severity: str                    # "MEDIUM" | "HIGH"
    params: dict = field(default_factory=dict)


@dataclass
class TimeAnalysisResult:
    patterns: TimePatternSet
    risk_score: int
    alerts: list[PatternAlert]
    confidence: float
    factors: list[RiskReason] = field(default_factory=list)

    @property
    def is_unusual(self) -> bool:
        return self.risk_score > 0


# =============================================================================
# RECIPIENT
# =============================================================================

@dataclass
class RecipientFrequency:
    transactions_per_month: float = 0.0
    average_days_between: float = 0.0
    regularity_score: float = 0.0    # 1 - σ(interval)/mean(interval), >= 0


@dataclass
class RecipientProfile:
    payee_id: str
    payee_name: str
    transaction_count: int
    total_amount: float
    average_amount: float
    min_amount: float
    max_amount: float
    first_transaction: datetime
    last_transaction: datetime
    frequency: RecipientFrequency
    typical_hours: list[int]
    risk_score: int
    is_frequent_payee: bool
    category: str                    # regular_small | regular_medium | regular_large | one_time | occasional | unknown


@dataclass
class RecipientAnomalyResult:
    is_anomalous: bool
    is_new_payee: bool
    is_rare_payee: bool
    is_frequent_payee: bool
    confidence: float
    reason: RiskReason
    deviation: float                 # |amount - avg| / avg for known payees
    risk_score: int
    profile: Optional[RecipientProfile] = None
    insufficient_data: bool = False
    factors: list[RiskReason] = field(default_factory=list)


# =============================================================================
# ASSESSMENT
# =============================================================================

@dataclass
class RiskAssessment:
    """Aggregator output. Reasons are ordered by impact, highest first."""

    user_id: str
    payee_id: str
    amount: float
    timestamp: datetime
    risk_score: int
    decision: Decision
    risk_level: RiskLevel
    reasons: list[RiskReason]
    sub_scores: dict                 # {"amount": int, "time": int, "recipient": int}
    confidence: float
    list_override: Optional[str] = None      # "blacklist" | "whitelist"
    delay_seconds: Optional[int] = None
    delay_until: Optional[datetime] = None
    alerts: list[PatternAlert] = field(default_factory=list)
    advice: list[Advice] = field(default_factory=list)

    @property
    def requires_action(self) -> bool:
        return self.decision in (Decision.WARN, Decision.DELAY)

    @property
    def can_proceed(self) -> bool:
        return self.decision in (Decision.APPROVE, Decision.WARN)
