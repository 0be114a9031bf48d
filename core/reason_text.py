"""
reason_text.py
---------------
Display text for reasons, advice and alerts.

The engine only ever produces structured kinds + params. This module is
the single place where they become user-facing strings, so wording and
currency formatting can change without touching any detector.
"""

import math
from typing import Callable, Dict

from core.models import Advice, AdviceKind, AlertKind, PatternAlert, ReasonKind, RiskReason


def format_amount(value: float) -> str:
    """₹ with thousands separators and no decimals, e.g. ₹12,500."""
    return f"₹{value:,.0f}"


def _sigma(value: float) -> str:
    return "an unbounded number of" if math.isinf(value) else f"{value:.1f}"


def _payee(p: dict) -> str:
    return p.get("payee_name") or p.get("payee_id", "this payee")


_REASON_TEMPLATES: Dict[ReasonKind, Callable[[dict], str]] = {
    # Amount
    ReasonKind.INSUFFICIENT_AMOUNT_HISTORY: lambda p: (
        f"Not enough history for amount analysis ({p['available']} of {p['required']} transactions)"
    ),
    ReasonKind.AMOUNT_WITHIN_RANGE: lambda p: "Amount is within your normal range",
    ReasonKind.AMOUNT_SIGMA_DEVIATION: lambda p: (
        f"Amount is {_sigma(p['sigma'])} standard deviations from your average"
    ),
    ReasonKind.AMOUNT_ABOVE_TYPICAL_MAX: lambda p: (
        f"Amount exceeds your typical maximum of {format_amount(p['typical_max'])}"
    ),
    ReasonKind.AMOUNT_UNUSUALLY_LOW: lambda p: (
        f"Amount is unusually low (below {format_amount(p['typical_min'])})"
    ),
    ReasonKind.AMOUNT_MULTIPLE_OF_AVERAGE: lambda p: (
        f"Amount is {p['multiple']:.1f}x your average of {format_amount(p['average'])}"
    ),
    # Time
    ReasonKind.INSUFFICIENT_TIME_HISTORY: lambda p: (
        f"Limited history for time analysis ({p['available']} of {p['required']} transactions)"
    ),
    ReasonKind.LATE_NIGHT: lambda p: f"Late night transaction at {p['hour']:02d}:{p['minute']:02d}",
    ReasonKind.OVERNIGHT: lambda p: f"Overnight transaction at {p['hour']:02d}:{p['minute']:02d}",
    ReasonKind.EARLY_MORNING: lambda p: f"Early morning transaction at {p['hour']:02d}:{p['minute']:02d}",
    ReasonKind.WEEKEND_HIGH_AMOUNT: lambda p: (
        f"High amount ({format_amount(p['amount'])}) on a {p['weekday']}"
    ),
    ReasonKind.HIGH_VALUE_OFF_HOURS: lambda p: (
        f"High-value transaction ({format_amount(p['amount'])}) outside business hours"
    ),
    ReasonKind.MEDIUM_VALUE_LATE: lambda p: (
        f"Medium-value transaction ({format_amount(p['amount'])}) at a late hour"
    ),
    ReasonKind.FIRST_TIME_HOUR: lambda p: f"First transaction ever at {p['hour']:02d}:00",
    ReasonKind.FIRST_TIME_DAY: lambda p: f"First transaction ever on a {p['weekday']}",
    ReasonKind.HOURLY_DEVIATION: lambda p: f"Unusual hour for you ({p['hour']:02d}:00)",
    ReasonKind.DAILY_DEVIATION: lambda p: f"Unusual day for you ({p['weekday']})",
    ReasonKind.RAPID_SUCCESSION: lambda p: f"{p['count']} transactions in the last hour",
    ReasonKind.BURST_ACTIVITY: lambda p: f"Burst of transactions ({p['rapid_pairs']} within 5 minutes of each other)",
    ReasonKind.UNUSUAL_MINUTE: lambda p: f"Unusual transaction minute (:{p['minute']:02d})",
    ReasonKind.ROUND_HOUR: lambda p: f"Transaction exactly on the hour ({p['hour']:02d}:00)",
    # Recipient
    ReasonKind.INSUFFICIENT_RECIPIENT_HISTORY: lambda p: (
        f"Not enough history for recipient analysis ({p['available']} of {p['required']} transactions)"
    ),
    ReasonKind.NEW_PAYEE: lambda p: f"First payment to {_payee(p)}",
    ReasonKind.RARE_PAYEE: lambda p: f"Infrequent payments to {_payee(p)}",
    ReasonKind.KNOWN_PAYEE: lambda p: f"Regular payee {_payee(p)}",
    ReasonKind.PAYEE_AMOUNT_DEVIATION: lambda p: (
        f"Amount differs by {p['deviation'] * 100:.0f}% from your usual payment to {_payee(p)}"
    ),
    ReasonKind.PAYEE_AMOUNT_ABOVE_MAX: lambda p: (
        f"Amount is {p['multiple']:.1f}x your largest payment to {_payee(p)}"
    ),
    ReasonKind.PAYEE_UNUSUAL_HOUR: lambda p: f"Unusual hour ({p['hour']:02d}:00) for payments to {_payee(p)}",
    ReasonKind.HIGH_AMOUNT_UNFAMILIAR_PAYEE: lambda p: (
        f"High amount ({format_amount(p['amount'])}) to an unfamiliar payee"
    ),
    # Lists & policy
    ReasonKind.BLACKLISTED_PAYEE: lambda p: "Recipient is blacklisted (known fraudulent account)",
    ReasonKind.WHITELISTED_PAYEE: lambda p: "Recipient is whitelisted (trusted payee)",
    ReasonKind.AUTO_APPROVE_LOW_AMOUNT: lambda p: (
        f"Amount below {format_amount(p['floor'])} is approved automatically"
    ),
    ReasonKind.NO_SIGNIFICANT_RISK: lambda p: "No significant risk factors detected",
}


_ADVICE_TEMPLATES: Dict[AdviceKind, Callable[[dict], str]] = {
    AdviceKind.VERIFY_AMOUNT: lambda p: "Verify the transaction amount is correct",
    AdviceKind.CHECK_RECIPIENT_DETAILS: lambda p: "Check the recipient details carefully",
    AdviceKind.ENABLE_TRANSACTION_LIMITS: lambda p: "Consider enabling transaction limits",
    AdviceKind.REVIEW_RECENT_ACTIVITY: lambda p: "Review your recent account activity",
    AdviceKind.TYPICAL_AMOUNT_HINT: lambda p: f"Your typical transaction is around {format_amount(p['average'])}",
    AdviceKind.VERIFY_RECIPIENT_IDENTITY: lambda p: "Verify the recipient's identity before paying",
    AdviceKind.DOUBLE_CHECK_NEW_PAYEE: lambda p: "Double-check the payment address of this new payee",
    AdviceKind.CONFIRM_PAYMENT_EXPECTED: lambda p: "Confirm the recipient is expecting this payment",
    AdviceKind.REVIEW_RARE_PAYEE: lambda p: "You rarely pay this recipient; make sure this is intended",
    AdviceKind.UNUSUAL_AMOUNT_FOR_PAYEE: lambda p: "This amount is unusual for this recipient",
}


_ALERT_TEMPLATES: Dict[AlertKind, Callable[[dict], str]] = {
    AlertKind.LATE_NIGHT: lambda p: "Late night transaction detected",
    AlertKind.OVERNIGHT: lambda p: "Overnight transaction, a common pattern in fraud",
    AlertKind.HIGH_VALUE_OFF_HOURS: lambda p: (
        f"High-value transaction ({format_amount(p['amount'])}) outside business hours"
    ),
    AlertKind.RAPID_SUCCESSION: lambda p: f"Rapid transactions detected ({p['count']} in the last hour)",
    AlertKind.BURST_ACTIVITY: lambda p: "Burst activity detected (multiple transactions minutes apart)",
}


def render_reason(reason: RiskReason) -> str:
    text = _REASON_TEMPLATES[reason.kind](reason.params)
    unusual_hour = reason.params.get("unusual_hour")
    if unusual_hour is not None and reason.kind != ReasonKind.PAYEE_UNUSUAL_HOUR:
        text += f" (unusual hour {unusual_hour:02d}:00 for this payee)"
    return text


def render_advice(advice: Advice) -> str:
    return _ADVICE_TEMPLATES[advice.kind](advice.params)


def render_alert(alert: PatternAlert) -> str:
    return _ALERT_TEMPLATES[alert.kind](alert.params)
