"""
decision.py
------------
Score → decision mapping and the policy around decisions.

    score >= block  → BLOCK   (terminal)
    score >= delay  → DELAY   (advisory, fixed hold)
    score >= warn   → WARN    (advisory)
    else            → APPROVE (terminal)

The mapping is a step function, so the decision is monotone in the score.
Overrides are role-gated per decision; a DELAY may proceed once its hold
has elapsed.
"""

import numbers
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable

from core.errors import ConfigurationError
from core.models import Decision, RiskAssessment, RiskLevel


DEFAULT_OVERRIDE_ROLES = {
    Decision.BLOCK: ("superadmin",),
    Decision.DELAY: ("admin", "superadmin"),
    Decision.WARN: ("user", "admin", "superadmin"),
}


@dataclass(frozen=True)
class DecisionThresholds:
    block: float = 80
    delay: float = 60
    warn: float = 30

    @classmethod
    def from_config(cls, decision_config: Dict[str, Any]) -> "DecisionThresholds":
        try:
            block_cfg = decision_config["thresholds"]
            thresholds = cls(block=block_cfg["block"], delay=block_cfg["delay"], warn=block_cfg["warn"])
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Missing decision threshold: {e}", "decision.thresholds") from None
        thresholds.validate()
        return thresholds

    def validate(self) -> None:
        """Raises ConfigurationError unless 0 <= warn <= delay <= block <= 100."""
        for name in ("warn", "delay", "block"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise ConfigurationError(f"Threshold '{name}' must be a number, got {value!r}", f"thresholds.{name}")
            if not 0 <= value <= 100:
                raise ConfigurationError(f"Threshold '{name}' must be within [0, 100], got {value}", f"thresholds.{name}")

        if not self.warn <= self.delay <= self.block:
            raise ConfigurationError(
                f"Thresholds must be non-decreasing (warn <= delay <= block), "
                f"got warn={self.warn}, delay={self.delay}, block={self.block}",
                "thresholds",
            )

    def decide(self, score: float) -> Decision:
        if score >= self.block:
            return Decision.BLOCK
        if score >= self.delay:
            return Decision.DELAY
        if score >= self.warn:
            return Decision.WARN
        return Decision.APPROVE

    def to_dict(self) -> dict:
        return {"block": self.block, "delay": self.delay, "warn": self.warn}


def risk_level_for(score: float, thresholds: DecisionThresholds) -> RiskLevel:
    """Risk level bands follow the decision thresholds."""
    if score >= thresholds.block:
        return RiskLevel.CRITICAL
    if score >= thresholds.delay:
        return RiskLevel.HIGH
    if score >= thresholds.warn:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def cap_decision(decision: Decision, ceiling: Decision) -> Decision:
    """Returns the less severe of the two decisions."""
    return decision if decision.severity <= ceiling.severity else ceiling


def delay_until(timestamp: datetime, delay_seconds: int) -> datetime:
    return timestamp + timedelta(seconds=delay_seconds)


def can_proceed_after_delay(assessment: RiskAssessment, now: datetime) -> bool:
    """
    True once a DELAY assessment's hold has elapsed.

    `now` is supplied by the caller. Non-DELAY assessments (or ones without
    a hold instant) never proceed through this path.
    """
    if assessment.decision != Decision.DELAY or assessment.delay_until is None:
        return False
    return now >= assessment.delay_until


def parse_override_roles(raw: Dict[str, Iterable[str]] | None) -> Dict[Decision, tuple]:
    if not raw:
        return dict(DEFAULT_OVERRIDE_ROLES)
    try:
        return {Decision(str(name).upper()): tuple(roles) for name, roles in raw.items()}
    except ValueError as e:
        raise ConfigurationError(f"Unknown decision in override_roles: {e}", "decision.override_roles") from None


def can_override(
    decision: Decision | str, role: str, override_roles: Dict[Decision, tuple] | None = None
) -> bool:
    """
    Whether a user with `role` may override `decision`.

    BLOCK: superadmin only. DELAY: admin, superadmin. WARN: anyone signed in.
    APPROVE needs no override and always returns False.
    """
    roles = override_roles if override_roles is not None else DEFAULT_OVERRIDE_ROLES
    try:
        decision = Decision(decision)
    except ValueError:
        return False
    return role in roles.get(decision, ())
