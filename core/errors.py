"""
errors.py
----------
Failure taxonomy for the risk engine.

Only two conditions stop an assessment:
    - InvalidInputError: the request or its history cannot be scored.
    - ConfigurationError: thresholds/weights/sample sizes are unusable.

Insufficient history is NOT an error. Detectors report it as a
low-confidence result instead.
"""


class AssessmentError(Exception):
    """Base class. `code` tells callers why no assessment was produced."""

    code = "ASSESSMENT_FAILED"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "field": self.field}


class InvalidInputError(AssessmentError, ValueError):
    """Non-positive amount, unparseable timestamp, missing payee id, bad history row."""

    code = "INVALID_INPUT"


class ConfigurationError(AssessmentError, ValueError):
    """Threshold ordering violated, negative weights, missing config keys."""

    code = "MISCONFIGURATION"
