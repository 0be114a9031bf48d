"""
history.py
-----------
Input preparation for the risk engine.

Every value that reaches a detector passes through here first:
    - amounts become positive finite floats
    - timestamps become datetime objects (strings parsed with pandas)
    - payee ids become non-empty strings
    - history rows are sorted by time

Anything that cannot be coerced raises InvalidInputError before scoring
starts, so a bad request never produces a partial result.

Clock fields (hour, weekday, day) are read from each timestamp's own wall
clock. Naive and timezone-aware timestamps cannot be mixed in one call.
"""

import math
import numbers
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

import pandas as pd

from core.errors import InvalidInputError
from core.models import Transaction


# Accepted keys for dict-shaped transactions (snake_case and request camelCase)
FIELD_ALIASES = {
    "amount": ("amount",),
    "timestamp": ("timestamp", "created_at", "createdAt"),
    "payee_id": ("payee_id", "payeeId", "payeeUpiId", "recipientVPA"),
    "payee_name": ("payee_name", "payeeName", "payee", "recipientName"),
}

HISTORY_FRAME_COLUMNS = [
    "position", "payee_id", "payee_name", "amount",
    "epoch_seconds", "hour", "weekday", "day", "month",
]

_NAIVE_EPOCH = datetime(1970, 1, 1)


# -----------------------------------------------------------------------------
# FIELD COERCION
# -----------------------------------------------------------------------------

def coerce_amount(value: Any, field: str = "amount") -> float:
    """Returns the amount as a positive finite float or raises InvalidInputError."""
    if value is None or isinstance(value, bool):
        raise InvalidInputError(f"Amount is required and must be numeric, got {value!r}", field)

    if isinstance(value, str):
        try:
            amount = float(Decimal(value.strip()))
        except (InvalidOperation, ValueError):
            raise InvalidInputError(f"Amount is not a number: {value!r}", field) from None
    elif isinstance(value, (numbers.Real, Decimal)):
        amount = float(value)
    else:
        raise InvalidInputError(f"Amount must be numeric, got {type(value).__name__}", field)

    if math.isnan(amount) or math.isinf(amount):
        raise InvalidInputError(f"Amount must be finite, got {value!r}", field)
    if amount <= 0:
        raise InvalidInputError(f"Amount must be positive, got {value!r}", field)

    return amount


def _is_missing(value: Any) -> bool:
    """True for None and pandas missing markers (NaN, NaT, pd.NA)."""
    return value is None or (pd.api.types.is_scalar(value) and bool(pd.isna(value)))


def coerce_timestamp(value: Any, field: str = "timestamp") -> datetime:
    """Returns a datetime. Strings are parsed with pandas; anything else is rejected."""
    # NaT is a datetime subclass
    if _is_missing(value):
        raise InvalidInputError(f"Timestamp is required, got {value!r}", field)

    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()

    if isinstance(value, datetime):
        return value

    if isinstance(value, str) and value.strip():
        try:
            parsed = pd.Timestamp(value.strip())
        except (ValueError, TypeError, OverflowError):
            raise InvalidInputError(f"Unparseable timestamp: {value!r}", field) from None
        if pd.isna(parsed):
            raise InvalidInputError(f"Unparseable timestamp: {value!r}", field)
        return parsed.to_pydatetime()

    raise InvalidInputError(f"Timestamp is required, got {value!r}", field)


def coerce_payee_id(value: Any, field: str = "payee_id") -> str:
    if _is_missing(value) or isinstance(value, bool):
        raise InvalidInputError("Payee id is required", field)
    payee_id = str(value).strip()
    if not payee_id:
        raise InvalidInputError("Payee id is required", field)
    return payee_id


def _lookup(item: Mapping, name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        if key in item:
            return item[key]
    return None


def to_transaction(item: Any, prefix: str = "") -> Transaction:
    """
    Builds a validated Transaction from a Transaction or a mapping.

    Args:
        item: Transaction instance or dict using snake_case or camelCase keys.
        prefix: Field path prefix for error messages, e.g. "history[3]."
    """
    if isinstance(item, Transaction):
        raw_amount, raw_ts, raw_payee, raw_name = item.amount, item.timestamp, item.payee_id, item.payee_name
    elif isinstance(item, Mapping):
        raw_amount = _lookup(item, "amount")
        raw_ts = _lookup(item, "timestamp")
        raw_payee = _lookup(item, "payee_id")
        raw_name = _lookup(item, "payee_name")
    else:
        raise InvalidInputError(
            f"Expected a Transaction or mapping, got {type(item).__name__}", prefix.rstrip(".") or None
        )

    return Transaction(
        amount=coerce_amount(raw_amount, f"{prefix}amount"),
        timestamp=coerce_timestamp(raw_ts, f"{prefix}timestamp"),
        payee_id=coerce_payee_id(raw_payee, f"{prefix}payee_id"),
        payee_name="" if raw_name is None else str(raw_name),
    )


# -----------------------------------------------------------------------------
# HISTORY
# -----------------------------------------------------------------------------

def epoch_seconds(ts: datetime) -> float:
    """Seconds since 1970-01-01. Naive timestamps are read as-is, with no local-zone shift."""
    if ts.tzinfo is None:
        return (ts - _NAIVE_EPOCH).total_seconds()
    return ts.timestamp()


def check_timezone_consistency(timestamps: Iterable[datetime]) -> None:
    """Raises InvalidInputError if naive and timezone-aware timestamps are mixed."""
    kinds = {ts.tzinfo is None for ts in timestamps}
    if len(kinds) > 1:
        raise InvalidInputError(
            "Cannot mix naive and timezone-aware timestamps in one assessment", "timestamp"
        )


def prepare_history(history: Iterable[Any] | None) -> list[Transaction]:
    """
    Validates and time-sorts a user's history.

    Returns:
        New list of Transactions, oldest first. The input is not modified.
    """
    if history is None:
        return []
    if isinstance(history, (str, bytes, Mapping)):
        raise InvalidInputError("History must be a sequence of transactions", "history")

    rows = [to_transaction(item, prefix=f"history[{i}].") for i, item in enumerate(history)]
    check_timezone_consistency(tx.timestamp for tx in rows)
    rows.sort(key=lambda tx: epoch_seconds(tx.timestamp))
    return rows


def history_frame(history: list[Transaction]) -> pd.DataFrame:
    """
    Flat DataFrame view of a prepared history.

    Clock columns are taken from each timestamp's wall clock; epoch_seconds
    is used for every interval calculation. `position` indexes back into
    `history` for the source datetime objects.
    """
    if not history:
        return pd.DataFrame(columns=HISTORY_FRAME_COLUMNS)

    rows = [
        {
            "position": i,
            "payee_id": tx.payee_id,
            "payee_name": tx.payee_name,
            "amount": tx.amount,
            "epoch_seconds": epoch_seconds(tx.timestamp),
            "hour": tx.timestamp.hour,
            "weekday": tx.timestamp.weekday(),
            "day": tx.timestamp.day,
            "month": tx.timestamp.month,
        }
        for i, tx in enumerate(history)
    ]
    return pd.DataFrame(rows, columns=HISTORY_FRAME_COLUMNS)
