"""
payee_lists.py
---------------
Blacklist / whitelist lookup layer.

Builds an in-memory index over list entries keyed on the normalized
payment address (vpa) and phone number. Either field matches. The index
is callable, so an instance can be passed straight to
RiskAggregator.assess() as `blacklist_lookup` / `whitelist_lookup`.

List maintenance happens in the source CSV; no code changes required.
"""

import logging
import pandas as pd
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

IDENTIFIER_COLUMNS = ["vpa", "phone_number"]


def normalize_identifier(value: Any) -> Optional[str]:
    """Trimmed, lowercased identifier. Blank/missing values give None."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip().lower()
    return text or None


class PayeeListLookup:
    """
    Fast membership lookup for one list (blacklist or whitelist).

    Built once at init from the entries. Thread-safe for reads.
    """

    def __init__(self, entries: Iterable[Mapping[str, Any]] = (), list_type: str = "blacklist"):
        self.list_type = list_type
        self._index: Dict[str, Dict] = {}
        self._load_entries(entries)

    @classmethod
    def from_identifiers(cls, identifiers: Iterable[str], list_type: str = "blacklist") -> "PayeeListLookup":
        """Shortcut for a bare collection of payment addresses."""
        return cls(({"vpa": i} for i in identifiers), list_type=list_type)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, list_type: str = "blacklist") -> "PayeeListLookup":
        """
        Builds the lookup from a DataFrame with at least one of the columns
        vpa / phone_number. An optional is_active column filters rows.
        """
        if not any(col in df.columns for col in IDENTIFIER_COLUMNS):
            raise ValueError(f"List file needs at least one of the columns: {IDENTIFIER_COLUMNS}")
        return cls(df.to_dict(orient="records"), list_type=list_type)

    @classmethod
    def from_csv(cls, path: str, list_type: str = "blacklist") -> "PayeeListLookup":
        df = pd.read_csv(path, dtype=str)
        lookup = cls.from_dataframe(df, list_type=list_type)
        logger.info(f"Loaded {len(lookup)} {list_type} identifiers from {path}")
        return lookup

    def _load_entries(self, entries: Iterable[Mapping[str, Any]]) -> None:
        """Builds the lookup index, skipping inactive rows."""
        for entry in entries:
            if not _is_active(entry.get("is_active", True)):
                continue
            for column in IDENTIFIER_COLUMNS:
                key = normalize_identifier(entry.get(column))
                if key is not None:
                    self._index[key] = dict(entry)

    def lookup(self, identifier: Any) -> Optional[Dict]:
        """
        Returns the list entry matching a vpa or phone number, or None.
        """
        key = normalize_identifier(identifier)
        if key is None:
            return None
        return self._index.get(key)

    def __call__(self, identifier: Any) -> bool:
        return self.lookup(identifier) is not None

    def __contains__(self, identifier: Any) -> bool:
        return self(identifier)

    def __len__(self) -> int:
        return len(self._index)

    def __repr__(self) -> str:
        return f"PayeeListLookup(type={self.list_type}, identifiers={len(self)})"


def _is_active(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "")
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return True
    return bool(value)
