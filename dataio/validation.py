"""
validation.py — Input contract checks for the transaction batch.

The post-detection passes compute windows and spans directly from
timestamps, so a value that cannot be parsed must stop the run rather than
being treated as epoch zero.  ``prepare_transactions`` is called at the
boundary of each pass and raises ``TransactionValidationError`` on any
violation.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from typing import Any, List

# ── Required schema ──────────────────────────────────────────────────────────
REQUIRED_COLUMNS = ("sender_id", "receiver_id", "amount", "timestamp")
ID_COLUMNS = ("sender_id", "receiver_id")

MAX_REPORTED_VALUES: int = 5


class TransactionValidationError(ValueError):
    """The transaction batch violates the upstream data contract."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid transaction data: " + "; ".join(self.errors))


# ── Public API ───────────────────────────────────────────────────────────────

def prepare_transactions(df: pd.DataFrame) -> pd.DataFrame:
    """Validate and type-cast a transaction DataFrame.

    Parameters
    ----------
    df : pd.DataFrame
        Transactions with at least ``sender_id``, ``receiver_id``,
        ``amount`` and ``timestamp`` columns.  ``timestamp`` may hold
        strings, datetimes or ``pd.Timestamp`` values.

    Returns
    -------
    pd.DataFrame
        A cleaned copy sorted by timestamp (stable, so equal timestamps keep
        their input order).  The input frame is never modified.

    Raises
    ------
    TransactionValidationError
        Missing columns, empty identifiers, non-numeric or non-positive
        amounts, or timestamps that cannot be parsed.
    """
    errors: List[str] = []

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise TransactionValidationError(
            [f"Missing required columns: {', '.join(missing)}"]
        )

    cleaned = df.copy()
    if cleaned.empty:
        cleaned["timestamp"] = pd.to_datetime(cleaned["timestamp"])
        cleaned["amount"] = cleaned["amount"].astype(float)
        return cleaned

    # Identifiers --------------------------------------------------------------
    for col in ID_COLUMNS:
        n_null = int(cleaned[col].isna().sum())
        cleaned[col] = cleaned[col].astype(str).str.strip()
        n_empty = int((cleaned[col] == "").sum()) + n_null
        if n_empty:
            errors.append(f"Column '{col}' has {n_empty} empty/null value(s).")

    # Amounts ------------------------------------------------------------------
    raw_amounts = cleaned["amount"]
    cleaned["amount"] = pd.to_numeric(raw_amounts, errors="coerce")
    bad_amount = cleaned["amount"].isna()
    if bad_amount.any():
        errors.append(
            f"Column 'amount' has {int(bad_amount.sum())} non-numeric value(s): "
            f"{_sample(raw_amounts[bad_amount])}"
        )
    non_finite = np.isinf(cleaned["amount"])
    if non_finite.any():
        errors.append(
            f"Column 'amount' has {int(non_finite.sum())} non-finite value(s): "
            f"{_sample(raw_amounts[non_finite])}"
        )
    n_non_positive = int(((cleaned["amount"] <= 0) & ~non_finite).sum())
    if n_non_positive:
        errors.append(
            f"Column 'amount' has {n_non_positive} non-positive value(s). "
            "All amounts must be > 0."
        )

    # Timestamps ---------------------------------------------------------------
    raw_ts = cleaned["timestamp"]
    numeric_ts = pd.Series(False, index=raw_ts.index)
    if pd.api.types.is_datetime64_any_dtype(raw_ts):
        parsed = raw_ts
    else:
        # Bare numbers carry no epoch unit
        numeric_ts = raw_ts.map(_is_bare_number).astype(bool)
        if numeric_ts.any():
            errors.append(
                f"Column 'timestamp' has {int(numeric_ts.sum())} bare numeric value(s) "
                f"with no unit: {_sample(raw_ts[numeric_ts])}. Use ISO-8601 date strings."
            )
        parsed = pd.to_datetime(
            raw_ts.astype(object).where(~numeric_ts, None), errors="coerce", format="mixed"
        )
    bad_ts = parsed.isna() & ~numeric_ts
    if bad_ts.any():
        errors.append(
            f"Column 'timestamp' has {int(bad_ts.sum())} unparseable value(s): "
            f"{_sample(raw_ts[bad_ts])}"
        )
    cleaned["timestamp"] = parsed

    if errors:
        raise TransactionValidationError(errors)

    return cleaned.sort_values("timestamp", kind="mergesort").reset_index(drop=True)


def _sample(values: pd.Series) -> str:
    """Render the first few offending values for an error message."""
    shown = [repr(v) for v in values.head(MAX_REPORTED_VALUES).tolist()]
    if len(values) > MAX_REPORTED_VALUES:
        shown.append("...")
    return ", ".join(shown)


def _is_bare_number(value: Any) -> bool:
    """True for ints, floats and numeric strings such as epoch offsets."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, np.integer, np.floating)):
        return not pd.isna(value)
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False
