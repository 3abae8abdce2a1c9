"""
config.py — Thresholds for the post-detection passes.

Every value is a fixed constant for the lifetime of the process.  Each one
may be overridden through an environment variable of the same name, read
once at import time and validated immediately so a bad deployment fails on
startup instead of silently flagging every receiver.
"""

from __future__ import annotations

import os
from typing import Dict


class ConfigurationError(ValueError):
    """Raised when a threshold would make a detection pass meaningless."""


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name}={raw!r} is not a number") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name}={raw!r} is not an integer") from None


# ── Fan-in corroboration ─────────────────────────────────────────────────────
FAN_IN_WINDOW_HOURS: float = _env_float("FAN_IN_WINDOW_HOURS", 72.0)
MIN_UNIQUE_SENDERS: int = _env_int("MIN_UNIQUE_SENDERS", 3)
AMOUNT_TOLERANCE: float = _env_float("AMOUNT_TOLERANCE", 0.20)     # ± 20 %
RAPID_OUTFLOW_HOURS: float = _env_float("RAPID_OUTFLOW_HOURS", 24.0)
RAPID_OUTFLOW_RATIO: float = _env_float("RAPID_OUTFLOW_RATIO", 0.50)
LOW_ACTIVITY_TX_THRESHOLD: int = _env_int("LOW_ACTIVITY_TX_THRESHOLD", 3)

# ── Relationship intelligence ────────────────────────────────────────────────
MIN_RECURRING_TX_COUNT: int = _env_int("MIN_RECURRING_TX_COUNT", 3)
MIN_RECURRING_SPAN_DAYS: float = _env_float("MIN_RECURRING_SPAN_DAYS", 30.0)
MAX_TOTAL_REDUCTION: float = _env_float("MAX_TOTAL_REDUCTION", 50.0)
CV_THRESHOLD: float = _env_float("CV_THRESHOLD", 0.20)
PERIODICITY_MATCH_RATIO: float = _env_float("PERIODICITY_MATCH_RATIO", 0.70)
PERIODICITY_TOLERANCE: float = _env_float("PERIODICITY_TOLERANCE", 0.25)

# Duration tiers are part of the scoring table, not deployment knobs
DURATION_TIER_1_DAYS: float = 60.0
DURATION_TIER_2_DAYS: float = 120.0


# ── Validation ───────────────────────────────────────────────────────────────

def check_fan_in_thresholds(
    window_hours: float,
    min_unique_senders: int,
    amount_tolerance: float,
    rapid_outflow_hours: float,
    rapid_outflow_ratio: float,
    low_activity_tx_threshold: int,
) -> None:
    """Reject fan-in thresholds that would flag every receiver or nothing."""
    errors = []
    if window_hours <= 0:
        errors.append(f"fan-in window must be positive (got {window_hours} h)")
    if min_unique_senders <= 0:
        errors.append(f"minimum unique senders must be positive (got {min_unique_senders})")
    if not 0 <= amount_tolerance < 1:
        errors.append(f"amount tolerance must be in [0, 1) (got {amount_tolerance})")
    if rapid_outflow_hours < 0:
        errors.append(f"rapid outflow window must not be negative (got {rapid_outflow_hours} h)")
    if rapid_outflow_ratio <= 0:
        errors.append(f"rapid outflow ratio must be positive (got {rapid_outflow_ratio})")
    if low_activity_tx_threshold < 0:
        errors.append(
            f"low-activity transaction threshold must not be negative (got {low_activity_tx_threshold})"
        )
    if errors:
        raise ConfigurationError("; ".join(errors))


def check_relationship_thresholds(
    min_recurring_tx_count: int,
    min_recurring_span_days: float,
    max_total_reduction: float,
    cv_threshold: float,
    periodicity_match_ratio: float,
    periodicity_tolerance: float,
) -> None:
    """Reject relationship thresholds outside their meaningful ranges."""
    errors = []
    # Periodicity needs at least two gaps, i.e. three transactions
    if min_recurring_tx_count < 3:
        errors.append(f"recurring pairs need at least 3 transactions (got {min_recurring_tx_count})")
    if min_recurring_span_days <= 0:
        errors.append(f"recurring span must be positive (got {min_recurring_span_days} days)")
    if max_total_reduction < 0:
        errors.append(f"maximum reduction must not be negative (got {max_total_reduction})")
    if cv_threshold <= 0:
        errors.append(f"CV threshold must be positive (got {cv_threshold})")
    if not 0 < periodicity_match_ratio < 1:
        errors.append(f"periodicity match ratio must be in (0, 1) (got {periodicity_match_ratio})")
    if not 0 <= periodicity_tolerance < 1:
        errors.append(f"periodicity tolerance must be in [0, 1) (got {periodicity_tolerance})")
    if errors:
        raise ConfigurationError("; ".join(errors))


def as_dict() -> Dict[str, float]:
    """Snapshot of the active thresholds (for reports)."""
    return {
        "fan_in_window_hours": FAN_IN_WINDOW_HOURS,
        "min_unique_senders": MIN_UNIQUE_SENDERS,
        "amount_tolerance": AMOUNT_TOLERANCE,
        "rapid_outflow_hours": RAPID_OUTFLOW_HOURS,
        "rapid_outflow_ratio": RAPID_OUTFLOW_RATIO,
        "low_activity_tx_threshold": LOW_ACTIVITY_TX_THRESHOLD,
        "min_recurring_tx_count": MIN_RECURRING_TX_COUNT,
        "min_recurring_span_days": MIN_RECURRING_SPAN_DAYS,
        "max_total_reduction": MAX_TOTAL_REDUCTION,
        "cv_threshold": CV_THRESHOLD,
        "periodicity_match_ratio": PERIODICITY_MATCH_RATIO,
        "periodicity_tolerance": PERIODICITY_TOLERANCE,
    }


check_fan_in_thresholds(
    FAN_IN_WINDOW_HOURS,
    MIN_UNIQUE_SENDERS,
    AMOUNT_TOLERANCE,
    RAPID_OUTFLOW_HOURS,
    RAPID_OUTFLOW_RATIO,
    LOW_ACTIVITY_TX_THRESHOLD,
)
check_relationship_thresholds(
    MIN_RECURRING_TX_COUNT,
    MIN_RECURRING_SPAN_DAYS,
    MAX_TOTAL_REDUCTION,
    CV_THRESHOLD,
    PERIODICITY_MATCH_RATIO,
    PERIODICITY_TOLERANCE,
)
