"""
relationship_intelligence.py — Dampen scores for long-standing legitimate
relationships.

Rent, payroll and subscriptions produce the same sender → receiver pair
again and again, for similar amounts, at regular intervals, over months.
Mule traffic rarely does.  This pass looks for that evidence per directed
pair and lowers the suspicion score of both parties.

Sub-scores per qualifying pair (≥ 3 transactions spanning ≥ 30 days)
--------------------------------------------------------------------
Category             | Max | Rule
recurring_pair       |  25 | 10 pts at 3 txns, linear to 25 at 10+
long_relationship    |  20 | 20 if span ≥ 120 d, 10 if ≥ 60 d
amount_consistency   |  15 | CV < 0.20 → 15 × (1 − CV / 0.20)
monthly_periodicity  |  20 | ≥ 70 % of gaps within ±25 % of the mean gap,
                     |     | 10 pts at 70 % linear to 20 at 100 %

An account keeps the best value per category over all its pairs, the four
categories are summed and the total is capped at 50.  Cycle members are
never dampened and a score is never raised.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Set

import numpy as np
import pandas as pd

from dataio.validation import prepare_transactions
from postprocess import config
from postprocess.models import AccountNode

log = logging.getLogger(__name__)

ALGORITHM_NAME = "relationship_intelligence"

EXPLANATION_SEPARATOR = " | "

# Sub-score caps and the order they are reported in
RECURRING_MAX: int = 25
DURATION_TIER_1_POINTS: int = 10
DURATION_TIER_2_POINTS: int = 20
CONSISTENCY_MAX: int = 15
PERIODICITY_MIN: int = 10
PERIODICITY_MAX: int = 20

CATEGORY_LABELS = (
    ("recurring", "recurring_pair"),
    ("duration", "long_relationship"),
    ("consistency", "amount_consistency"),
    ("periodicity", "monthly_periodicity"),
)


# ── Public API ───────────────────────────────────────────────────────────────

def adjust_scores_using_relationship_intelligence(
    accounts: List[AccountNode],
    transactions: pd.DataFrame,
    cycle_members: Set[str],
    min_recurring_tx_count: int = config.MIN_RECURRING_TX_COUNT,
    min_recurring_span_days: float = config.MIN_RECURRING_SPAN_DAYS,
    max_total_reduction: float = config.MAX_TOTAL_REDUCTION,
    cv_threshold: float = config.CV_THRESHOLD,
    periodicity_match_ratio: float = config.PERIODICITY_MATCH_RATIO,
    periodicity_tolerance: float = config.PERIODICITY_TOLERANCE,
    prepared: bool = False,
) -> List[AccountNode]:
    """Lower suspicion scores backed by recurring legitimate relationships.

    Parameters
    ----------
    accounts : list[AccountNode]
        All accounts; mutated in place.
    transactions : pd.DataFrame
        The full transaction batch.
    cycle_members : set[str]
        Accounts in any detected fraud cycle.  These are never adjusted.
    min_recurring_tx_count, min_recurring_span_days : int, float
        Qualification filter for a pair.
    max_total_reduction : float
        Ceiling on the per-account reduction.
    cv_threshold, periodicity_match_ratio, periodicity_tolerance : float
        Parameters of the consistency and periodicity sub-scores.
    prepared : bool
        *transactions* already came out of ``prepare_transactions``.

    Returns
    -------
    list[AccountNode]
        The same *accounts* list, for chaining.
    """
    config.check_relationship_thresholds(
        min_recurring_tx_count,
        min_recurring_span_days,
        max_total_reduction,
        cv_threshold,
        periodicity_match_ratio,
        periodicity_tolerance,
    )
    df = transactions if prepared else prepare_transactions(transactions)

    pairs = qualifying_pairs(
        compute_pair_stats(df),
        min_recurring_tx_count,
        pd.Timedelta(days=min_recurring_span_days),
    )
    reductions = account_reductions(pairs, cv_threshold, periodicity_match_ratio, periodicity_tolerance)

    n_adjusted = 0
    for account in accounts:
        if account.account_id in cycle_members:
            continue
        if account.suspicion_score <= 0:
            continue
        # Already dampened by an earlier run over this batch
        if ALGORITHM_NAME in account.triggered_algorithms:
            continue

        r = reductions.get(account.account_id)
        if r is None:
            continue

        total = min(max_total_reduction, sum(r.values()))
        if total <= 0:
            continue

        old_score = account.suspicion_score
        account.suspicion_score = max(0.0, old_score - total)
        account.is_suspicious = account.suspicion_score > 0
        account.record_algorithm(ALGORITHM_NAME)

        detail = ", ".join(
            f"{label}(-{r[key]})" for key, label in CATEGORY_LABELS if r[key] > 0
        )
        account.append_explanation(
            f"Relationship Intelligence: score reduced by {_fmt(total)} "
            f"({_fmt(old_score)}→{_fmt(account.suspicion_score)}) [{detail}]",
            EXPLANATION_SEPARATOR,
        )
        n_adjusted += 1
        log.debug(
            "relationship intelligence: %s %s → %s [%s]",
            account.account_id, _fmt(old_score), _fmt(account.suspicion_score), detail,
        )

    log.info(
        "Relationship intelligence: %d qualifying pair(s), %d account(s) dampened",
        len(pairs),
        n_adjusted,
    )
    return accounts


def compute_pair_stats(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Group a prepared batch by directed (sender, receiver) pair.

    Returns
    -------
    list[dict]
        Keys: sender, receiver, amounts (np.ndarray), timestamps (sorted
        pd.Series), span (pd.Timedelta).  Ordered by (sender, receiver).
    """
    stats: List[Dict[str, Any]] = []
    for (sender, receiver), grp in df.groupby(["sender_id", "receiver_id"], sort=True):
        timestamps = grp["timestamp"].sort_values(kind="mergesort").reset_index(drop=True)
        stats.append(
            {
                "sender": sender,
                "receiver": receiver,
                "amounts": grp["amount"].to_numpy(dtype=float),
                "timestamps": timestamps,
                "span": timestamps.iloc[-1] - timestamps.iloc[0],
            }
        )
    return stats


def qualifying_pairs(
    pair_stats: Iterable[Dict[str, Any]],
    min_count: int = config.MIN_RECURRING_TX_COUNT,
    min_span: pd.Timedelta = pd.Timedelta(days=config.MIN_RECURRING_SPAN_DAYS),
) -> List[Dict[str, Any]]:
    return [p for p in pair_stats if len(p["amounts"]) >= min_count and p["span"] >= min_span]


def account_reductions(
    pairs: Iterable[Dict[str, Any]],
    cv_threshold: float = config.CV_THRESHOLD,
    periodicity_match_ratio: float = config.PERIODICITY_MATCH_RATIO,
    periodicity_tolerance: float = config.PERIODICITY_TOLERANCE,
) -> Dict[str, Dict[str, int]]:
    """Best sub-score per category for every account touching a pair."""
    reductions: Dict[str, Dict[str, int]] = {}

    for pair in pairs:
        scores = {
            "recurring": recurring_pair_score(len(pair["amounts"])),
            "duration": duration_score(pair["span"]),
            "consistency": amount_consistency_score(pair["amounts"], cv_threshold),
            "periodicity": periodicity_score(
                pair["timestamps"], periodicity_match_ratio, periodicity_tolerance
            ),
        }
        for account_id in (pair["sender"], pair["receiver"]):
            best = reductions.setdefault(account_id, {key: 0 for key, _ in CATEGORY_LABELS})
            for key, value in scores.items():
                best[key] = max(best[key], value)

    return reductions


def recurring_pair_score(tx_count: int) -> int:
    """10 points at 3 transactions, 25 at 10 or more."""
    return min(RECURRING_MAX, _round_half_up(10 + ((tx_count - 3) / 7) * 15))


def duration_score(span: pd.Timedelta) -> int:
    if span >= pd.Timedelta(days=config.DURATION_TIER_2_DAYS):
        return DURATION_TIER_2_POINTS
    if span >= pd.Timedelta(days=config.DURATION_TIER_1_DAYS):
        return DURATION_TIER_1_POINTS
    return 0


def amount_consistency_score(amounts: np.ndarray, cv_threshold: float = config.CV_THRESHOLD) -> int:
    """Coefficient of variation of the amounts, inverted into points."""
    if len(amounts) < 2:
        return 0
    mean = float(np.mean(amounts))
    if mean <= 0:
        return 0
    cv = float(np.std(amounts)) / mean  # population std
    if cv >= cv_threshold:
        return 0
    return _round_half_up(CONSISTENCY_MAX * (1 - cv / cv_threshold))


def periodicity_score(
    timestamps: pd.Series,
    match_ratio_threshold: float = config.PERIODICITY_MATCH_RATIO,
    tolerance: float = config.PERIODICITY_TOLERANCE,
) -> int:
    """Share of inter-transaction gaps close to the average gap.

    *timestamps* must be sorted ascending.
    """
    if len(timestamps) < 3:
        return 0

    gaps = timestamps.diff().dropna().dt.total_seconds().to_numpy()
    avg_gap = float(np.mean(gaps))
    if avg_gap <= 0:
        return 0

    lo = avg_gap * (1 - tolerance)
    hi = avg_gap * (1 + tolerance)
    match_ratio = float(np.sum((gaps >= lo) & (gaps <= hi))) / len(gaps)
    if match_ratio < match_ratio_threshold:
        return 0

    spread = PERIODICITY_MAX - PERIODICITY_MIN
    return _round_half_up(
        PERIODICITY_MIN + ((match_ratio - match_ratio_threshold) / (1 - match_ratio_threshold)) * spread
    )


# ── Internal helpers ─────────────────────────────────────────────────────────

def _round_half_up(value: float) -> int:
    # round() would send 12.5 to 12
    return int(math.floor(value + 0.5))


def _fmt(value: float) -> str:
    return f"{value:g}"
