"""
fan_in_validation.py — Two-phase fan-in validation.

Many senders paying one receiver is how smurfing collectors look, but it is
also how payroll pools, marketplaces and shared bills look.  Fan-in alone is
therefore never treated as fraud here.

Phase 1 — candidate identification
----------------------------------
A receiver is an *aggregation candidate* when some window of at most
``window_hours`` holds payments from at least ``min_unique_senders``
distinct senders.  Only the window with the most unique senders is kept.

Phase 2 — corroboration
-----------------------
A candidate is upgraded to ``confirmed_money_laundering`` only if at least
one independent check holds:

=========================  ================================================
shell_chain_involvement    forwards a share of the aggregate to a
                           low-activity intermediary that passes it on
cycle_ring_participation   is in a cycle, or pays straight into one
rapid_layered_outflow      forwards ≥ 50 % of the aggregate within 24 h
role_conflict              is also a shell-chain member, fan-out source
                           or cycle member
=========================  ================================================

The pass only writes ``fan_in_classification`` and
``corroboration_checks`` and appends to ``explanation`` /
``triggered_algorithms``.  Scores and upstream patterns are left alone.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import networkx as nx
import pandas as pd

from dataio.graph_builder import outgoing_amount
from dataio.validation import prepare_transactions
from postprocess import config
from postprocess.models import AccountNode, index_accounts

log = logging.getLogger(__name__)

ALGORITHM_NAME = "Two-Phase Fan-In Validation"

AGGREGATION_CANDIDATE = "aggregation_candidate"
CONFIRMED_MONEY_LAUNDERING = "confirmed_money_laundering"

CHECK_SHELL_CHAIN = "shell_chain_involvement"
CHECK_CYCLE = "cycle_ring_participation"
CHECK_RAPID_OUTFLOW = "rapid_layered_outflow"
CHECK_ROLE_CONFLICT = "role_conflict"
CHECK_ORDER = (CHECK_SHELL_CHAIN, CHECK_CYCLE, CHECK_RAPID_OUTFLOW, CHECK_ROLE_CONFLICT)

EXPLANATION_SEPARATOR = ". "


# ── Public API ───────────────────────────────────────────────────────────────

def validate_fan_in_two_phase(
    accounts: List[AccountNode],
    transactions: pd.DataFrame,
    graph: nx.MultiDiGraph,
    cycles: Iterable[Iterable[str]],
    shell_chains: Iterable[Iterable[str]],
    fan_out_map: Mapping[str, Set[str]],
    window_hours: float = config.FAN_IN_WINDOW_HOURS,
    min_unique_senders: int = config.MIN_UNIQUE_SENDERS,
    amount_tolerance: float = config.AMOUNT_TOLERANCE,
    rapid_outflow_hours: float = config.RAPID_OUTFLOW_HOURS,
    rapid_outflow_ratio: float = config.RAPID_OUTFLOW_RATIO,
    low_activity_tx_threshold: int = config.LOW_ACTIVITY_TX_THRESHOLD,
    prepared: bool = False,
) -> None:
    """Classify fan-in receivers and record the corroborating evidence.

    Parameters
    ----------
    accounts : list[AccountNode]
        Every account in the batch; mutated in place.
    transactions : pd.DataFrame
        The full batch (``sender_id``, ``receiver_id``, ``amount``,
        ``timestamp``).
    graph : nx.MultiDiGraph
        Adjacency multigraph, one edge per transaction.
    cycles : iterable of account-id sequences
        Cycles found by the upstream cycle detector.
    shell_chains : iterable of account-id sequences
        Chains found by the upstream shell-network detector.
    fan_out_map : mapping account_id → set of receiver ids
        Fan-out sources found upstream.
    window_hours, min_unique_senders : float, int
        Phase 1 window width and unique-sender threshold.
    amount_tolerance : float
        Preservation tolerance for the shell-chain check.
    rapid_outflow_hours, rapid_outflow_ratio : float
        Grace period after the window and the share of the aggregate that
        must leave within it.
    low_activity_tx_threshold : int
        Maximum lifetime transactions for a shell-like intermediary.
    prepared : bool
        *transactions* already came out of ``prepare_transactions``; skip
        re-validating it.

    Raises
    ------
    ConfigurationError
        A threshold is out of range (e.g. a zero-width window).
    TransactionValidationError
        The batch has unparseable timestamps or bad amounts.
    """
    config.check_fan_in_thresholds(
        window_hours,
        min_unique_senders,
        amount_tolerance,
        rapid_outflow_hours,
        rapid_outflow_ratio,
        low_activity_tx_threshold,
    )
    df = transactions if prepared else prepare_transactions(transactions)

    account_map = index_accounts(accounts)
    cycle_nodes = _flatten(cycles)
    shell_nodes = _flatten(shell_chains)
    fan_out_nodes = set(fan_out_map.keys())

    candidates = identify_aggregation_candidates(df, window_hours, min_unique_senders)

    outgoing_by_sender = {
        sender: grp for sender, grp in df.groupby("sender_id", sort=False)
    }
    rapid_window = pd.Timedelta(hours=rapid_outflow_hours)

    n_confirmed = 0
    n_skipped = 0
    for candidate in candidates:
        account = account_map.get(candidate["account_id"])
        if account is None:
            n_skipped += 1
            continue

        checks: List[str] = []
        if check_shell_chain_involvement(
            candidate, graph, account_map, amount_tolerance, low_activity_tx_threshold
        ):
            checks.append(CHECK_SHELL_CHAIN)
        if check_cycle_participation(candidate["account_id"], cycle_nodes, graph):
            checks.append(CHECK_CYCLE)
        if check_rapid_layered_outflow(
            candidate,
            outgoing_by_sender.get(candidate["account_id"]),
            rapid_window,
            rapid_outflow_ratio,
        ):
            checks.append(CHECK_RAPID_OUTFLOW)
        if check_role_conflict(candidate["account_id"], shell_nodes, fan_out_nodes, cycle_nodes):
            checks.append(CHECK_ROLE_CONFLICT)

        _apply_classification(account, checks)
        if account.fan_in_classification == CONFIRMED_MONEY_LAUNDERING:
            n_confirmed += 1

        log.debug(
            "fan-in candidate %s: %d senders, %.2f received, checks=%s",
            candidate["account_id"],
            len(candidate["senders"]),
            candidate["total_received"],
            checks or "none",
        )

    log.info(
        "Fan-in validation: %d candidate(s), %d confirmed, %d skipped (unknown account)",
        len(candidates) - n_skipped,
        n_confirmed,
        n_skipped,
    )


def identify_aggregation_candidates(
    df: pd.DataFrame,
    window_hours: float = config.FAN_IN_WINDOW_HOURS,
    min_unique_senders: int = config.MIN_UNIQUE_SENDERS,
) -> List[Dict[str, Any]]:
    """Phase 1: find the best fan-in window for every receiver.

    *df* must already be prepared (parsed timestamps).  Receivers are
    visited in sorted order so the output is deterministic.

    Returns
    -------
    list[dict]
        One dict per candidate with keys ``account_id``, ``senders``
        (set), ``total_received``, ``window_start``, ``window_end``.
    """
    window = pd.Timedelta(hours=window_hours)
    candidates: List[Dict[str, Any]] = []

    for receiver, grp in df.groupby("receiver_id", sort=True):
        if grp["sender_id"].nunique() < min_unique_senders:
            continue
        # Secondary keys pin down which equal-timestamp rows fall inside a window
        ordered = grp.sort_values(["timestamp", "sender_id", "amount"], kind="mergesort")
        best = _best_window(
            ordered["sender_id"].tolist(),
            ordered["timestamp"].tolist(),
            ordered["amount"].tolist(),
            window,
            min_unique_senders,
        )
        if best is not None:
            best["account_id"] = receiver
            candidates.append(best)

    return candidates


def check_shell_chain_involvement(
    candidate: Dict[str, Any],
    graph: nx.MultiDiGraph,
    account_map: Mapping[str, AccountNode],
    amount_tolerance: float = config.AMOUNT_TOLERANCE,
    low_activity_tx_threshold: int = config.LOW_ACTIVITY_TX_THRESHOLD,
) -> bool:
    """Does the candidate push its aggregate through a shell-like hop?

    A neighbour qualifies when it has few lifetime transactions, received
    at least half of the tolerance-adjusted aggregate from the candidate,
    and forwards to someone other than the candidate.
    """
    candidate_id = candidate["account_id"]
    if candidate_id not in graph:
        return False

    lower_bound = candidate["total_received"] * (1 - amount_tolerance)

    for neighbor in graph.successors(candidate_id):
        node = account_map.get(neighbor)
        if node is None or node.total_transactions > low_activity_tx_threshold:
            continue
        if outgoing_amount(graph, candidate_id, neighbor) < lower_bound * 0.5:
            continue
        if any(hop != candidate_id for hop in graph.successors(neighbor)):
            return True

    return False


def check_cycle_participation(
    candidate_id: str,
    cycle_nodes: Set[str],
    graph: nx.MultiDiGraph,
) -> bool:
    """Is the candidate in a cycle, or does it pay straight into one?"""
    if candidate_id in cycle_nodes:
        return True
    if candidate_id not in graph:
        return False
    return any(neighbor in cycle_nodes for neighbor in graph.successors(candidate_id))


def check_rapid_layered_outflow(
    candidate: Dict[str, Any],
    outgoing: Optional[pd.DataFrame],
    rapid_window: pd.Timedelta,
    rapid_outflow_ratio: float = config.RAPID_OUTFLOW_RATIO,
) -> bool:
    """Did the candidate forward enough of the aggregate shortly afterwards?

    No running balance is kept: everything sent between the window start
    and ``window_end + rapid_window`` is compared with the aggregate.
    """
    if outgoing is None or outgoing.empty:
        return False

    ts = outgoing["timestamp"]
    mask = (ts >= candidate["window_start"]) & (ts <= candidate["window_end"] + rapid_window)
    total_outflow = float(outgoing.loc[mask, "amount"].sum())
    return total_outflow >= candidate["total_received"] * rapid_outflow_ratio


def check_role_conflict(
    candidate_id: str,
    shell_nodes: Set[str],
    fan_out_nodes: Set[str],
    cycle_nodes: Set[str],
) -> bool:
    """Is the aggregator also acting as a relay somewhere else?"""
    return (
        candidate_id in shell_nodes
        or candidate_id in fan_out_nodes
        or candidate_id in cycle_nodes
    )


# ── Internal helpers ─────────────────────────────────────────────────────────

def _best_window(
    senders: List[str],
    timestamps: List[pd.Timestamp],
    amounts: List[float],
    window: pd.Timedelta,
    min_unique_senders: int,
) -> Optional[Dict[str, Any]]:
    """Two-pointer scan over time-sorted inbound transactions.

    ``in_window`` counts transactions per sender between the pointers, so
    the unique-sender count is ``len(in_window)`` and each pointer move is
    O(1).  A later window replaces the best only with a strictly larger
    count.
    """
    in_window: Counter = Counter()
    left = 0
    best_count = 0
    best_left = best_right = -1

    for right, sender in enumerate(senders):
        in_window[sender] += 1
        while left < right and timestamps[right] - timestamps[left] > window:
            leaving = senders[left]
            in_window[leaving] -= 1
            if in_window[leaving] == 0:
                del in_window[leaving]
            left += 1

        unique = len(in_window)
        if unique >= min_unique_senders and unique > best_count:
            best_count = unique
            best_left, best_right = left, right

    if best_count == 0:
        return None

    # Every transaction between the pointers comes from a window sender
    return {
        "senders": set(senders[best_left:best_right + 1]),
        "total_received": float(sum(amounts[best_left:best_right + 1])),
        "window_start": timestamps[best_left],
        "window_end": timestamps[best_right],
    }


def _apply_classification(account: AccountNode, checks: List[str]) -> None:
    """Write the classification without ever downgrading an earlier one."""
    merged = set(checks)
    if account.fan_in_classification == CONFIRMED_MONEY_LAUNDERING:
        merged.update(account.corroboration_checks)
    ordered = [name for name in CHECK_ORDER if name in merged]

    account.corroboration_checks = ordered
    account.fan_in_classification = (
        CONFIRMED_MONEY_LAUNDERING if ordered else AGGREGATION_CANDIDATE
    )
    account.record_algorithm(ALGORITHM_NAME)
    account.append_explanation(_explanation_fragment(ordered), EXPLANATION_SEPARATOR)


def _explanation_fragment(checks: List[str]) -> str:
    if checks:
        label = "CONFIRMED MONEY LAUNDERING"
        detail = f"Corroboration: {', '.join(checks)}"
    else:
        label = "AGGREGATION CANDIDATE (unconfirmed)"
        detail = "No corroboration evidence found"
    return f"Fan-In Validation: {label}. {detail}"


def _flatten(groups: Iterable[Iterable[str]]) -> Set[str]:
    return {node for group in groups for node in group}
