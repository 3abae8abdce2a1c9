"""
pipeline.py — Run both post-detection passes over one batch.

The passes own disjoint fields but share the append-only ``explanation``
and ``triggered_algorithms``, so they run one after the other: fan-in
validation completes before relationship intelligence starts.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Set

import networkx as nx
import pandas as pd

from dataio.validation import prepare_transactions
from postprocess.fan_in_validation import (
    AGGREGATION_CANDIDATE,
    CONFIRMED_MONEY_LAUNDERING,
    validate_fan_in_two_phase,
)
from postprocess.models import AccountNode
from postprocess.relationship_intelligence import adjust_scores_using_relationship_intelligence

log = logging.getLogger(__name__)


def run_post_detection(
    accounts: List[AccountNode],
    transactions: pd.DataFrame,
    graph: nx.MultiDiGraph,
    cycles: Iterable[Iterable[str]],
    shell_chains: Iterable[Iterable[str]],
    fan_out_map: Mapping[str, Set[str]],
) -> Dict[str, Any]:
    """Fan-in validation, then relationship intelligence.

    Returns
    -------
    dict with keys:
        accounts : list[AccountNode] — the mutated input list
        aggregation_candidates : list[str]
        confirmed_money_laundering : list[str]
        dampened_accounts : dict[str, float] — account → score reduction
        total_reduction : float
    """
    # Fail before either pass touches an account
    df = prepare_transactions(transactions)
    cycles = [list(c) for c in cycles]
    cycle_members = {node for cycle in cycles for node in cycle}

    before = {a.account_id: a.suspicion_score for a in accounts}

    validate_fan_in_two_phase(
        accounts, df, graph, cycles, shell_chains, fan_out_map, prepared=True
    )
    adjust_scores_using_relationship_intelligence(accounts, df, cycle_members, prepared=True)

    dampened = {
        a.account_id: round(before[a.account_id] - a.suspicion_score, 6)
        for a in accounts
        if a.suspicion_score < before.get(a.account_id, a.suspicion_score)
    }
    summary = {
        "accounts": accounts,
        "aggregation_candidates": sorted(
            a.account_id for a in accounts if a.fan_in_classification == AGGREGATION_CANDIDATE
        ),
        "confirmed_money_laundering": sorted(
            a.account_id for a in accounts if a.fan_in_classification == CONFIRMED_MONEY_LAUNDERING
        ),
        "dampened_accounts": dampened,
        "total_reduction": round(sum(dampened.values()), 6),
    }
    log.info(
        "Post-detection complete: %d unconfirmed fan-in, %d confirmed, %d dampened",
        len(summary["aggregation_candidates"]),
        len(summary["confirmed_money_laundering"]),
        len(dampened),
    )
    return summary
