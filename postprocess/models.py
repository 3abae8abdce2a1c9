"""
models.py — Account record shared by the upstream detectors and the
post-detection passes.

The record is owned by the orchestrating stage and handed to each pass by
reference.  Field ownership:

- ``suspicion_score`` / ``is_suspicious`` — relationship intelligence only
  (and only downward).
- ``fan_in_classification`` / ``corroboration_checks`` — fan-in validation only.
- ``explanation`` / ``triggered_algorithms`` — shared, append-only.
- ``detected_patterns`` / ``total_transactions`` — upstream, read-only here.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Literal, Optional

import networkx as nx
from pydantic import BaseModel, Field

FanInClassification = Literal["aggregation_candidate", "confirmed_money_laundering"]


class AccountNode(BaseModel):
    account_id: str
    suspicion_score: float = Field(default=0.0, ge=0.0)
    is_suspicious: bool = False
    detected_patterns: List[str] = Field(default_factory=list)
    total_transactions: int = 0
    explanation: str = ""
    triggered_algorithms: List[str] = Field(default_factory=list)
    fan_in_classification: Optional[FanInClassification] = None
    corroboration_checks: List[str] = Field(default_factory=list)

    def record_algorithm(self, name: str) -> None:
        """Append *name* to ``triggered_algorithms`` unless already present."""
        if name not in self.triggered_algorithms:
            self.triggered_algorithms.append(name)

    def append_explanation(self, fragment: str, separator: str) -> bool:
        """Append *fragment* to the audit trail.

        Returns False (and leaves the explanation untouched) when the exact
        fragment is already recorded, which keeps re-runs idempotent.
        """
        if fragment in self.explanation:
            return False
        if self.explanation:
            self.explanation += separator + fragment
        else:
            self.explanation = fragment
        return True


def index_accounts(accounts: Iterable[AccountNode]) -> Dict[str, AccountNode]:
    """Map account_id → AccountNode (last one wins on duplicate ids)."""
    return {acct.account_id: acct for acct in accounts}


def accounts_from_transactions(
    G: nx.MultiDiGraph,
    scores: Optional[Dict[str, float]] = None,
    patterns: Optional[Dict[str, List[str]]] = None,
) -> List[AccountNode]:
    """Seed one ``AccountNode`` per graph node.

    ``total_transactions`` comes from the ``tx_count`` node attribute set by
    ``dataio.graph_builder.build_transaction_graph``.  Accounts missing from
    *scores* start at 0.
    """
    scores = scores or {}
    patterns = patterns or {}
    accounts: List[AccountNode] = []
    for node in sorted(G.nodes()):
        score = float(scores.get(node, 0.0))
        accounts.append(
            AccountNode(
                account_id=node,
                suspicion_score=score,
                is_suspicious=score > 0,
                detected_patterns=list(patterns.get(node, [])),
                total_transactions=int(G.nodes[node].get("tx_count", 0)),
            )
        )
    return accounts
