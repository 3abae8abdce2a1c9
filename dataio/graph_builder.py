"""
graph_builder.py — Build the adjacency multigraph the fan-in pass uses for
neighbour lookups.

Each node is an account.  Each edge is one transaction, so
``G[sender][receiver]`` yields every transaction between that pair.
"""

from __future__ import annotations

import networkx as nx
import pandas as pd


# ── Public API ───────────────────────────────────────────────────────────────

def build_transaction_graph(df: pd.DataFrame) -> nx.MultiDiGraph:
    """Build a directed multigraph from a prepared transaction DataFrame.

    Parallel edges are preserved: the shell-chain check sums every
    candidate → neighbour transfer, not just the first.

    Node attributes
    ----------------
    - total_sent : float
    - total_received : float
    - tx_count : int — transactions sent plus received

    Edge attributes (per edge)
    ---------------------------
    - amount : float
    - timestamp : pd.Timestamp
    - transaction_id : str (when the input carries one)
    """
    G = nx.MultiDiGraph()
    has_tx_id = "transaction_id" in df.columns

    for row in df.itertuples(index=False):
        attrs = {"amount": float(row.amount), "timestamp": row.timestamp}
        if has_tx_id:
            attrs["transaction_id"] = row.transaction_id
        G.add_edge(row.sender_id, row.receiver_id, **attrs)

    sent = df.groupby("sender_id")["amount"].agg(["sum", "count"])
    received = df.groupby("receiver_id")["amount"].agg(["sum", "count"])

    for node in G.nodes():
        s_sum, s_count = (sent.at[node, "sum"], sent.at[node, "count"]) if node in sent.index else (0.0, 0)
        r_sum, r_count = (received.at[node, "sum"], received.at[node, "count"]) if node in received.index else (0.0, 0)
        G.nodes[node].update(
            {
                "total_sent": float(s_sum),
                "total_received": float(r_sum),
                "tx_count": int(s_count) + int(r_count),
            }
        )

    return G


def outgoing_amount(G: nx.MultiDiGraph, sender: str, receiver: str) -> float:
    """Sum of every sender → receiver transaction amount in *G*."""
    if not G.has_edge(sender, receiver):
        return 0.0
    return float(sum(data.get("amount", 0.0) for data in G[sender][receiver].values()))
