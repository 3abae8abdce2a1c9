"""
Shared fixtures for the post-detection test suite.
"""

from datetime import datetime, timedelta

import pandas as pd
import pytest

from dataio.graph_builder import build_transaction_graph
from dataio.validation import prepare_transactions
from postprocess.models import AccountNode


BASE_TIME = datetime(2025, 3, 3, 9, 0, 0)


def tx(sender, receiver, amount, hours=0.0, days=0.0):
    """One transaction row, offset from BASE_TIME."""
    return {
        "sender_id": sender,
        "receiver_id": receiver,
        "amount": amount,
        "timestamp": BASE_TIME + timedelta(days=days, hours=hours),
    }


class Batch:
    """Transactions, graph and accounts built from a list of rows."""

    def __init__(self, rows, scores=None, total_transactions=None):
        self.df = pd.DataFrame(rows, columns=["sender_id", "receiver_id", "amount", "timestamp"])
        self.graph = build_transaction_graph(prepare_transactions(self.df))
        scores = scores or {}
        total_transactions = total_transactions or {}
        self.accounts = []
        for node in sorted(self.graph.nodes()):
            score = scores.get(node, 30.0)
            self.accounts.append(
                AccountNode(
                    account_id=node,
                    suspicion_score=score,
                    is_suspicious=score > 0,
                    detected_patterns=["upstream_pattern"],
                    total_transactions=total_transactions.get(
                        node, self.graph.nodes[node]["tx_count"]
                    ),
                    explanation="Upstream detectors flagged this account",
                )
            )

    def account(self, account_id):
        return next(a for a in self.accounts if a.account_id == account_id)


@pytest.fixture
def make_batch():
    return Batch


@pytest.fixture
def fan_in_rows():
    """R receives 100 from each of A, B and C within 10 hours."""
    return [
        tx("A", "R", 100.0, hours=0),
        tx("B", "R", 100.0, hours=4),
        tx("C", "R", 100.0, hours=10),
    ]


@pytest.fixture
def monthly_rows():
    """X pays Y 1000 every 30 days, four times (90-day span)."""
    return [tx("X", "Y", 1000.0, days=30 * i) for i in range(4)]
