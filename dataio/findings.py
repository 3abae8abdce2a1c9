"""
findings.py — Load the upstream inputs the post-detection passes consume.

accounts.json
    A list of account objects (``account_id``, ``suspicion_score``,
    ``detected_patterns``, ``total_transactions``, ...).

findings.json
    ``{"cycles": [[...], ...], "shell_chains": [[...], ...],
    "fan_out": {"SRC": ["R1", "R2", ...], ...}}``.  Every key is optional.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

import networkx as nx
from pydantic import ValidationError

from postprocess.models import AccountNode

PathLike = Union[str, Path]


def load_accounts(path: PathLike, graph: Optional[nx.MultiDiGraph] = None) -> List[AccountNode]:
    """Read accounts.json into ``AccountNode`` records.

    ``is_suspicious`` is derived from the score when the file omits it.
    A missing ``total_transactions`` is filled from the ``tx_count`` node
    attribute of *graph*; without a graph it is an error.
    """
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a JSON list of accounts")

    accounts: List[AccountNode] = []
    for i, item in enumerate(raw):
        try:
            node = AccountNode.model_validate(item)
        except ValidationError as exc:
            raise ValueError(f"{path}: account #{i} is invalid: {exc}") from exc
        if "is_suspicious" not in item:
            node.is_suspicious = node.suspicion_score > 0
        if "total_transactions" not in item:
            if graph is None:
                raise ValueError(
                    f"{path}: account #{i} ({node.account_id}) has no total_transactions"
                )
            node.total_transactions = (
                int(graph.nodes[node.account_id].get("tx_count", 0))
                if node.account_id in graph
                else 0
            )
        accounts.append(node)
    return accounts


def load_findings(path: PathLike) -> Dict[str, Any]:
    """Read findings.json into ``cycles``, ``shell_chains`` and ``fan_out``."""
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a JSON object")

    fan_out: Dict[str, Set[str]] = {
        str(src): {str(r) for r in receivers}
        for src, receivers in (raw.get("fan_out") or {}).items()
    }
    return {
        "cycles": [[str(n) for n in c] for c in raw.get("cycles") or []],
        "shell_chains": [[str(n) for n in c] for c in raw.get("shell_chains") or []],
        "fan_out": fan_out,
    }
