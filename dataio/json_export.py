"""
json_export.py — Serialise the post-detection results.

Output Schema
-------------
{
  "accounts": [ ... ],
  "fan_in_validation": { "aggregation_candidates": [...],
                         "confirmed_money_laundering": [...] },
  "relationship_intelligence": { "dampened_accounts": {...} },
  "summary": { ... }
}
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

from postprocess import config
from postprocess.models import AccountNode


def generate_report(
    accounts: List[AccountNode],
    pipeline_summary: Dict[str, Any],
    processing_time: float,
    score_threshold: float = 0.0,
) -> Dict[str, Any]:
    """Build the JSON-serialisable report dictionary.

    Parameters
    ----------
    accounts : list[AccountNode]
        Accounts after both passes.
    pipeline_summary : dict
        Output of ``postprocess.pipeline.run_post_detection``.
    processing_time : float
        Wall-clock seconds for the run.
    score_threshold : float
        Accounts at or below this score are left out of ``accounts``
        unless the fan-in pass classified them.
    """
    listed: List[Dict[str, Any]] = []
    for acct in sorted(accounts, key=lambda a: (-a.suspicion_score, a.account_id)):
        if acct.suspicion_score <= score_threshold and acct.fan_in_classification is None:
            continue
        listed.append(acct.model_dump())

    confirmed = pipeline_summary.get("confirmed_money_laundering", [])
    unconfirmed = pipeline_summary.get("aggregation_candidates", [])
    dampened = pipeline_summary.get("dampened_accounts", {})

    summary = {
        "total_accounts_analyzed": len(accounts),
        "suspicious_accounts_remaining": sum(1 for a in accounts if a.is_suspicious),
        "fan_in_candidates": len(confirmed) + len(unconfirmed),
        "fan_in_confirmed": len(confirmed),
        "accounts_dampened": len(dampened),
        "total_score_reduction": pipeline_summary.get("total_reduction", 0.0),
        "processing_time_seconds": round(processing_time, 3),
        "thresholds": config.as_dict(),
    }

    return {
        "accounts": listed,
        "fan_in_validation": {
            "aggregation_candidates": unconfirmed,
            "confirmed_money_laundering": confirmed,
        },
        "relationship_intelligence": {"dampened_accounts": dampened},
        "summary": summary,
    }


def report_to_json_string(report: Dict[str, Any], indent: int = 2) -> str:
    """Serialise the report dict to a pretty-printed JSON string."""
    return json.dumps(report, indent=indent, default=str)
