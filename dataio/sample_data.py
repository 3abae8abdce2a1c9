"""
sample_data.py — Synthetic batch for demonstrating the post-detection
passes.

Patterns embedded:
- Fan-in with no corroboration (colleagues pooling money for a gift)
- Fan-in forwarded through a low-activity shell account
- Fan-in drained to an exchange within hours
- Fan-in into a cycle member
- Monthly rent and payroll relationships
- A cycle member that also pays a monthly subscription
- Random background traffic

Upstream findings (cycles, shell chains, fan-out sources) and starting
suspicion scores are supplied alongside, the way the detection stage would
hand them over.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Set

import pandas as pd

from dataio.graph_builder import build_transaction_graph
from postprocess.models import accounts_from_transactions


def generate_sample_dataset(
    n_normal: int = 150,
    seed: int = 42,
) -> Dict[str, Any]:
    """Generate transactions, accounts and upstream findings.

    Parameters
    ----------
    n_normal : int
        Number of background transactions.
    seed : int
        Random seed for reproducibility.

    Returns
    -------
    dict with keys:
        transactions : pd.DataFrame
        accounts : list[AccountNode]
        cycles : list[list[str]]
        shell_chains : list[list[str]]
        fan_out : dict[str, set[str]]
    """
    rng = random.Random(seed)

    rows: List[dict] = []
    tx_counter = 0
    base_time = datetime(2025, 1, 6, 9, 0, 0)

    def _add_tx(sender: str, receiver: str, amount: float, ts: datetime) -> None:
        nonlocal tx_counter
        tx_counter += 1
        rows.append({
            "transaction_id": f"TXN_{tx_counter:05d}",
            "sender_id": sender,
            "receiver_id": receiver,
            "amount": round(amount, 2),
            "timestamp": ts.strftime("%Y-%m-%d %H:%M:%S"),
        })

    # ── 1. Background traffic ────────────────────────────────────────────
    normal_accounts = [f"ACC_{i:04d}" for i in range(1, 41)]
    for _ in range(n_normal):
        s, r = rng.sample(normal_accounts, 2)
        ts = base_time + timedelta(
            days=rng.randint(0, 180),
            hours=rng.randint(0, 23),
            minutes=rng.randint(0, 59),
        )
        _add_tx(s, r, rng.uniform(10, 2000), ts)

    # ── 2. Gift pool: 4 colleagues → 1 organiser, nothing forwarded ──────
    t = base_time + timedelta(days=12, hours=8)
    for i in range(1, 5):
        _add_tx(f"POOL_S{i:02d}", "POOL_HUB", 50.0, t)
        t += timedelta(hours=2)

    # ── 3. Fan-in forwarded through a shell (3 days later) ───────────────
    t = base_time + timedelta(days=30, hours=10)
    collected = 0.0
    for i in range(1, 6):
        amt = rng.uniform(480, 500)
        collected += round(amt, 2)
        _add_tx(f"SMURF_S{i:02d}", "COLLECTOR_A", amt, t)
        t += timedelta(hours=rng.randint(2, 5))
    t += timedelta(days=3)
    _add_tx("COLLECTOR_A", "SHELL_X01", collected * 0.9, t)
    _add_tx("SHELL_X01", "SINK_A", collected * 0.88, t + timedelta(hours=3))

    # ── 4. Fan-in drained to an exchange within hours ────────────────────
    t = base_time + timedelta(days=45, hours=13)
    collected = 0.0
    for i in range(1, 5):
        amt = rng.uniform(900, 1000)
        collected += round(amt, 2)
        _add_tx(f"VICTIM_{i:02d}", "COLLECTOR_B", amt, t)
        t += timedelta(minutes=rng.randint(20, 90))
    _add_tx("COLLECTOR_B", "EXCHANGE_01", collected * 0.7, t + timedelta(hours=4))
    for i in range(1, 5):
        _add_tx(rng.choice(normal_accounts), "EXCHANGE_01", rng.uniform(100, 800),
                base_time + timedelta(days=rng.randint(0, 180)))

    # ── 5. Cycle with a fan-in entry point ───────────────────────────────
    ring = ["MULE_A01", "MULE_A02", "MULE_A03"]
    t = base_time + timedelta(days=60, hours=2)
    for i in range(1, 4):
        _add_tx(f"FEEDER_{i:02d}", "MULE_A01", 1500.0, t)
        t += timedelta(hours=1)
    for i in range(len(ring)):
        _add_tx(ring[i], ring[(i + 1) % len(ring)], 4300.0, t)
        t += timedelta(hours=2)

    # ── 6. Rent: tenant → landlord, monthly for six months ───────────────
    for month in range(6):
        ts = base_time + timedelta(days=30 * month, hours=rng.randint(0, 6))
        _add_tx("TENANT_01", "LANDLORD_01", 1450.0, ts)

    # ── 7. Payroll: employer → staff, monthly for four months ────────────
    employees = [f"EMP_{i:03d}" for i in range(1, 11)]
    for month in range(4):
        t = base_time + timedelta(days=30 * month + 24, hours=7)
        for emp in employees:
            _add_tx("EMPLOYER_01", emp, rng.uniform(2950, 3050), t)
            t += timedelta(seconds=rng.randint(1, 10))

    # ── 8. Cycle member paying a monthly subscription ────────────────────
    for month in range(5):
        ts = base_time + timedelta(days=30 * month + 3)
        _add_tx("MULE_A02", "STREAMING_CO", 15.99, ts)

    df = pd.DataFrame(rows)
    df = df.sample(frac=1, random_state=seed).reset_index(drop=True)

    # ── Upstream findings ────────────────────────────────────────────────
    cycles = [list(ring)]
    shell_chains = [["COLLECTOR_A", "SHELL_X01", "SINK_A"]]
    fan_out: Dict[str, Set[str]] = {"EMPLOYER_01": set(employees)}

    scores = {
        "POOL_HUB": 35.0,
        "COLLECTOR_A": 45.0,
        "COLLECTOR_B": 55.0,
        "MULE_A01": 85.0,
        "MULE_A02": 80.0,
        "MULE_A03": 80.0,
        "TENANT_01": 20.0,
        "LANDLORD_01": 30.0,
        "EMPLOYER_01": 40.0,
        "STREAMING_CO": 12.0,
        "SHELL_X01": 25.0,
    }
    patterns = {
        "POOL_HUB": ["fan_in_hub"],
        "COLLECTOR_A": ["fan_in_hub"],
        "COLLECTOR_B": ["fan_in_hub", "rapid_passthrough_x1"],
        "MULE_A01": ["cycle_participant_x1", "fan_in_hub"],
        "MULE_A02": ["cycle_participant_x1"],
        "MULE_A03": ["cycle_participant_x1"],
        "EMPLOYER_01": ["fan_out_hub"],
        "SHELL_X01": ["shell_network_member"],
        "LANDLORD_01": ["low_entropy"],
    }

    prepared = df.assign(timestamp=pd.to_datetime(df["timestamp"]))
    accounts = accounts_from_transactions(build_transaction_graph(prepared), scores, patterns)

    return {
        "transactions": df,
        "accounts": accounts,
        "cycles": cycles,
        "shell_chains": shell_chains,
        "fan_out": fan_out,
    }
