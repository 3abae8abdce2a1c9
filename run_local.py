"""
run_local.py — Command-line interface for the post-detection passes.

Run with:  python run_local.py transactions.csv accounts.json findings.json [--json]
           python run_local.py --sample [--json]    (built-in sample batch)
           add --verbose for per-account debug logging
"""

import logging
import sys
import time
from pathlib import Path

import pandas as pd

from dataio.findings import load_accounts, load_findings
from dataio.graph_builder import build_transaction_graph
from dataio.json_export import generate_report, report_to_json_string
from dataio.sample_data import generate_sample_dataset
from dataio.validation import prepare_transactions
from postprocess.pipeline import run_post_detection


def print_separator(title: str = "") -> None:
    """Print a visual separator."""
    if title:
        print(f"\n{'='*60}\n  {title}\n{'='*60}")
    else:
        print("-" * 60)


def load_inputs(args: list) -> dict:
    """Load the batch from files, or generate the sample batch."""
    positional = [a for a in args if not a.startswith("--")]

    if "--sample" in args or not positional:
        print("[INFO] Using built-in sample batch...")
        inputs = generate_sample_dataset()
        inputs["transactions"] = prepare_transactions(inputs["transactions"])
        inputs["graph"] = build_transaction_graph(inputs["transactions"])
        return inputs

    if len(positional) != 3:
        print("[ERROR] Expected: transactions.csv accounts.json findings.json")
        sys.exit(2)

    paths = [Path(p) for p in positional]
    for p in paths:
        if not p.exists():
            print(f"[ERROR] File not found: {p}")
            sys.exit(1)

    tx_path, accounts_path, findings_path = paths
    print(f"[INFO] Loading transactions: {tx_path}")
    transactions = prepare_transactions(pd.read_csv(tx_path))
    graph = build_transaction_graph(transactions)
    findings = load_findings(findings_path)
    return {
        "transactions": transactions,
        "graph": graph,
        "accounts": load_accounts(accounts_path, graph),
        "cycles": findings["cycles"],
        "shell_chains": findings["shell_chains"],
        "fan_out": findings["fan_out"],
    }


def run(inputs: dict) -> dict:
    """Run both passes over a loaded batch."""
    df = inputs["transactions"]
    G = inputs["graph"]
    print(f"[OK] Loaded {len(df)} transactions, {len(inputs['accounts'])} accounts")
    print(f"[OK] Graph: {G.number_of_nodes()} accounts, {G.number_of_edges()} transactions")

    print("[...] Running fan-in validation and relationship intelligence...")
    return run_post_detection(
        inputs["accounts"],
        df,
        G,
        inputs["cycles"],
        inputs["shell_chains"],
        inputs["fan_out"],
    )


def print_results(summary: dict) -> None:
    """Print the pass outcomes to the console."""
    by_id = {a.account_id: a for a in summary["accounts"]}

    print_separator("FAN-IN VALIDATION")
    confirmed = summary["confirmed_money_laundering"]
    unconfirmed = summary["aggregation_candidates"]
    if confirmed:
        print("Confirmed money laundering:")
        for acc in confirmed:
            checks = ", ".join(by_id[acc].corroboration_checks)
            print(f"  - {acc:<20} {checks}")
    if unconfirmed:
        print("\nAggregation candidates (no corroboration):")
        for acc in unconfirmed:
            print(f"  - {acc}")
    if not confirmed and not unconfirmed:
        print("No fan-in candidates found.")

    print_separator("RELATIONSHIP INTELLIGENCE")
    dampened = summary["dampened_accounts"]
    if dampened:
        print(f"{'Account':<20} {'Reduction':>10} {'Score':>8}")
        print("-" * 40)
        for acc, reduction in sorted(dampened.items(), key=lambda kv: (-kv[1], kv[0])):
            print(f"{acc:<20} {reduction:>10g} {by_id[acc].suspicion_score:>8g}")
    else:
        print("No accounts dampened.")

    print_separator("SUMMARY")
    still = sum(1 for a in summary["accounts"] if a.is_suspicious)
    print(f"  Accounts:                 {len(summary['accounts'])}")
    print(f"  Fan-in confirmed:         {len(confirmed)}")
    print(f"  Fan-in unconfirmed:       {len(unconfirmed)}")
    print(f"  Accounts dampened:        {len(dampened)}")
    print(f"  Still suspicious:         {still}")


def main():
    args = sys.argv[1:]
    logging.basicConfig(
        level=logging.DEBUG if "--verbose" in args else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print_separator("Post-Detection Corroboration & Dampening")

    start_time = time.time()
    try:
        inputs = load_inputs(args)
        summary = run(inputs)
    except ValueError as exc:  # bad batch, thresholds or input files
        print(f"\n[ERROR] {exc}")
        sys.exit(1)
    elapsed = time.time() - start_time

    print_results(summary)

    if "--json" in args:
        report = generate_report(summary["accounts"], summary, elapsed)
        output_path = Path("post_detection_report.json")
        output_path.write_text(report_to_json_string(report))
        print(f"\n[OK] JSON report saved to: {output_path}")

    print("\n" + "=" * 60)
    print("  Post-detection complete!")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    main()
