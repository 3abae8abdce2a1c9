"""
Tests for two-phase fan-in validation.
"""

import pandas as pd
import pytest

from conftest import BASE_TIME, tx
from dataio.validation import TransactionValidationError, prepare_transactions
from postprocess.config import ConfigurationError
from postprocess.fan_in_validation import (
    AGGREGATION_CANDIDATE,
    ALGORITHM_NAME,
    CHECK_CYCLE,
    CHECK_RAPID_OUTFLOW,
    CHECK_ROLE_CONFLICT,
    CHECK_SHELL_CHAIN,
    CONFIRMED_MONEY_LAUNDERING,
    check_shell_chain_involvement,
    identify_aggregation_candidates,
    validate_fan_in_two_phase,
)
from postprocess.models import index_accounts


def run(batch, cycles=(), shell_chains=(), fan_out=None, **kwargs):
    validate_fan_in_two_phase(
        batch.accounts,
        batch.df,
        batch.graph,
        [list(c) for c in cycles],
        [list(c) for c in shell_chains],
        fan_out or {},
        **kwargs,
    )


class TestCandidateIdentification:
    """Phase 1: sliding-window candidate detection."""

    def test_three_senders_within_window(self, fan_in_rows):
        df = prepare_transactions(pd.DataFrame(fan_in_rows))
        candidates = identify_aggregation_candidates(df)

        assert len(candidates) == 1
        cand = candidates[0]
        assert cand["account_id"] == "R"
        assert cand["senders"] == {"A", "B", "C"}
        assert cand["total_received"] == pytest.approx(300.0)
        assert cand["window_start"] == pd.Timestamp(BASE_TIME)
        assert cand["window_end"] == pd.Timestamp(BASE_TIME) + pd.Timedelta(hours=10)

    def test_two_senders_is_not_a_candidate(self):
        df = prepare_transactions(pd.DataFrame([
            tx("A", "R", 100.0, hours=0),
            tx("B", "R", 100.0, hours=1),
        ]))
        assert identify_aggregation_candidates(df) == []

    def test_repeat_sender_counts_once(self):
        df = prepare_transactions(pd.DataFrame([
            tx("A", "R", 100.0, hours=0),
            tx("A", "R", 100.0, hours=1),
            tx("A", "R", 100.0, hours=2),
            tx("B", "R", 100.0, hours=3),
        ]))
        assert identify_aggregation_candidates(df) == []

    def test_senders_spread_beyond_window(self):
        df = prepare_transactions(pd.DataFrame([
            tx("A", "R", 100.0, hours=0),
            tx("B", "R", 100.0, hours=40),
            tx("C", "R", 100.0, hours=80),
        ]))
        assert identify_aggregation_candidates(df) == []

    def test_window_width_is_inclusive(self):
        df = prepare_transactions(pd.DataFrame([
            tx("A", "R", 100.0, hours=0),
            tx("B", "R", 100.0, hours=36),
            tx("C", "R", 100.0, hours=72),
        ]))
        candidates = identify_aggregation_candidates(df)
        assert [c["account_id"] for c in candidates] == ["R"]

    def test_keeps_window_with_most_unique_senders(self):
        rows = [
            tx("A", "R", 10.0, hours=0),
            tx("B", "R", 10.0, hours=1),
            tx("C", "R", 10.0, hours=2),
            # A week later a larger burst
            tx("D", "R", 50.0, days=7),
            tx("E", "R", 50.0, days=7, hours=1),
            tx("F", "R", 50.0, days=7, hours=2),
            tx("G", "R", 50.0, days=7, hours=3),
        ]
        df = prepare_transactions(pd.DataFrame(rows))
        (cand,) = identify_aggregation_candidates(df)

        assert cand["senders"] == {"D", "E", "F", "G"}
        assert cand["total_received"] == pytest.approx(200.0)
        assert cand["window_start"] == pd.Timestamp(BASE_TIME) + pd.Timedelta(days=7)

    def test_first_window_wins_ties(self):
        rows = [
            tx("A", "R", 10.0, hours=0),
            tx("B", "R", 10.0, hours=1),
            tx("C", "R", 10.0, hours=2),
            tx("D", "R", 99.0, days=7),
            tx("E", "R", 99.0, days=7, hours=1),
            tx("F", "R", 99.0, days=7, hours=2),
        ]
        df = prepare_transactions(pd.DataFrame(rows))
        (cand,) = identify_aggregation_candidates(df)

        assert cand["senders"] == {"A", "B", "C"}
        assert cand["total_received"] == pytest.approx(30.0)

    def test_one_candidate_per_receiver(self):
        rows = [tx(s, "R", 10.0, hours=i) for i, s in enumerate("ABCDEF")]
        rows += [tx(s, "R", 10.0, days=10, hours=i) for i, s in enumerate("GHIJ")]
        df = prepare_transactions(pd.DataFrame(rows))
        assert [c["account_id"] for c in identify_aggregation_candidates(df)] == ["R"]

    def test_custom_thresholds(self):
        df = prepare_transactions(pd.DataFrame([
            tx("A", "R", 100.0, hours=0),
            tx("B", "R", 100.0, hours=5),
        ]))
        assert identify_aggregation_candidates(df, window_hours=1, min_unique_senders=2) == []
        assert len(identify_aggregation_candidates(df, window_hours=6, min_unique_senders=2)) == 1


class TestClassification:
    """Phase 2: corroboration and account mutation."""

    def test_plain_fan_in_stays_unconfirmed(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows)
        run(batch)

        r = batch.account("R")
        assert r.fan_in_classification == AGGREGATION_CANDIDATE
        assert r.corroboration_checks == []
        assert r.triggered_algorithms == [ALGORITHM_NAME]
        assert "AGGREGATION CANDIDATE (unconfirmed)" in r.explanation
        assert "No corroboration evidence found" in r.explanation

    def test_shell_chain_forwarding_confirms(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [
            # Forwarded five days later so the rapid-outflow check stays quiet
            tx("R", "N", 290.0, days=5),
            tx("N", "M", 285.0, days=5, hours=2),
        ]
        batch = make_batch(rows, total_transactions={"N": 1})
        run(batch)

        r = batch.account("R")
        assert r.fan_in_classification == CONFIRMED_MONEY_LAUNDERING
        assert r.corroboration_checks == [CHECK_SHELL_CHAIN]
        assert "CONFIRMED MONEY LAUNDERING" in r.explanation
        assert "Corroboration: shell_chain_involvement" in r.explanation

    def test_neighbour_in_cycle(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [tx("R", "K1", 10.0, days=5)]
        batch = make_batch(rows)
        run(batch, cycles=[["K1", "K2", "K3"]])

        r = batch.account("R")
        assert r.corroboration_checks == [CHECK_CYCLE]
        assert r.fan_in_classification == CONFIRMED_MONEY_LAUNDERING

    def test_candidate_in_cycle_is_also_role_conflict(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows)
        run(batch, cycles=[["R", "P", "Q"]])

        assert batch.account("R").corroboration_checks == [CHECK_CYCLE, CHECK_ROLE_CONFLICT]

    def test_rapid_outflow(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [tx("R", "EXCH", 160.0, hours=30)]
        batch = make_batch(rows, total_transactions={"EXCH": 500})
        run(batch)

        assert batch.account("R").corroboration_checks == [CHECK_RAPID_OUTFLOW]

    def test_outflow_below_ratio(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [tx("R", "EXCH", 140.0, hours=30)]
        batch = make_batch(rows, total_transactions={"EXCH": 500})
        run(batch)

        assert batch.account("R").fan_in_classification == AGGREGATION_CANDIDATE

    def test_outflow_after_grace_period(self, make_batch, fan_in_rows):
        # window_end is hour 10; grace period ends at hour 34
        rows = fan_in_rows + [tx("R", "EXCH", 300.0, hours=35)]
        batch = make_batch(rows, total_transactions={"EXCH": 500})
        run(batch)

        assert batch.account("R").fan_in_classification == AGGREGATION_CANDIDATE

    def test_outflow_may_exceed_received(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [tx("R", "EXCH", 5000.0, hours=12)]
        batch = make_batch(rows, total_transactions={"EXCH": 500})
        run(batch)

        assert CHECK_RAPID_OUTFLOW in batch.account("R").corroboration_checks

    def test_role_conflict_from_fan_out(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows)
        run(batch, fan_out={"R": {"X1", "X2", "X3"}})

        assert batch.account("R").corroboration_checks == [CHECK_ROLE_CONFLICT]

    def test_role_conflict_from_shell_membership(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows)
        run(batch, shell_chains=[["S0", "R", "S2"]])

        assert batch.account("R").corroboration_checks == [CHECK_ROLE_CONFLICT]

    def test_checks_reported_in_canonical_order(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [
            tx("R", "N", 290.0, hours=12),
            tx("N", "K1", 280.0, hours=14),
        ]
        batch = make_batch(rows, total_transactions={"N": 2})
        run(batch, cycles=[["N", "K1", "K2"]], fan_out={"R": {"N"}})

        assert batch.account("R").corroboration_checks == [
            CHECK_SHELL_CHAIN,
            CHECK_CYCLE,
            CHECK_RAPID_OUTFLOW,
            CHECK_ROLE_CONFLICT,
        ]

    def test_below_threshold_never_classified(self, make_batch):
        rows = [
            tx("A", "R", 100.0, hours=0),
            tx("B", "R", 100.0, hours=1),
            tx("R", "K1", 200.0, hours=2),
        ]
        batch = make_batch(rows)
        run(batch, cycles=[["R", "K1", "K2"]])

        r = batch.account("R")
        assert r.fan_in_classification is None
        assert r.corroboration_checks == []
        assert ALGORITHM_NAME not in r.triggered_algorithms

    def test_unknown_candidate_is_skipped(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows)
        batch.accounts = [a for a in batch.accounts if a.account_id != "R"]
        before = [a.model_dump() for a in batch.accounts]

        run(batch)

        assert [a.model_dump() for a in batch.accounts] == before

    def test_scores_and_patterns_untouched(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows, scores={"R": 42.0})
        run(batch, fan_out={"R": {"Z"}})

        r = batch.account("R")
        assert r.suspicion_score == 42.0
        assert r.is_suspicious is True
        assert r.detected_patterns == ["upstream_pattern"]
        assert r.explanation.startswith("Upstream detectors flagged this account. Fan-In Validation:")

    def test_rerun_is_idempotent(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows)
        run(batch, fan_out={"R": {"Z"}})
        first = batch.account("R").model_dump()

        run(batch, fan_out={"R": {"Z"}})

        assert batch.account("R").model_dump() == first

    def test_never_downgrades_confirmed(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows)
        r = batch.account("R")
        r.fan_in_classification = CONFIRMED_MONEY_LAUNDERING
        r.corroboration_checks = [CHECK_ROLE_CONFLICT]

        run(batch)

        assert r.fan_in_classification == CONFIRMED_MONEY_LAUNDERING
        assert r.corroboration_checks == [CHECK_ROLE_CONFLICT]

    def test_deterministic(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [tx("R", "EXCH", 200.0, hours=11)]
        results = []
        for ordering in (rows, list(reversed(rows))):
            batch = make_batch(ordering)
            run(batch)
            results.append([a.model_dump() for a in batch.accounts])
        assert results[0] == results[1]


class TestShellChainCheck:
    """Edge cases of the shell-chain predicate."""

    def _candidate(self, total=300.0):
        return {"account_id": "R", "total_received": total}

    def test_round_trip_back_to_candidate_does_not_count(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [
            tx("R", "N", 290.0, days=5),
            tx("N", "R", 280.0, days=5, hours=1),
        ]
        batch = make_batch(rows, total_transactions={"N": 2})
        assert not check_shell_chain_involvement(
            self._candidate(), batch.graph, index_accounts(batch.accounts)
        )

    def test_busy_neighbour_is_not_a_shell(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [
            tx("R", "N", 290.0, days=5),
            tx("N", "M", 280.0, days=5, hours=1),
        ]
        batch = make_batch(rows, total_transactions={"N": 4})
        assert not check_shell_chain_involvement(
            self._candidate(), batch.graph, index_accounts(batch.accounts)
        )

    def test_preservation_bound_is_forty_percent(self, make_batch, fan_in_rows):
        # bound is 300 × 0.8 × 0.5 = 120
        for amount, expected in ((121.0, True), (119.0, False)):
            rows = fan_in_rows + [
                tx("R", "N", amount, days=5),
                tx("N", "M", amount, days=5, hours=1),
            ]
            batch = make_batch(rows, total_transactions={"N": 2})
            assert check_shell_chain_involvement(
                self._candidate(), batch.graph, index_accounts(batch.accounts)
            ) is expected

    def test_parallel_transfers_are_summed(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [
            tx("R", "N", 70.0, days=5),
            tx("R", "N", 70.0, days=5, hours=1),
            tx("N", "M", 130.0, days=5, hours=2),
        ]
        batch = make_batch(rows, total_transactions={"N": 3})
        assert check_shell_chain_involvement(
            self._candidate(), batch.graph, index_accounts(batch.accounts)
        )

    def test_neighbour_without_account_record(self, make_batch, fan_in_rows):
        rows = fan_in_rows + [
            tx("R", "N", 290.0, days=5),
            tx("N", "M", 280.0, days=5, hours=1),
        ]
        batch = make_batch(rows, total_transactions={"N": 2})
        accounts = {a.account_id: a for a in batch.accounts if a.account_id != "N"}
        assert not check_shell_chain_involvement(self._candidate(), batch.graph, accounts)


class TestInputErrors:
    """Configuration and data-contract failures."""

    @pytest.mark.parametrize(
        "kwargs",
        [{"window_hours": 0}, {"min_unique_senders": 0}, {"window_hours": -5}],
    )
    def test_rejects_degenerate_thresholds(self, make_batch, fan_in_rows, kwargs):
        batch = make_batch(fan_in_rows)
        with pytest.raises(ConfigurationError):
            run(batch, **kwargs)

    def test_rejects_unparseable_timestamps(self, make_batch, fan_in_rows):
        batch = make_batch(fan_in_rows)
        bad = batch.df.astype({"timestamp": object})
        bad.loc[1, "timestamp"] = "not a date"
        with pytest.raises(TransactionValidationError, match="timestamp"):
            validate_fan_in_two_phase(batch.accounts, bad, batch.graph, [], [], {})
        assert batch.account("R").fan_in_classification is None
