"""Tests for claim evaluation."""

import pytest

from core.errors import ClaimInvariantError
from partition_probe.evaluator import ClaimVerdict, evaluate_claims


class TestEvaluateClaims:
    """Verdicts for claim snapshots."""

    def test_one_winner_one_loser(self):
        evaluation = evaluate_claims([(1, 1), (2, 0)], partition_count=1)

        assert evaluation.verdict is ClaimVerdict.EXCLUSIVE
        assert evaluation.ok
        assert evaluation.winners == (1,)
        assert evaluation.losers == (2,)

    def test_loser_order_follows_input(self):
        evaluation = evaluate_claims([(3, 0), (1, 1), (2, 0)], partition_count=1)

        assert evaluation.ok
        assert evaluation.losers == (3, 2)

    def test_both_claim_a_partition(self):
        """Two holders of a single partition: no loser was found."""
        evaluation = evaluate_claims([(1, 1), (2, 1)], partition_count=1)

        assert evaluation.verdict is ClaimVerdict.NO_LOSER
        assert not evaluation.ok
        assert evaluation.losers == ()

    def test_nobody_claims(self):
        evaluation = evaluate_claims([(1, 0), (2, 0)], partition_count=1)

        assert evaluation.verdict is ClaimVerdict.TOO_MANY_LOSERS

    def test_three_workers_one_partition(self):
        evaluation = evaluate_claims([(1, 0), (2, 1), (3, 0)], partition_count=1)

        assert evaluation.ok
        assert evaluation.expected_losers == 2
        assert evaluation.losers == (1, 3)

    def test_three_workers_one_loser_missing(self):
        evaluation = evaluate_claims([(1, 1), (2, 1), (3, 0)], partition_count=1)

        assert evaluation.verdict is ClaimVerdict.CLAIM_TOTAL_MISMATCH

    def test_right_losers_wrong_total(self):
        """Loser count matches but a partition is counted twice."""
        evaluation = evaluate_claims([(1, 2), (2, 0)], partition_count=1)

        assert evaluation.verdict is ClaimVerdict.CLAIM_TOTAL_MISMATCH
        assert evaluation.total_claimed == 2

    def test_more_partitions_than_workers(self):
        evaluation = evaluate_claims([(1, 2), (2, 1)], partition_count=3)

        assert evaluation.ok
        assert evaluation.expected_losers == 0
        assert evaluation.losers == ()

    def test_more_partitions_than_workers_with_idle_worker(self):
        evaluation = evaluate_claims([(1, 3), (2, 0)], partition_count=3)

        assert evaluation.verdict is ClaimVerdict.TOO_MANY_LOSERS

    def test_single_worker(self):
        assert evaluate_claims([(1, 1)], partition_count=1).ok

    @pytest.mark.parametrize(
        "claims,partitions",
        [
            ([(1, 1), (2, 0)], 0),
            ([(1, -1), (2, 0)], 1),
        ],
    )
    def test_invalid_input(self, claims, partitions):
        with pytest.raises(ValueError):
            evaluate_claims(claims, partitions)


class TestRaiseForVerdict:
    def test_exclusive_does_not_raise(self):
        evaluate_claims([(1, 1), (2, 0)], partition_count=1).raise_for_verdict()

    def test_violation_raises_with_context(self):
        evaluation = evaluate_claims([(1, 1), (2, 1)], partition_count=1)

        with pytest.raises(ClaimInvariantError, match="no_loser") as exc_info:
            evaluation.raise_for_verdict()

        assert exc_info.value.context["verdict"] == "no_loser"
        assert exc_info.value.context["claims"] == {1: 1, 2: 1}
