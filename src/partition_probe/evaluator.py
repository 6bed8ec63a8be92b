"""
Claim evaluation: decide who won the partition race.

Pure logic, no I/O. Given each worker's claimed-partition count and the
topic's partition count, classify the outcome:

    EXCLUSIVE             exactly max(N - P, 0) workers hold nothing and the
                          claims sum to P
    NO_LOSER              a zero-claim worker was expected, none was found
    TOO_MANY_LOSERS       more zero-claim workers than N - P
    CLAIM_TOTAL_MISMATCH  loser count is right but claims don't sum to P
                          (a partition is double-claimed or unclaimed)

Every loser is closed on EXCLUSIVE; any other verdict is fatal.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple

from core.errors import ClaimInvariantError


class ClaimVerdict(str, Enum):
    EXCLUSIVE = "exclusive"
    NO_LOSER = "no_loser"
    TOO_MANY_LOSERS = "too_many_losers"
    CLAIM_TOTAL_MISMATCH = "claim_total_mismatch"


@dataclass(frozen=True)
class ClaimEvaluation:
    """Classification of one snapshot of (worker_id, claimed_count) pairs."""

    claims: Tuple[Tuple[int, int], ...]
    partition_count: int
    winners: Tuple[int, ...]
    losers: Tuple[int, ...]
    verdict: ClaimVerdict

    @property
    def ok(self) -> bool:
        return self.verdict is ClaimVerdict.EXCLUSIVE

    @property
    def expected_losers(self) -> int:
        return max(len(self.claims) - self.partition_count, 0)

    @property
    def total_claimed(self) -> int:
        return sum(count for _, count in self.claims)

    def describe(self) -> str:
        return (
            f"verdict={self.verdict.value} claims={dict(self.claims)} "
            f"partitions={self.partition_count} "
            f"losers={list(self.losers)} expected_losers={self.expected_losers}"
        )

    def raise_for_verdict(self) -> None:
        """
        Raises:
            ClaimInvariantError: Unless the verdict is EXCLUSIVE
        """
        if self.ok:
            return
        raise ClaimInvariantError(
            f"Exclusive partition assignment violated: {self.describe()}",
            context={
                "verdict": self.verdict.value,
                "claims": dict(self.claims),
                "partition_count": self.partition_count,
            },
        )


def evaluate_claims(
    claims: Sequence[Tuple[int, int]], partition_count: int
) -> ClaimEvaluation:
    """
    Classify a snapshot of worker claims.

    Args:
        claims: (worker_id, claimed_count) in worker iteration order
        partition_count: Partitions on the contested topic

    Returns:
        ClaimEvaluation with winners/losers in input order
    """
    if partition_count < 1:
        raise ValueError("partition_count must be at least 1")

    snapshot = tuple((int(worker_id), int(count)) for worker_id, count in claims)
    if any(count < 0 for _, count in snapshot):
        raise ValueError(f"Claimed counts must not be negative: {snapshot}")

    winners = tuple(worker_id for worker_id, count in snapshot if count > 0)
    losers = tuple(worker_id for worker_id, count in snapshot if count == 0)
    expected_losers = max(len(snapshot) - partition_count, 0)
    total = sum(count for _, count in snapshot)

    if expected_losers > 0 and not losers:
        verdict = ClaimVerdict.NO_LOSER
    elif len(losers) > expected_losers:
        verdict = ClaimVerdict.TOO_MANY_LOSERS
    elif len(losers) < expected_losers or total != partition_count:
        verdict = ClaimVerdict.CLAIM_TOTAL_MISMATCH
    else:
        verdict = ClaimVerdict.EXCLUSIVE

    return ClaimEvaluation(
        claims=snapshot,
        partition_count=partition_count,
        winners=winners,
        losers=losers,
        verdict=verdict,
    )
