"""
Vote tally rules.

Pure functions over a multiset of vote values. Used once, authoritatively,
when a resolution closes, and for read-time "current tally" previews.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from app.boardroom.errors import ValidationFailed

VOTE_CHOICES = ("approve", "reject", "abstain")
VOTING_TYPES = ("simple_majority", "two_thirds", "unanimous")

PASSED = "passed"
FAILED = "failed"


@dataclass(frozen=True)
class VoteCounts:
    approve: int = 0
    reject: int = 0
    abstain: int = 0

    @property
    def total(self) -> int:
        return self.approve + self.reject + self.abstain


@dataclass(frozen=True)
class VoteSummary:
    approve: int
    reject: int
    abstain: int
    total: int
    result: str
    quorum_required: int = 0
    quorum_met: bool = True
    recorded_result: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "approve": self.approve,
            "reject": self.reject,
            "abstain": self.abstain,
            "total": self.total,
            "result": self.result,
            "quorum_required": self.quorum_required,
            "quorum_met": self.quorum_met,
            "recorded_result": self.recorded_result,
        }


def _value(v: Any) -> str:
    # Accepts Vote rows or bare strings.
    return getattr(v, "vote", v)


def count_votes(votes: Iterable[Any]) -> VoteCounts:
    counts = {c: 0 for c in VOTE_CHOICES}
    for v in votes:
        value = _value(v)
        if value not in counts:
            raise ValidationFailed({"vote": [f"Unknown vote value: {value!r}"]})
        counts[value] += 1
    return VoteCounts(**counts)


def decide(counts: VoteCounts, voting_type: str) -> str:
    """
    Apply a voting rule to vote counts. Returns "passed" or "failed".

    - simple_majority: more approvals than rejections; abstentions ignored, a tie fails
    - two_thirds: approvals are at least 2/3 of all votes cast, abstentions included
    - unanimous: no rejection and at least one approval

    No votes cast fails under every rule.
    """
    a, r, t = counts.approve, counts.reject, counts.total
    if voting_type not in VOTING_TYPES:
        raise ValidationFailed({"voting_type": [f"Unknown voting type: {voting_type!r}"]})
    if t == 0:
        return FAILED

    if voting_type == "simple_majority":
        passed = a > r
    elif voting_type == "two_thirds":
        # Integer form of a / t >= 2/3.
        passed = 3 * a >= 2 * t
    else:
        passed = r == 0 and a > 0
    return PASSED if passed else FAILED


def tally(votes: Iterable[Any], voting_type: str) -> str:
    return decide(count_votes(votes), voting_type)


def summarize(votes: Iterable[Any], voting_type: str, quorum_required: int = 0) -> VoteSummary:
    """Counts plus the projected result. Quorum is reported, it does not change the result."""
    counts = count_votes(votes)
    return VoteSummary(
        approve=counts.approve,
        reject=counts.reject,
        abstain=counts.abstain,
        total=counts.total,
        result=decide(counts, voting_type),
        quorum_required=quorum_required,
        quorum_met=counts.total >= quorum_required,
    )
