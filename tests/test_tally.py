import pytest

from app.boardroom.errors import ValidationFailed
from app.boardroom.modules.resolutions.tally import VoteCounts, count_votes, decide, summarize, tally


def _votes(approve=0, reject=0, abstain=0):
    return ["approve"] * approve + ["reject"] * reject + ["abstain"] * abstain


@pytest.mark.parametrize(
    "counts, expected",
    [
        ((3, 2, 1), "passed"),
        ((2, 2, 0), "failed"),  # tie fails
        ((1, 0, 5), "passed"),  # abstentions ignored
        ((0, 0, 3), "failed"),
        ((0, 0, 0), "failed"),
    ],
)
def test_simple_majority(counts, expected):
    assert tally(_votes(*counts), "simple_majority") == expected


@pytest.mark.parametrize(
    "counts, expected",
    [
        ((4, 2, 0), "passed"),
        ((2, 1, 0), "passed"),
        ((2, 2, 0), "failed"),
        ((2, 0, 1), "passed"),  # exactly two thirds with an abstention
        ((2, 0, 2), "failed"),  # abstentions count in the denominator
        ((66, 34, 0), "failed"),
        ((67, 33, 0), "passed"),
        ((0, 0, 0), "failed"),
    ],
)
def test_two_thirds(counts, expected):
    assert tally(_votes(*counts), "two_thirds") == expected


@pytest.mark.parametrize(
    "counts, expected",
    [
        ((5, 0, 2), "passed"),
        ((4, 1, 0), "failed"),
        ((0, 0, 2), "failed"),  # needs at least one approval
        ((0, 0, 0), "failed"),
        ((1, 0, 0), "passed"),
    ],
)
def test_unanimous(counts, expected):
    assert tally(_votes(*counts), "unanimous") == expected


def test_decide_is_order_independent():
    votes = _votes(4, 2, 1)
    assert tally(votes, "two_thirds") == tally(list(reversed(votes)), "two_thirds")


def test_decide_rejects_unknown_voting_type():
    with pytest.raises(ValidationFailed) as exc:
        decide(VoteCounts(approve=1), "plurality")
    assert "voting_type" in exc.value.details


def test_count_votes_rejects_unknown_value():
    with pytest.raises(ValidationFailed):
        count_votes(["approve", "maybe"])


def test_summarize_reports_quorum_without_changing_result():
    summary = summarize(_votes(2, 0, 0), "simple_majority", quorum_required=5)
    assert summary.result == "passed"
    assert summary.quorum_met is False
    assert summary.as_dict() == {
        "approve": 2,
        "reject": 0,
        "abstain": 0,
        "total": 2,
        "result": "passed",
        "quorum_required": 5,
        "quorum_met": False,
        "recorded_result": None,
    }
