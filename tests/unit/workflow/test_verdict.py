from __future__ import annotations

import pytest

from changeflow.errors import MissingVerdictError
from changeflow.workflow.verdict import (
    ProposalVerdict,
    ReviewVerdict,
    find_proposal_verdicts,
    parse_proposal_verdict,
    parse_review_verdict,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("- [x] APPROVED", ProposalVerdict.APPROVED),
        ("- [X] approved", ProposalVerdict.APPROVED),
        ("- [✓] NEEDS_REVISION", ProposalVerdict.NEEDS_REVISION),
        ("- [x] needs revision", ProposalVerdict.NEEDS_REVISION),
        ("- [ x ] Rejected", ProposalVerdict.REJECTED),
    ],
)
def test_proposal_verdict_markers(text: str, expected: ProposalVerdict) -> None:
    assert parse_proposal_verdict(text) is expected


def test_unchecked_boxes_are_not_verdicts() -> None:
    text = "- [ ] APPROVED\n- [x] NEEDS_REVISION\n- [ ] REJECTED\n"

    assert find_proposal_verdicts(text) == {ProposalVerdict.NEEDS_REVISION}


def test_conflicting_markers_resolve_to_the_most_conservative_verdict() -> None:
    text = "Early draft said:\n- [x] APPROVED\n\nFinal:\n- [x] REJECTED\n- [x] NEEDS_REVISION\n"

    assert parse_proposal_verdict(text) is ProposalVerdict.REJECTED


def test_review_conflict_prefers_major_issues() -> None:
    text = "- [x] NEEDS_CHANGES\n- [x] major issues\n- [x] APPROVED\n"

    assert parse_review_verdict(text) is ReviewVerdict.MAJOR_ISSUES


def test_frontmatter_verdict_counts_as_a_marker() -> None:
    text = "---\nid: add-auth\ntype: challenge\nverdict: APPROVED\n---\n\nNo blocking issues.\n"

    assert parse_proposal_verdict(text) is ProposalVerdict.APPROVED


def test_frontmatter_and_body_markers_combine_conservatively() -> None:
    text = "---\nid: add-auth\ntype: review\nverdict: APPROVED\n---\n\n- [x] NEEDS_CHANGES\n"

    assert parse_review_verdict(text) is ReviewVerdict.NEEDS_CHANGES


def test_missing_marker_raises_with_the_expected_values() -> None:
    with pytest.raises(MissingVerdictError) as excinfo:
        parse_review_verdict("The implementation looks fine to me.", source="REVIEW.md")

    assert excinfo.value.source == "REVIEW.md"
    assert excinfo.value.expected == ("APPROVED", "NEEDS_CHANGES", "MAJOR_ISSUES")


def test_review_markers_are_not_read_as_proposal_verdicts() -> None:
    with pytest.raises(MissingVerdictError):
        parse_proposal_verdict("- [x] NEEDS_CHANGES")
