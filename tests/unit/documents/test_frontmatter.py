"""
changeflow — unit tests for frontmatter parsing

File: tests/unit/documents/test_frontmatter.py

Purpose
- Validate frontmatter splitting, typed decoding, and serialization.

What this test file should cover
- Parse/serialize round trip for the typed frontmatter of every document kind (property-based).
- Unterminated and malformed frontmatter reported as ``ParseError`` with a line.
- BOM and CRLF tolerance.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from changeflow.documents.affected import affected_spec_ids, affected_specs
from changeflow.documents.frontmatter import (
    Document,
    has_frontmatter,
    parse,
    read_document,
    serialize,
    split_frontmatter,
    strip_frontmatter,
)
from changeflow.documents.models import (
    CHALLENGE_VERDICT_VALUES,
    REVIEW_VERDICT_VALUES,
    ChallengeFrontmatter,
    DocumentKind,
    Frontmatter,
    ProposalFrontmatter,
    ProposalStatus,
    RequirementsSummary,
    ReviewFrontmatter,
    Risk,
    SpecFrontmatter,
    SpecReference,
    TasksFrontmatter,
    check_frontmatter,
)
from changeflow.errors import ParseError

_IDS = st.from_regex(r"[a-z][a-z0-9-]{0,15}", fullmatch=True)
_TEXT = st.text(
    alphabet=st.characters(whitelist_categories=("L", "N", "P"), whitelist_characters=" "),
    min_size=1,
    max_size=40,
)
_BODY = st.text(alphabet=st.sampled_from(list("abcdefghij #-*\n")), max_size=200)

_SPEC_REFS = st.builds(
    SpecReference,
    id=_IDS,
    path=_IDS.map(lambda value: f"specs/{value}.md"),
)
_RISKS = st.builds(
    Risk,
    severity=st.sampled_from(("high", "medium", "low")),
    category=_TEXT,
    description=_TEXT,
)
_PROPOSALS = st.builds(
    ProposalFrontmatter,
    id=_IDS,
    status=st.sampled_from(list(ProposalStatus)),
    version=st.integers(min_value=1, max_value=50),
    iteration=st.integers(min_value=0, max_value=10),
    summary=st.none() | _TEXT,
    affected_specs=st.lists(_SPEC_REFS, max_size=3, unique_by=lambda ref: ref.id).map(tuple),
    risks=st.lists(_RISKS, max_size=2).map(tuple),
    extra=st.just({}),
)

_TITLES = _TEXT.map(str.strip).filter(bool)
_SHA = st.from_regex(r"sha256:[0-9a-f]{64}", fullmatch=True)
_SPECS = st.builds(
    SpecFrontmatter,
    id=_IDS,
    title=_TITLES,
    version=st.integers(min_value=1, max_value=50),
    parent_spec=st.none() | _IDS,
    related_specs=st.lists(_SPEC_REFS, max_size=3).map(tuple),
    requirements=st.none()
    | st.builds(
        RequirementsSummary,
        total=st.integers(min_value=0, max_value=20),
        ids=st.lists(st.from_regex(r"R[0-9]{1,2}", fullmatch=True), max_size=4).map(tuple),
    ),
    extra=st.just({}),
)
_TASKS = st.builds(
    TasksFrontmatter,
    id=_IDS,
    version=st.integers(min_value=1, max_value=50),
    proposal_ref=st.none() | st.just("proposal.md"),
    summary=st.none() | st.dictionaries(_IDS, st.integers(min_value=0, max_value=99), max_size=3),
    layers=st.none() | st.dictionaries(_IDS, _IDS, max_size=3),
    extra=st.just({}),
)
_CHALLENGES = st.builds(
    ChallengeFrontmatter,
    id=_IDS,
    version=st.integers(min_value=1, max_value=50),
    verdict=st.none() | st.sampled_from(CHALLENGE_VERDICT_VALUES),
    verdict_reason=st.none() | _TEXT,
    issues=st.none() | st.dictionaries(st.sampled_from(("high", "medium", "low")), st.integers(0, 9)),
    source_checksums=st.dictionaries(_IDS.map(lambda value: f"specs/{value}.md"), _SHA, max_size=3),
    extra=st.just({}),
)
_REVIEWS = st.builds(
    ReviewFrontmatter,
    id=_IDS,
    version=st.integers(min_value=1, max_value=50),
    iteration=st.integers(min_value=0, max_value=10),
    verdict=st.none() | st.sampled_from(REVIEW_VERDICT_VALUES),
    extra=st.just({}),
)


@settings(max_examples=75, deadline=None)
@given(frontmatter=_PROPOSALS, body=_BODY)
def test_proposal_round_trips_through_serialize_and_parse(frontmatter: ProposalFrontmatter, body: str) -> None:
    document = Document(kind=DocumentKind.PROPOSAL, frontmatter=frontmatter, body=body)

    assert parse(serialize(document)) == document


@pytest.mark.parametrize(
    ("kind", "strategy"),
    [
        (DocumentKind.SPEC, _SPECS),
        (DocumentKind.TASKS, _TASKS),
        (DocumentKind.CHALLENGE, _CHALLENGES),
        (DocumentKind.REVIEW, _REVIEWS),
    ],
)
def test_every_other_kind_round_trips_through_serialize_and_parse(
    kind: DocumentKind,
    strategy: st.SearchStrategy[Frontmatter],
) -> None:
    @settings(max_examples=50, deadline=None)
    @given(frontmatter=strategy, body=_BODY)
    def check(frontmatter: Frontmatter, body: str) -> None:
        document = Document(kind=kind, frontmatter=frontmatter, body=body)

        assert parse(serialize(document)) == document

    check()


def test_unknown_keys_survive_a_round_trip() -> None:
    raw = "---\nid: add-auth\ntype: proposal\nstatus: proposed\nowner: platform-team\n---\nBody\n"

    document = parse(raw)

    assert isinstance(document.frontmatter, ProposalFrontmatter)
    assert document.frontmatter.extra == {"owner": "platform-team"}
    assert parse(serialize(document)) == document


def test_bom_and_crlf_are_normalized() -> None:
    raw = "\ufeff---\r\nid: add-auth\r\ntype: tasks\r\n---\r\n## Tasks\r\n"

    split = split_frontmatter(raw)

    assert split.frontmatter == {"id": "add-auth", "type": "tasks"}
    assert split.body == "## Tasks\n"
    assert split.body_line == 5


def test_document_without_frontmatter_is_all_body() -> None:
    split = split_frontmatter("# Title\n\nText\n")

    assert split.frontmatter is None
    assert split.body_line == 1
    assert not has_frontmatter("--- not a delimiter\n")


def test_unterminated_frontmatter_raises_with_hint() -> None:
    with pytest.raises(ParseError) as excinfo:
        split_frontmatter("---\nid: add-auth\ntype: proposal\n\n## Summary\n")

    assert excinfo.value.kind == ParseError.UNTERMINATED_FRONTMATTER
    assert excinfo.value.line == 1
    assert excinfo.value.hint


def test_invalid_yaml_reports_the_file_line() -> None:
    with pytest.raises(ParseError) as excinfo:
        split_frontmatter("---\nid: add-auth\nstatus: [proposed\n---\nBody\n")

    assert excinfo.value.kind == ParseError.INVALID_YAML
    assert excinfo.value.line is not None and excinfo.value.line >= 2


def test_non_mapping_frontmatter_is_a_schema_mismatch() -> None:
    with pytest.raises(ParseError) as excinfo:
        split_frontmatter("---\n- a\n- b\n---\nBody\n")

    assert excinfo.value.kind == ParseError.SCHEMA_MISMATCH


def test_delimiter_inside_a_value_does_not_close_the_block() -> None:
    raw = "---\nid: add-auth\ntype: proposal\nstatus: proposed\nsummary: 'a --- b'\n---\nBody\n"

    assert strip_frontmatter(raw) == "Body\n"


def test_parse_binds_the_path_to_errors(tmp_path: Path) -> None:
    path = tmp_path / "proposal.md"
    path.write_text("---\nid: add-auth\ntype: proposal\n---\nBody\n", encoding="utf-8")

    with pytest.raises(ParseError) as excinfo:
        read_document(path)

    assert excinfo.value.path == path
    assert excinfo.value.kind == ParseError.SCHEMA_MISMATCH


def test_declared_type_must_match_the_requested_kind() -> None:
    issues = check_frontmatter(DocumentKind.SPEC, {"id": "auth", "type": "proposal", "title": "Auth"})

    assert [issue.field for issue in issues] == ["type"]


def test_affected_specs_prefer_frontmatter_over_body() -> None:
    raw = (
        "---\nid: add-auth\ntype: proposal\nstatus: proposed\n"
        "affected_specs:\n  - auth\n  - id: sessions\n    path: specs/sessions.md\n  - auth\n"
        "---\n\n## Impact\n\n- Affected specs: billing\n"
    )

    assert affected_spec_ids(raw) == ("auth", "sessions")


def test_affected_specs_fall_back_to_the_impact_line() -> None:
    raw = "---\nid: add-auth\ntype: proposal\nstatus: proposed\n---\n\n- Affected specs: `auth`, sessions\n"

    assert affected_specs(raw) == (
        SpecReference(id="auth", path="specs/auth.md"),
        SpecReference(id="sessions", path="specs/sessions.md"),
    )


def test_affected_specs_none_marker_yields_nothing() -> None:
    assert affected_spec_ids("- Affected specs: none\n") == ()
