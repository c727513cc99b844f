"""
changeflow — reviewer verdicts

File: src/changeflow/workflow/verdict.py

Purpose
- Parse reviewer documents and agent output into closed verdict enums at the boundary.

Functional requirements
- A verdict marker is a checked box (``[x]`` or ``[✓]``) followed by the verdict name, matched
  case-insensitively; ``NEEDS_REVISION`` also accepts ``needs revision``.
- A ``verdict`` field in the document frontmatter counts as a marker too.
- When several different markers are present, the most conservative one wins.
- No marker at all raises ``MissingVerdictError``.
"""

from __future__ import annotations

import enum
import re
from typing import Final, TypeVar

from changeflow.documents.frontmatter import has_frontmatter, split_frontmatter
from changeflow.errors import MissingVerdictError


class ProposalVerdict(enum.StrEnum):
    APPROVED = "APPROVED"
    NEEDS_REVISION = "NEEDS_REVISION"
    REJECTED = "REJECTED"


class ReviewVerdict(enum.StrEnum):
    APPROVED = "APPROVED"
    NEEDS_CHANGES = "NEEDS_CHANGES"
    MAJOR_ISSUES = "MAJOR_ISSUES"


# Least to most conservative.
PROPOSAL_PRECEDENCE: Final[tuple[ProposalVerdict, ...]] = (
    ProposalVerdict.APPROVED,
    ProposalVerdict.NEEDS_REVISION,
    ProposalVerdict.REJECTED,
)
REVIEW_PRECEDENCE: Final[tuple[ReviewVerdict, ...]] = (
    ReviewVerdict.APPROVED,
    ReviewVerdict.NEEDS_CHANGES,
    ReviewVerdict.MAJOR_ISSUES,
)

_CHECKED: Final[str] = r"\[\s*[x✓]\s*\]\s*"
_PROPOSAL_MARKER: Final[re.Pattern[str]] = re.compile(
    _CHECKED + r"(approved|needs[_ ]revision|rejected)\b", re.IGNORECASE
)
_REVIEW_MARKER: Final[re.Pattern[str]] = re.compile(
    _CHECKED + r"(approved|needs[_ ]changes|major[_ ]issues)\b", re.IGNORECASE
)

_V = TypeVar("_V", ProposalVerdict, ReviewVerdict)


def parse_proposal_verdict(text: str, *, source: str = "challenge") -> ProposalVerdict:
    return _parse(text, source, _PROPOSAL_MARKER, ProposalVerdict, PROPOSAL_PRECEDENCE)


def parse_review_verdict(text: str, *, source: str = "review") -> ReviewVerdict:
    return _parse(text, source, _REVIEW_MARKER, ReviewVerdict, REVIEW_PRECEDENCE)


def find_proposal_verdicts(text: str) -> set[ProposalVerdict]:
    return _collect(text, _PROPOSAL_MARKER, ProposalVerdict)


def find_review_verdicts(text: str) -> set[ReviewVerdict]:
    return _collect(text, _REVIEW_MARKER, ReviewVerdict)


def _parse(
    text: str,
    source: str,
    pattern: re.Pattern[str],
    enum_type: type[_V],
    precedence: tuple[_V, ...],
) -> _V:
    found = _collect(text, pattern, enum_type)
    if not found:
        raise MissingVerdictError(source, expected=[verdict.value for verdict in precedence])
    return max(found, key=precedence.index)


def _collect(text: str, pattern: re.Pattern[str], enum_type: type[_V]) -> set[_V]:
    found: set[_V] = set()
    body = text
    if has_frontmatter(text):
        split = split_frontmatter(text)
        body = split.body
        declared = (split.frontmatter or {}).get("verdict")
        if isinstance(declared, str) and declared.strip():
            key = _canonical(declared)
            if key in enum_type.__members__:
                found.add(enum_type[key])
    for match in pattern.finditer(body):
        found.add(enum_type[_canonical(match.group(1))])
    return found


def _canonical(raw: str) -> str:
    return re.sub(r"[\s_]+", "_", raw.strip()).upper()


__all__ = [
    "PROPOSAL_PRECEDENCE",
    "REVIEW_PRECEDENCE",
    "ProposalVerdict",
    "ReviewVerdict",
    "find_proposal_verdicts",
    "find_review_verdicts",
    "parse_proposal_verdict",
    "parse_review_verdict",
]
