"""
changeflow — per-document validation rules

File: src/changeflow/validation/rules.py

Purpose
- Schema-tier checks for a single document: frontmatter fields, required sections, scenario
  structure, and structured-block schemas.

Functional requirements
- Never raise on malformed input; every problem becomes a ``Finding``.
- Line numbers in findings refer to the file, not to the body.

Non-functional requirements
- Deterministic: the same text always yields the same findings in the same order.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Final

from changeflow.documents.blocks import BlockKind, extract_requirements, scan_blocks
from changeflow.documents.frontmatter import RawDocument, split_frontmatter
from changeflow.documents.markdown import Heading, iter_headings, section_text
from changeflow.documents.models import DocumentKind, FieldIssue, check_frontmatter
from changeflow.errors import ParseError
from changeflow.validation.report import Category, Finding, Severity, finding

REQUIRED_HEADINGS: Final[dict[DocumentKind, tuple[str, ...]]] = {
    DocumentKind.PROPOSAL: ("Summary", "Why", "What Changes", "Impact"),
    DocumentKind.SPEC: ("Overview", "Acceptance Criteria"),
}

MIN_SCENARIOS: Final[int] = 1

_PLACEHOLDER_TITLES: Final[frozenset[str]] = frozenset({"todo", "tbd", "fixme", "xxx"})
_BULLET_SCENARIO_RE: Final[re.Pattern[str]] = re.compile(r"(?m)^\s*[-*]\s*\**WHEN\**\b[^\n]*\bTHEN\b")
_WHEN_RE: Final[re.Pattern[str]] = re.compile(r"\bWHEN\b")
_THEN_RE: Final[re.Pattern[str]] = re.compile(r"\bTHEN\b")

_BLOCK_KINDS: Final[dict[DocumentKind, BlockKind]] = {
    DocumentKind.TASKS: BlockKind.TASK,
    DocumentKind.SPEC: BlockKind.REQUIREMENT,
    DocumentKind.CHALLENGE: BlockKind.ISSUE,
}

_BLOCK_CATEGORIES: Final[dict[BlockKind, Category]] = {
    BlockKind.TASK: Category.INVALID_STRUCTURE,
    BlockKind.REQUIREMENT: Category.INVALID_REQUIREMENT_FORMAT,
    BlockKind.ISSUE: Category.INVALID_STRUCTURE,
}


def check_document(text: str, kind: DocumentKind, path: str) -> list[Finding]:
    """Run every schema-tier rule for a document of ``kind`` stored at ``path``."""

    try:
        raw = split_frontmatter(text)
    except ParseError as exc:
        return [
            finding(
                Severity.HIGH,
                Category.INVALID_STRUCTURE,
                path,
                exc.message,
                line=exc.line,
            )
        ]

    findings: list[Finding] = []
    if raw.frontmatter is None:
        findings.append(
            finding(Severity.HIGH, Category.INVALID_STRUCTURE, path, "document has no frontmatter", line=1)
        )
    else:
        findings.extend(_frontmatter_findings(check_frontmatter(kind, raw.frontmatter), path))

    if not raw.body.strip():
        findings.append(
            finding(Severity.HIGH, Category.EMPTY_CONTENT, path, "document body is empty", line=raw.body_line)
        )
        return findings

    headings = iter_headings(raw.body)
    for rule in _BODY_RULES.get(kind, ()):
        findings.extend(rule(raw, headings, path))
    findings.extend(_placeholder_findings(raw, headings, path))
    findings.extend(_block_findings(raw, kind, path))
    return findings


def heading_matches(text: str, required: str) -> bool:
    """Case-insensitive equality or prefix match (``"Why this change"`` satisfies ``"Why"``)."""
    normalized = text.strip().rstrip(":").strip().lower()
    wanted = required.lower()
    return normalized == wanted or normalized.startswith(wanted)


def _frontmatter_findings(issues: tuple[FieldIssue, ...], path: str) -> list[Finding]:
    findings: list[Finding] = []
    for issue in issues:
        structural = issue.field == "type" or "required" in issue.message
        findings.append(
            finding(
                Severity.HIGH if structural else Severity.MEDIUM,
                Category.INVALID_STRUCTURE,
                path,
                f"frontmatter {issue.field}: {issue.message}",
                line=1,
                section="frontmatter",
            )
        )
    return findings


def _file_line(raw: RawDocument, body_line: int) -> int:
    return raw.body_line + body_line - 1


def _required_heading_findings(raw: RawDocument, headings: tuple[Heading, ...], path: str, kind: DocumentKind) -> list[Finding]:
    findings: list[Finding] = []
    for required in REQUIRED_HEADINGS[kind]:
        match = next((heading for heading in headings if heading_matches(heading.text, required)), None)
        if match is None:
            findings.append(
                finding(
                    Severity.HIGH,
                    Category.MISSING_HEADING,
                    path,
                    f"missing required section '{required}'",
                    section=required,
                )
            )
            continue
        if not section_text(raw.body, match, headings).strip():
            findings.append(
                finding(
                    Severity.MEDIUM,
                    Category.EMPTY_CONTENT,
                    path,
                    f"section '{match.text}' is empty",
                    line=_file_line(raw, match.line),
                    section=match.text,
                )
            )
    return findings


def _proposal_rules(raw: RawDocument, headings: tuple[Heading, ...], path: str) -> list[Finding]:
    return _required_heading_findings(raw, headings, path, DocumentKind.PROPOSAL)


def _spec_rules(raw: RawDocument, headings: tuple[Heading, ...], path: str) -> list[Finding]:
    findings = _required_heading_findings(raw, headings, path, DocumentKind.SPEC)

    scenarios = [heading for heading in headings if heading_matches(heading.text, "Scenario")]
    bullet_count = len(_BULLET_SCENARIO_RE.findall(raw.body))
    if len(scenarios) + bullet_count < MIN_SCENARIOS:
        findings.append(
            finding(
                Severity.HIGH,
                Category.MISSING_SCENARIO,
                path,
                f"spec needs at least {MIN_SCENARIOS} scenario",
            )
        )

    for scenario in scenarios:
        content = section_text(raw.body, scenario, headings)
        for keyword, pattern in (("WHEN", _WHEN_RE), ("THEN", _THEN_RE)):
            if pattern.search(content) is None:
                findings.append(
                    finding(
                        Severity.HIGH,
                        Category.MISSING_WHEN_THEN,
                        path,
                        f"scenario '{scenario.text}' has no {keyword} clause",
                        line=_file_line(raw, scenario.line),
                        section=scenario.text,
                    )
                )

    seen: dict[str, int] = {}
    for block, offset in extract_requirements(raw.body):
        line = _file_line(raw, raw.body.count("\n", 0, offset) + 1)
        if block.id in seen:
            findings.append(
                finding(
                    Severity.HIGH,
                    Category.DUPLICATE_REQUIREMENT,
                    path,
                    f"requirement id '{block.id}' already declared on line {seen[block.id]}",
                    line=line,
                )
            )
            continue
        seen[block.id] = line
    return findings


def _tasks_rules(raw: RawDocument, headings: tuple[Heading, ...], path: str) -> list[Finding]:
    if scan_blocks(raw.body, BlockKind.TASK).blocks:
        return []
    return [finding(Severity.HIGH, Category.EMPTY_CONTENT, path, "tasks document declares no task blocks")]


_BodyRule = Callable[[RawDocument, tuple[Heading, ...], str], list[Finding]]

_BODY_RULES: Final[dict[DocumentKind, tuple[_BodyRule, ...]]] = {
    DocumentKind.PROPOSAL: (_proposal_rules,),
    DocumentKind.SPEC: (_spec_rules,),
    DocumentKind.TASKS: (_tasks_rules,),
}


def _placeholder_findings(raw: RawDocument, headings: tuple[Heading, ...], path: str) -> list[Finding]:
    findings: list[Finding] = []
    for heading in headings:
        if heading.text.strip().rstrip(":").lower() in _PLACEHOLDER_TITLES:
            findings.append(
                finding(
                    Severity.MEDIUM,
                    Category.EMPTY_CONTENT,
                    path,
                    f"placeholder heading '{heading.text}'",
                    line=_file_line(raw, heading.line),
                    section=heading.text,
                )
            )
    return findings


def _block_findings(raw: RawDocument, kind: DocumentKind, path: str) -> list[Finding]:
    block_kind = _BLOCK_KINDS.get(kind)
    if block_kind is None:
        return []
    return [
        finding(
            Severity.HIGH,
            _BLOCK_CATEGORIES[block_kind],
            path,
            warning.message,
            line=_file_line(raw, warning.line),
        )
        for warning in scan_blocks(raw.body, block_kind).warnings
    ]


__all__ = ["MIN_SCENARIOS", "REQUIRED_HEADINGS", "check_document", "heading_matches"]
