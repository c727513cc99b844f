"""
changeflow — cross-document consistency checks

File: src/changeflow/validation/consistency.py

Purpose
- Reference-tier checks across the documents of one change: task ``spec_ref`` targets and
  anchors, declared dependencies, graph acyclicity, and proposal/spec cross references.

Functional requirements
- Paths are compared after case and separator normalization.
- An anchor resolves to a heading of any level whose text matches, or to a requirement id.
- Documents whose frontmatter cannot be split are skipped here; the per-document rules
  already report them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from changeflow.documents.affected import affected_specs
from changeflow.documents.blocks import extract_requirements
from changeflow.documents.frontmatter import RawDocument, split_frontmatter
from changeflow.documents.layout import ChangeLayout
from changeflow.documents.markdown import iter_headings
from changeflow.errors import ParseError
from changeflow.planning.task_graph import TaskGraph
from changeflow.utils.fs import normalize_relative_path
from changeflow.validation.report import Category, Finding, Severity, finding

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _SpecIndex:
    """Anchors of every spec reachable from a change, keyed by normalized relative path."""

    anchors: dict[str, tuple[tuple[str, ...], frozenset[str]]] = field(default_factory=dict)
    ids: set[str] = field(default_factory=set)
    store_ids: set[str] = field(default_factory=set)

    def has_file(self, normalized: str) -> bool:
        return normalized in self.anchors

    def has_anchor(self, normalized: str, anchor: str) -> bool:
        headings, requirement_ids = self.anchors[normalized]
        if anchor in requirement_ids:
            return True
        wanted = anchor.strip().lower()
        for heading in headings:
            text = heading.lower()
            if text == wanted:
                return True
            if text.startswith(wanted) and text[len(wanted) : len(wanted) + 1] in {":", " ", "\t"}:
                return True
        return False

    def knows_spec(self, spec_id: str) -> bool:
        return spec_id in self.ids or spec_id in self.store_ids


def check_consistency(layout: ChangeLayout, *, specs_store: Path | None = None) -> list[Finding]:
    """Return every reference-tier finding for the change at ``layout``."""

    index = _index_specs(layout, specs_store)
    findings: list[Finding] = []
    findings.extend(_task_findings(layout, index))
    findings.extend(_proposal_findings(layout, index))
    findings.extend(_spec_reference_findings(layout, index))
    return findings


def resolve_spec_ref(spec_ref: str) -> tuple[str, str | None]:
    """Split ``specs/auth.md#R1`` (or ``specs/auth.md:R1``) into a normalized path and anchor."""

    path_part, anchor = spec_ref, None
    if "#" in spec_ref:
        path_part, anchor = spec_ref.split("#", 1)
    elif ":" in spec_ref:
        path_part, anchor = spec_ref.split(":", 1)
    normalized = normalize_relative_path(path_part)
    if normalized and "/" not in normalized:
        normalized = f"specs/{normalized}"
    anchor = anchor.strip() if anchor is not None else None
    return normalized, anchor or None


def _read_raw(path: Path) -> RawDocument | None:
    if not path.is_file():
        return None
    try:
        return split_frontmatter(path.read_text(encoding="utf-8"))
    except ParseError as exc:
        logger.debug("skipping %s in consistency checks: %s", path, exc)
        return None


def _index_specs(layout: ChangeLayout, specs_store: Path | None) -> _SpecIndex:
    index = _SpecIndex()
    for spec_path in layout.spec_files():
        index.ids.add(spec_path.stem)
        raw = _read_raw(spec_path)
        body = raw.body if raw is not None else ""
        headings = tuple(heading.text.strip() for heading in iter_headings(body))
        requirement_ids = frozenset(block.id for block, _ in extract_requirements(body))
        index.anchors[normalize_relative_path(layout.relative(spec_path))] = (headings, requirement_ids)
    if specs_store is not None and specs_store.is_dir():
        index.store_ids.update(path.stem for path in specs_store.glob("*.md"))
    return index


def _task_findings(layout: ChangeLayout, index: _SpecIndex) -> list[Finding]:
    raw = _read_raw(layout.tasks)
    if raw is None:
        return []
    label = layout.relative(layout.tasks)
    graph = TaskGraph.from_document(raw.body)
    findings: list[Finding] = []

    for task in graph.tasks():
        if not task.spec_ref:
            continue
        normalized, anchor = resolve_spec_ref(task.spec_ref)
        if not index.has_file(normalized):
            findings.append(
                finding(
                    Severity.HIGH,
                    Category.BROKEN_REFERENCE,
                    label,
                    f"task {task.id} references missing spec file '{task.spec_ref}'",
                    section=f"task {task.id}",
                )
            )
            continue
        if anchor is not None and not index.has_anchor(normalized, anchor):
            findings.append(
                finding(
                    Severity.HIGH,
                    Category.BROKEN_REFERENCE,
                    label,
                    f"task {task.id} references missing anchor '{anchor}' in {normalized}",
                    section=f"task {task.id}",
                )
            )

    for task_id, dependency in graph.missing_dependencies:
        findings.append(
            finding(
                Severity.HIGH,
                Category.BROKEN_REFERENCE,
                label,
                f"task {task_id} depends on unknown task '{dependency}'",
                section=f"task {task_id}",
            )
        )
    for task_id in graph.duplicate_ids:
        findings.append(
            finding(
                Severity.HIGH,
                Category.DUPLICATE_REQUIREMENT,
                label,
                f"task id '{task_id}' is declared more than once",
                section=f"task {task_id}",
            )
        )
    for cycle in graph.detect_cycles():
        findings.append(
            finding(
                Severity.HIGH,
                Category.CIRCULAR_DEPENDENCY,
                label,
                "dependency cycle: " + " -> ".join(cycle),
            )
        )
    return findings


def _proposal_findings(layout: ChangeLayout, index: _SpecIndex) -> list[Finding]:
    if not layout.proposal.is_file():
        return []
    label = layout.relative(layout.proposal)
    try:
        declared = affected_specs(layout.proposal.read_text(encoding="utf-8"))
    except ParseError as exc:
        logger.debug("skipping affected specs of %s: %s", layout.proposal, exc)
        return []

    findings: list[Finding] = []
    declared_paths: set[str] = set()
    for ref in declared:
        normalized = normalize_relative_path(ref.path)
        declared_paths.add(normalized)
        if not index.has_file(normalized):
            findings.append(
                finding(
                    Severity.MEDIUM,
                    Category.BROKEN_REFERENCE,
                    label,
                    f"affected spec '{ref.id}' has no document at {ref.path}",
                    section="affected_specs",
                )
            )
    for normalized in sorted(index.anchors):
        if normalized not in declared_paths:
            findings.append(
                finding(
                    Severity.LOW,
                    Category.INCONSISTENCY,
                    normalized,
                    "spec is not listed in the proposal's affected specs",
                )
            )
    return findings


def _spec_reference_findings(layout: ChangeLayout, index: _SpecIndex) -> list[Finding]:
    findings: list[Finding] = []
    for spec_path in layout.spec_files():
        raw = _read_raw(spec_path)
        if raw is None or raw.frontmatter is None:
            continue
        label = layout.relative(spec_path)
        for field_name, spec_id in _referenced_spec_ids(raw.frontmatter):
            if not index.knows_spec(spec_id):
                findings.append(
                    finding(
                        Severity.MEDIUM,
                        Category.BROKEN_REFERENCE,
                        label,
                        f"{field_name} '{spec_id}' does not exist in the change or the spec store",
                        section="frontmatter",
                    )
                )
    return findings


def _referenced_spec_ids(frontmatter: dict[str, object]) -> Iterable[tuple[str, str]]:
    parent = frontmatter.get("parent_spec")
    if isinstance(parent, str) and parent.strip():
        yield "parent_spec", parent.strip()
    related = frontmatter.get("related_specs")
    if not isinstance(related, list):
        return
    for item in related:
        if isinstance(item, str) and item.strip():
            yield "related_specs", item.strip()
        elif isinstance(item, dict) and isinstance(item.get("id"), str):
            yield "related_specs", item["id"].strip()


__all__ = ["check_consistency", "resolve_spec_ref"]
