"""
changeflow — unit tests for cross-document validation

File: tests/unit/validation/test_consistency.py

Purpose
- Validate reference-tier findings (spec references, anchors, task dependencies) and the
  mode/threshold policy of the assembled report.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from changeflow.documents.layout import ChangeLayout
from changeflow.documents.models import DocumentKind
from changeflow.validation.consistency import check_consistency, resolve_spec_ref
from changeflow.validation.engine import validate
from changeflow.validation.report import Category, Severity, ValidationMode

PROPOSAL = """---
id: add-auth
type: proposal
status: proposed
affected_specs:
  - auth
---

## Summary

Add auth.

## Why

Needed.

## What Changes

- Auth module.

## Impact

- Affected specs: auth
"""

SPEC = """---
id: auth
type: spec
title: Authentication
related_specs:
  - sessions
---

## Overview

Auth.

### R1: Validate tokens

```yaml
requirement:
  id: R1
  priority: high
```

## Acceptance Criteria

### Scenario: valid token

- WHEN a valid token arrives
- THEN accept it
"""


def _task(task_id: str, spec_ref: str | None = None, depends_on: tuple[str, ...] = ()) -> str:
    lines = ["```yaml", "task:", f'  id: "{task_id}"', "  action: CREATE", f"  file: src/{task_id}.py"]
    if spec_ref is not None:
        lines.append(f'  spec_ref: "{spec_ref}"')
    if depends_on:
        rendered = ", ".join(f'"{item}"' for item in depends_on)
        lines.append(f"  depends_on: [{rendered}]")
    lines.append("```")
    return "\n".join(lines) + "\n"


def _change(tmp_path: Path, *tasks: str) -> ChangeLayout:
    layout = ChangeLayout.for_change(tmp_path / "changes", "add-auth")
    layout.specs_dir.mkdir(parents=True)
    layout.proposal.write_text(PROPOSAL, encoding="utf-8")
    layout.spec("auth").write_text(SPEC, encoding="utf-8")
    body = "\n".join(tasks)
    layout.tasks.write_text(f"---\nid: add-auth\ntype: tasks\n---\n\n## 1. Work\n\n{body}", encoding="utf-8")
    return layout


def _store(tmp_path: Path) -> Path:
    store = tmp_path / "specs"
    store.mkdir()
    (store / "sessions.md").write_text("# Sessions\n", encoding="utf-8")
    return store


def test_consistent_change_has_no_findings(tmp_path: Path) -> None:
    layout = _change(
        tmp_path,
        _task("1.1", "specs/auth.md#R1"),
        _task("1.2", "auth.md#Scenario: valid token", ("1.1",)),
        _task("1.3", "specs/auth.md:Acceptance Criteria", ("1.2",)),
    )

    assert check_consistency(layout, specs_store=_store(tmp_path)) == []


def test_missing_spec_file_and_anchor_are_high(tmp_path: Path) -> None:
    layout = _change(
        tmp_path,
        _task("1.1", "specs/billing.md#R1"),
        _task("1.2", "specs/auth.md#R9"),
    )

    findings = check_consistency(layout, specs_store=_store(tmp_path))

    assert [(item.severity, item.category, item.location.section) for item in findings] == [
        (Severity.HIGH, Category.BROKEN_REFERENCE, "task 1.1"),
        (Severity.HIGH, Category.BROKEN_REFERENCE, "task 1.2"),
    ]
    assert "missing anchor 'R9'" in findings[1].message


def test_unknown_dependencies_and_cycles(tmp_path: Path) -> None:
    layout = _change(
        tmp_path,
        _task("1.1", depends_on=("1.3",)),
        _task("1.2", depends_on=("1.1", "9.9")),
        _task("1.3", depends_on=("1.2",)),
    )

    findings = check_consistency(layout, specs_store=_store(tmp_path))
    by_category = {item.category: item for item in findings}

    assert "unknown task '9.9'" in by_category[Category.BROKEN_REFERENCE].message
    assert by_category[Category.CIRCULAR_DEPENDENCY].message == "dependency cycle: 1.1 -> 1.2 -> 1.3 -> 1.1"


def test_unresolved_related_spec_is_medium(tmp_path: Path) -> None:
    layout = _change(tmp_path, _task("1.1", "specs/auth.md#R1"))

    findings = check_consistency(layout, specs_store=None)

    assert [(item.severity, item.location.section) for item in findings] == [(Severity.MEDIUM, "frontmatter")]


def test_unlisted_spec_is_low(tmp_path: Path) -> None:
    layout = _change(tmp_path, _task("1.1", "specs/auth.md#R1"))
    layout.spec("extra").write_text(SPEC.replace("id: auth", "id: extra"), encoding="utf-8")

    findings = check_consistency(layout, specs_store=_store(tmp_path))

    assert [(item.severity, item.location.path) for item in findings] == [(Severity.LOW, "specs/extra.md")]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("specs/auth.md#R1", ("specs/auth.md", "R1")),
        ("auth.md", ("specs/auth.md", None)),
        ("./Specs/Auth.md:R1 ", ("specs/auth.md", "R1")),
    ],
)
def test_resolve_spec_ref(raw: str, expected: tuple[str, str | None]) -> None:
    assert resolve_spec_ref(raw) == expected


def test_soft_mode_blocks_only_at_the_threshold(tmp_path: Path) -> None:
    layout = _change(tmp_path, _task("1.1", "specs/auth.md#R1"))

    soft = validate(layout, specs_store=None)
    strict = validate(layout, mode=ValidationMode.STRICT, specs_store=None)
    medium = validate(layout, threshold=Severity.MEDIUM, specs_store=None)

    assert soft.count(Severity.MEDIUM) == 1
    assert not soft.is_blocking
    assert strict.is_blocking
    assert medium.is_blocking
    assert soft.has_blocking(mode=ValidationMode.STRICT)


def test_required_documents_must_exist(tmp_path: Path) -> None:
    layout = _change(tmp_path, _task("1.1", "specs/auth.md#R1"))

    report = validate(layout, specs_store=_store(tmp_path), require=[layout.challenge])

    assert report.is_blocking
    assert [item.location.path for item in report.blocking_findings()] == ["CHALLENGE.md"]


def test_narrowed_scope_skips_other_documents_and_consistency(tmp_path: Path) -> None:
    layout = _change(tmp_path, _task("1.1", "specs/billing.md#R1"))

    report = validate(layout, kinds={DocumentKind.PROPOSAL})

    assert report.is_clean
    assert report.checked_files == ("proposal.md",)
