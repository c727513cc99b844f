"""
changeflow — validation engine

File: src/changeflow/validation/engine.py

Purpose
- Run the schema tier and the consistency tier over a change directory and assemble one
  ``ValidationReport`` judged under the configured mode and threshold.

Functional requirements
- Documents are classified by their role in the change layout, not by their declared type.
- ``require`` lists documents whose absence is itself a blocking finding.
- A narrowed ``kinds`` scope validates only those documents and skips the consistency tier.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Set
from pathlib import Path

from changeflow.documents.layout import ChangeLayout
from changeflow.documents.models import DocumentKind
from changeflow.validation.consistency import check_consistency
from changeflow.validation.report import (
    Category,
    Finding,
    Severity,
    ValidationMode,
    ValidationReport,
    finding,
)
from changeflow.validation.rules import check_document

logger = logging.getLogger(__name__)


def document_paths(layout: ChangeLayout) -> list[tuple[Path, DocumentKind]]:
    """Every validatable document of ``layout`` with the kind implied by its role."""

    candidates: list[tuple[Path, DocumentKind]] = [
        (layout.proposal, DocumentKind.PROPOSAL),
        (layout.tasks, DocumentKind.TASKS),
        (layout.challenge, DocumentKind.CHALLENGE),
        (layout.review, DocumentKind.REVIEW),
    ]
    candidates.extend((path, DocumentKind.SPEC) for path in layout.spec_files())
    return candidates


def validate_document(path: Path, kind: DocumentKind, *, label: str | None = None) -> list[Finding]:
    return check_document(path.read_text(encoding="utf-8"), kind, label or path.as_posix())


def validate(
    layout: ChangeLayout,
    *,
    mode: ValidationMode = ValidationMode.SOFT,
    threshold: Severity = Severity.HIGH,
    specs_store: Path | None = None,
    kinds: Set[DocumentKind] | None = None,
    require: Iterable[Path] = (),
) -> ValidationReport:
    """Validate the change at ``layout`` and return the judged report."""

    findings: list[Finding] = []
    checked: list[str] = []

    for path in require:
        if not path.is_file():
            findings.append(
                finding(
                    Severity.HIGH,
                    Category.INVALID_STRUCTURE,
                    layout.relative(path),
                    "required document is missing",
                )
            )

    for path, kind in document_paths(layout):
        if kinds is not None and kind not in kinds:
            continue
        if not path.is_file():
            continue
        label = layout.relative(path)
        checked.append(label)
        findings.extend(validate_document(path, kind, label=label))

    if kinds is None:
        findings.extend(check_consistency(layout, specs_store=specs_store))

    report = ValidationReport.from_findings(
        findings,
        mode=mode,
        threshold=threshold,
        checked_files=checked,
    )
    logger.debug("validated %s: %s", layout.change_id, report.summary())
    return report


__all__ = ["document_paths", "validate", "validate_document"]
