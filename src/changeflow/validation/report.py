"""
changeflow — validation findings and reports

File: src/changeflow/validation/report.py

Purpose
- Structured findings ``{severity, category, location, message}`` and the report that decides
  whether a set of findings blocks a phase transition.

Functional requirements
- ``soft`` mode blocks only on findings at or above the blocking threshold.
- ``strict`` mode blocks on any finding.
- Reports render deterministically (stable ordering, stable dict form).
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final


class Severity(enum.StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: Final[dict[Severity, int]] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
}


class Category(enum.StrEnum):
    MISSING_HEADING = "missing_heading"
    INVALID_REQUIREMENT_FORMAT = "invalid_requirement_format"
    MISSING_SCENARIO = "missing_scenario"
    MISSING_WHEN_THEN = "missing_when_then"
    DUPLICATE_REQUIREMENT = "duplicate_requirement"
    BROKEN_REFERENCE = "broken_reference"
    INVALID_STRUCTURE = "invalid_structure"
    EMPTY_CONTENT = "empty_content"
    INCONSISTENCY = "inconsistency"
    CIRCULAR_DEPENDENCY = "circular_dependency"


class ValidationMode(enum.StrEnum):
    SOFT = "soft"
    STRICT = "strict"


@dataclass(frozen=True, slots=True, order=True)
class Location:
    path: str
    line: int | None = None
    section: str | None = None

    def render(self) -> str:
        rendered = self.path
        if self.line is not None:
            rendered = f"{rendered}:{self.line}"
        if self.section:
            rendered = f"{rendered} [{self.section}]"
        return rendered


@dataclass(frozen=True, slots=True)
class Finding:
    severity: Severity
    category: Category
    location: Location
    message: str

    def render(self) -> str:
        return f"[{self.severity.value}] {self.location.render()}: {self.message} ({self.category.value})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "category": self.category.value,
            "location": {
                "path": self.location.path,
                "line": self.location.line,
                "section": self.location.section,
            },
            "message": self.message,
        }

    def sort_key(self) -> tuple[int, str, int, str, str]:
        return (
            -self.severity.rank,
            self.location.path,
            self.location.line or 0,
            self.category.value,
            self.message,
        )


def finding(
    severity: Severity,
    category: Category,
    path: Path | str,
    message: str,
    *,
    line: int | None = None,
    section: str | None = None,
) -> Finding:
    return Finding(
        severity=severity,
        category=category,
        location=Location(path=Path(path).as_posix(), line=line, section=section),
        message=message,
    )


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """Findings of one validation pass plus the policy used to judge them."""

    findings: tuple[Finding, ...] = ()
    mode: ValidationMode = ValidationMode.SOFT
    threshold: Severity = Severity.HIGH
    checked_files: tuple[str, ...] = field(default=())

    @classmethod
    def from_findings(
        cls,
        findings: Iterable[Finding],
        *,
        mode: ValidationMode = ValidationMode.SOFT,
        threshold: Severity = Severity.HIGH,
        checked_files: Iterable[str] = (),
    ) -> ValidationReport:
        unique = dict.fromkeys(findings)
        return cls(
            findings=tuple(sorted(unique, key=Finding.sort_key)),
            mode=mode,
            threshold=threshold,
            checked_files=tuple(sorted(set(checked_files))),
        )

    def is_blocking_finding(self, item: Finding) -> bool:
        if self.mode is ValidationMode.STRICT:
            return True
        return item.severity.rank >= self.threshold.rank

    def blocking_findings(self) -> tuple[Finding, ...]:
        return tuple(item for item in self.findings if self.is_blocking_finding(item))

    @property
    def is_blocking(self) -> bool:
        return any(self.is_blocking_finding(item) for item in self.findings)

    def has_blocking(
        self,
        mode: ValidationMode | None = None,
        threshold: Severity | None = None,
    ) -> bool:
        """Re-judge the findings under another policy without rebuilding the report."""
        policy = ValidationReport(
            findings=self.findings,
            mode=mode or self.mode,
            threshold=threshold or self.threshold,
        )
        return policy.is_blocking

    @property
    def is_clean(self) -> bool:
        return not self.findings

    def count(self, severity: Severity) -> int:
        return sum(1 for item in self.findings if item.severity is severity)

    def for_path(self, path: str) -> tuple[Finding, ...]:
        return tuple(item for item in self.findings if item.location.path == path)

    def merged(self, other: ValidationReport) -> ValidationReport:
        return ValidationReport.from_findings(
            (*self.findings, *other.findings),
            mode=self.mode,
            threshold=self.threshold,
            checked_files=(*self.checked_files, *other.checked_files),
        )

    def summary(self) -> str:
        return (
            f"{len(self.findings)} finding(s): "
            f"{self.count(Severity.HIGH)} high, "
            f"{self.count(Severity.MEDIUM)} medium, "
            f"{self.count(Severity.LOW)} low"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "threshold": self.threshold.value,
            "blocking": self.is_blocking,
            "counts": {severity.value: self.count(severity) for severity in Severity},
            "findings": [item.to_dict() for item in self.findings],
        }


__all__ = [
    "Category",
    "Finding",
    "Location",
    "Severity",
    "ValidationMode",
    "ValidationReport",
    "finding",
]
