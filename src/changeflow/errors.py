"""
changeflow — error taxonomy

File: src/changeflow/errors.py

Purpose
- Single home for the four error families surfaced by the core: document parse failures,
  blocking validation findings, agent process failures, and persisted-state failures.

Functional requirements
- Every error renders a deterministic one-line message.
- Parse and state errors carry enough location context to be actionable without a traceback.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable

    from changeflow.validation.report import ValidationReport

_STDERR_PREVIEW_CHARS: Final[int] = 400


class ChangeflowError(Exception):
    """Root of all errors raised by the workflow core."""


class ParseError(ChangeflowError):
    """Structured document parse failure."""

    UNTERMINATED_FRONTMATTER: Final[str] = "unterminated_frontmatter"
    MISSING_FRONTMATTER: Final[str] = "missing_frontmatter"
    INVALID_YAML: Final[str] = "invalid_yaml"
    SCHEMA_MISMATCH: Final[str] = "schema_mismatch"

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        path: Path | str | None = None,
        line: int | None = None,
        hint: str = "",
    ) -> None:
        self.kind = kind
        self.message = message
        self.path = Path(path) if path is not None else None
        self.line = line
        self.hint = hint
        location = str(self.path) if self.path is not None else "<document>"
        if line is not None:
            location = f"{location}:{line}"
        rendered = f"{location} [{kind}] {message}"
        if hint:
            rendered = f"{rendered} (hint: {hint})"
        super().__init__(rendered)

    def with_path(self, path: Path | str) -> ParseError:
        """Return a copy of this error bound to ``path``."""
        return ParseError(self.kind, self.message, path=path, line=self.line, hint=self.hint)


class ValidationError(ChangeflowError):
    """Raised when a validation pass reports findings at or above the blocking threshold."""

    def __init__(self, report: ValidationReport, *, step: str) -> None:
        self.report = report
        self.step = step
        blocking = report.blocking_findings()
        lines = [f"{step}: {len(blocking)} blocking finding(s)"]
        lines.extend(f"- {finding.render()}" for finding in blocking)
        super().__init__("\n".join(lines))


class OrchestratorError(ChangeflowError):
    """Agent process could not be spawned, failed, or its streams broke."""


class CommandNotFoundError(OrchestratorError):
    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"agent command not found on PATH: {command}")


class NonZeroExitError(OrchestratorError):
    def __init__(self, command: str, code: int, stderr: str) -> None:
        self.command = command
        self.code = code
        self.stderr = stderr
        preview = stderr.strip()[:_STDERR_PREVIEW_CHARS] or "(no stderr)"
        super().__init__(f"{command} exited with code {code}: {preview}")


class OrchestratorIOError(OrchestratorError):
    def __init__(self, command: str, message: str) -> None:
        self.command = command
        super().__init__(f"{command}: {message}")


class StateError(ChangeflowError):
    """Persisted change record is missing, corrupt, or a transition is illegal."""


class StateNotFoundError(StateError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"no change state at {path}")


class CorruptStateError(StateError):
    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"corrupt change state at {path}: {message}")


class InvalidTransitionError(StateError):
    def __init__(self, current: str, target: str, *, reason: str = "") -> None:
        self.current = current
        self.target = target
        message = f"illegal phase transition {current} -> {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CyclicDependencyError(ChangeflowError):
    """Task dependency graph contains at least one cycle."""

    def __init__(self, cycles: Iterable[Iterable[str]]) -> None:
        self.cycles = tuple(tuple(cycle) for cycle in cycles)
        ids: list[str] = []
        for cycle in self.cycles:
            for task_id in cycle:
                if task_id not in ids:
                    ids.append(task_id)
        self.ids = tuple(ids)
        rendered = "; ".join(" -> ".join(cycle) for cycle in self.cycles)
        super().__init__(f"cyclic task dependencies: {rendered}")


class MissingVerdictError(ChangeflowError):
    """Reviewer output did not carry a recognizable verdict marker."""

    def __init__(self, source: str, *, expected: Iterable[str]) -> None:
        self.source = source
        self.expected = tuple(expected)
        super().__init__(
            f"no verdict marker found in {source}; expected one of: {', '.join(self.expected)}"
        )


__all__ = [
    "ChangeflowError",
    "CommandNotFoundError",
    "CorruptStateError",
    "CyclicDependencyError",
    "InvalidTransitionError",
    "MissingVerdictError",
    "NonZeroExitError",
    "OrchestratorError",
    "OrchestratorIOError",
    "ParseError",
    "StateError",
    "StateNotFoundError",
    "ValidationError",
]
