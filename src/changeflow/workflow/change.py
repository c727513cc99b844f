"""
changeflow — change aggregate and phase machine

File: src/changeflow/workflow/change.py

Purpose
- The ``Change`` record threaded through every workflow operation, plus the closed set of
  phases and the transitions allowed between them.

Functional requirements
- Only transitions listed in ``TRANSITIONS`` are legal; anything else raises
  ``InvalidTransitionError``.
- Iteration counters only grow while a phase is held and reset when a phase is freshly
  entered.
- Usage records and validation history are append-only.

Non-functional requirements
- ``to_mapping``/``from_mapping`` are the only serialization seam; field order is stable so
  the persisted YAML diffs cleanly.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Final

from changeflow.constants import STATE_SCHEMA_VERSION
from changeflow.errors import InvalidTransitionError


class Phase(enum.StrEnum):
    PROPOSED = "proposed"
    CHALLENGED = "challenged"
    REJECTED = "rejected"
    IMPLEMENTING = "implementing"
    COMPLETE = "complete"
    ARCHIVED = "archived"


TRANSITIONS: Final[dict[Phase, frozenset[Phase]]] = {
    Phase.PROPOSED: frozenset({Phase.PROPOSED, Phase.CHALLENGED, Phase.REJECTED}),
    Phase.CHALLENGED: frozenset({Phase.IMPLEMENTING}),
    Phase.REJECTED: frozenset(),
    Phase.IMPLEMENTING: frozenset({Phase.IMPLEMENTING, Phase.COMPLETE}),
    Phase.COMPLETE: frozenset({Phase.ARCHIVED}),
    Phase.ARCHIVED: frozenset(),
}

TERMINAL_PHASES: Final[frozenset[Phase]] = frozenset({Phase.REJECTED, Phase.ARCHIVED})


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def parse_timestamp(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True, slots=True)
class ChecksumRecord:
    hash: str
    validated_at: str
    body_hash: str | None = None


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """One agent call, in call order."""

    step: str
    model: str
    tokens_in: int | None = None
    tokens_out: int | None = None
    duration_ms: int | None = None
    cost_usd: float | None = None

    def to_mapping(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "model": self.model,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "duration_ms": self.duration_ms,
            "cost_usd": self.cost_usd,
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> UsageRecord:
        cost = raw.get("cost_usd")
        return cls(
            step=str(raw["step"]),
            model=str(raw["model"]),
            tokens_in=_optional_int(raw.get("tokens_in")),
            tokens_out=_optional_int(raw.get("tokens_out")),
            duration_ms=_optional_int(raw.get("duration_ms")),
            cost_usd=float(cost) if cost is not None else None,
        )


@dataclass(frozen=True, slots=True)
class ValidationEntry:
    step: str
    valid: bool
    errors: tuple[str, ...]
    timestamp: str

    def to_mapping(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "valid": self.valid,
            "errors": list(self.errors),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ValidationEntry:
        return cls(
            step=str(raw["step"]),
            valid=bool(raw["valid"]),
            errors=tuple(str(item) for item in raw.get("errors") or ()),
            timestamp=str(raw["timestamp"]),
        )


@dataclass(slots=True)
class Change:
    """Mutable in-memory copy of one change record; persisted through ``StateStore``."""

    id: str
    phase: Phase = Phase.PROPOSED
    planning_iteration: int = 0
    implementation_iteration: int = 0
    created_at: str = field(default_factory=lambda: format_timestamp(utc_now()))
    updated_at: str = ""
    last_action: str | None = None
    last_verdict: str | None = None
    checksums: dict[str, ChecksumRecord] = field(default_factory=dict)
    validations: list[ValidationEntry] = field(default_factory=list)
    usage: list[UsageRecord] = field(default_factory=list)
    schema_version: str = STATE_SCHEMA_VERSION

    def can_transition(self, target: Phase) -> bool:
        return target in TRANSITIONS[self.phase]

    def transition_to(self, target: Phase, *, reason: str = "") -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(self.phase.value, target.value, reason=reason)
        if target is not self.phase:
            if target is Phase.PROPOSED:
                self.planning_iteration = 0
            elif target is Phase.IMPLEMENTING:
                self.implementation_iteration = 0
        self.phase = target

    def require_phase(self, *allowed: Phase, action: str) -> None:
        if self.phase not in allowed:
            expected = "/".join(phase.value for phase in allowed)
            raise InvalidTransitionError(
                self.phase.value,
                action,
                reason=f"requires phase {expected}",
            )

    def record_usage(self, record: UsageRecord) -> None:
        self.usage.append(record)

    def record_checksum(
        self,
        path: str,
        digest: str,
        *,
        body_digest: str | None = None,
        validated_at: datetime | None = None,
    ) -> None:
        """Record ``digest`` for ``path``; an unchanged digest keeps its first validation time."""
        existing = self.checksums.get(path)
        if existing is not None and existing.hash == digest and existing.body_hash == body_digest:
            return
        stamp = format_timestamp(validated_at or utc_now())
        self.checksums[path] = ChecksumRecord(hash=digest, validated_at=stamp, body_hash=body_digest)

    def record_validation(self, step: str, errors: Iterable[str], *, at: datetime | None = None) -> ValidationEntry:
        """Append a validation outcome unless it repeats the previous outcome of ``step``."""
        rendered = tuple(errors)
        previous = next((entry for entry in reversed(self.validations) if entry.step == step), None)
        if previous is not None and previous.errors == rendered:
            return previous
        entry = ValidationEntry(
            step=step,
            valid=not rendered,
            errors=rendered,
            timestamp=format_timestamp(at or utc_now()),
        )
        self.validations.append(entry)
        return entry

    @property
    def total_cost_usd(self) -> float:
        return round(sum(record.cost_usd or 0.0 for record in self.usage), 6)

    def to_mapping(self) -> dict[str, Any]:
        return {
            "change_id": self.id,
            "schema_version": self.schema_version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "phase": self.phase.value,
            "planning_iteration": self.planning_iteration,
            "implementation_iteration": self.implementation_iteration,
            "last_action": self.last_action,
            "last_verdict": self.last_verdict,
            "checksums": {path: _checksum_mapping(record) for path, record in sorted(self.checksums.items())},
            "validations": [entry.to_mapping() for entry in self.validations],
            "usage": [record.to_mapping() for record in self.usage],
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Change:
        """Rebuild a change from its persisted form; raises ``KeyError``/``ValueError`` on bad data."""

        planning = int(raw.get("planning_iteration", 0))
        implementation = int(raw.get("implementation_iteration", 0))
        if planning < 0 or implementation < 0:
            raise ValueError("iteration counters must be >= 0")

        checksums_raw = raw.get("checksums") or {}
        if not isinstance(checksums_raw, Mapping):
            raise ValueError("checksums must be a mapping")
        checksums: dict[str, ChecksumRecord] = {}
        for path, entry in checksums_raw.items():
            if not isinstance(entry, Mapping):
                raise ValueError(f"checksums.{path} must be a mapping")
            checksums[str(path)] = ChecksumRecord(
                hash=str(entry["hash"]),
                validated_at=str(entry.get("validated_at", "")),
                body_hash=_optional_str(entry.get("body_hash")),
            )

        return cls(
            id=str(raw["change_id"]),
            phase=Phase(raw.get("phase", Phase.PROPOSED.value)),
            planning_iteration=planning,
            implementation_iteration=implementation,
            created_at=str(raw.get("created_at", "")),
            updated_at=str(raw.get("updated_at", "")),
            last_action=_optional_str(raw.get("last_action")),
            last_verdict=_optional_str(raw.get("last_verdict")),
            checksums=checksums,
            validations=[ValidationEntry.from_mapping(item) for item in raw.get("validations") or ()],
            usage=[UsageRecord.from_mapping(item) for item in raw.get("usage") or ()],
            schema_version=str(raw.get("schema_version", STATE_SCHEMA_VERSION)),
        )


def _checksum_mapping(record: ChecksumRecord) -> dict[str, str]:
    mapping = {"hash": record.hash, "validated_at": record.validated_at}
    if record.body_hash is not None:
        mapping["body_hash"] = record.body_hash
    return mapping


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("expected an integer, got a boolean")
    return int(value)  # type: ignore[call-overload]


def _optional_str(value: object) -> str | None:
    return None if value is None else str(value)


__all__ = [
    "Change",
    "ChecksumRecord",
    "Phase",
    "TERMINAL_PHASES",
    "TRANSITIONS",
    "UsageRecord",
    "ValidationEntry",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
]
