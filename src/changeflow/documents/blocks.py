"""
changeflow — structured-block extraction

File: src/changeflow/documents/blocks.py

Purpose
- Pull typed records (``task``, ``requirement``, ``issue``) out of a document body. Records
  live in fenced ``yaml`` blocks whose decoded root key names the record kind.

Functional requirements
- Traversal is block-aware: only real fenced blocks are inspected, so a YAML snippet quoted
  inside another fence or in prose is never picked up.
- Blocks that decode but carry an unrelated root key are skipped silently.
- Blocks that fail to decode, or decode under the right key but violate the record schema,
  emit a non-fatal warning and are skipped.
- Results keep document order and the character offset of each opening fence.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Generic, NamedTuple, TypeVar

import yaml

from changeflow.documents.markdown import iter_fenced_blocks

logger = logging.getLogger(__name__)

_YAML_LANGUAGES: Final[frozenset[str]] = frozenset({"yaml", "yml"})


class BlockKind(enum.StrEnum):
    TASK = "task"
    REQUIREMENT = "requirement"
    ISSUE = "issue"


class TaskAction(enum.StrEnum):
    CREATE = "CREATE"
    MODIFY = "MODIFY"
    DELETE = "DELETE"
    RENAME = "RENAME"


class TaskStatus(enum.StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class Priority(enum.StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RequirementStatus(enum.StrEnum):
    DRAFT = "draft"
    REVIEWED = "reviewed"
    APPROVED = "approved"


class BlockSchemaError(ValueError):
    """Decoded block payload does not satisfy its record schema."""


@dataclass(frozen=True, slots=True)
class TaskBlock:
    id: str
    action: TaskAction
    file: str
    status: TaskStatus = TaskStatus.PENDING
    spec_ref: str | None = None
    depends_on: tuple[str, ...] = ()
    estimated_lines: int | None = None
    layer: str | None = None
    description: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> TaskBlock:
        depends = payload.get("depends_on", payload.get("depends", []))
        if depends is None:
            depends = []
        if isinstance(depends, (str, int)):
            depends = [depends]
        if not isinstance(depends, list):
            raise BlockSchemaError("depends_on must be a list of task ids")
        estimated = payload.get("estimated_lines")
        if estimated is not None and (isinstance(estimated, bool) or not isinstance(estimated, int)):
            raise BlockSchemaError("estimated_lines must be an integer")
        file_value = payload.get("file")
        if isinstance(file_value, Mapping):
            file_value = file_value.get("path")
        return cls(
            id=_required_id(payload),
            action=_enum(TaskAction, payload.get("action"), "action"),
            file=_required_text(file_value, "file"),
            status=_enum(TaskStatus, payload.get("status", TaskStatus.PENDING.value), "status"),
            spec_ref=_optional_text(payload.get("spec_ref"), "spec_ref"),
            depends_on=tuple(str(item).strip() for item in depends if str(item).strip()),
            estimated_lines=estimated,
            layer=_optional_text(payload.get("layer"), "layer"),
            description=_optional_text(payload.get("description"), "description"),
        )


@dataclass(frozen=True, slots=True)
class RequirementBlock:
    id: str
    priority: Priority
    status: RequirementStatus = RequirementStatus.DRAFT
    title: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> RequirementBlock:
        return cls(
            id=_required_id(payload),
            priority=_enum(Priority, payload.get("priority"), "priority"),
            status=_enum(
                RequirementStatus,
                payload.get("status", RequirementStatus.DRAFT.value),
                "status",
            ),
            title=_optional_text(payload.get("title"), "title"),
        )


@dataclass(frozen=True, slots=True)
class IssueLocation:
    file: str
    line: int | None = None
    section: str | None = None


@dataclass(frozen=True, slots=True)
class IssueBlock:
    id: int
    severity: Priority
    category: str
    location: IssueLocation | None = None
    affects_requirements: tuple[str, ...] = ()
    auto_fixable: bool | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> IssueBlock:
        raw_id = payload.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, int):
            raise BlockSchemaError("id must be an integer")
        location: IssueLocation | None = None
        raw_location = payload.get("location")
        if raw_location is not None:
            if not isinstance(raw_location, Mapping):
                raise BlockSchemaError("location must be a mapping")
            line = raw_location.get("line")
            if line is not None and (isinstance(line, bool) or not isinstance(line, int)):
                raise BlockSchemaError("location.line must be an integer")
            location = IssueLocation(
                file=_required_text(raw_location.get("file"), "location.file"),
                line=line,
                section=_optional_text(raw_location.get("section"), "location.section"),
            )
        affects = payload.get("affects_requirements") or []
        if not isinstance(affects, list):
            raise BlockSchemaError("affects_requirements must be a list")
        auto_fixable = payload.get("auto_fixable")
        if auto_fixable is not None and not isinstance(auto_fixable, bool):
            raise BlockSchemaError("auto_fixable must be a boolean")
        return cls(
            id=raw_id,
            severity=_enum(Priority, payload.get("severity"), "severity"),
            category=_required_text(payload.get("category"), "category"),
            location=location,
            affects_requirements=tuple(str(item) for item in affects),
            auto_fixable=auto_fixable,
        )


BLOCK_TYPES: Final[dict[BlockKind, type[Any]]] = {
    BlockKind.TASK: TaskBlock,
    BlockKind.REQUIREMENT: RequirementBlock,
    BlockKind.ISSUE: IssueBlock,
}

T = TypeVar("T")


class LocatedBlock(NamedTuple, Generic[T]):
    block: T
    offset: int


@dataclass(frozen=True, slots=True)
class RawBlock:
    """Fenced YAML block decoded (or not) but not yet checked against a record schema."""

    offset: int
    line: int
    content: str
    root_keys: tuple[str, ...]
    payload: Any = None
    decode_error: str | None = None


@dataclass(frozen=True, slots=True)
class BlockWarning:
    kind: BlockKind
    line: int
    offset: int
    message: str


@dataclass(slots=True)
class BlockScan(Generic[T]):
    blocks: list[LocatedBlock[T]] = field(default_factory=list)
    warnings: list[BlockWarning] = field(default_factory=list)


def iter_yaml_blocks(body: str) -> list[RawBlock]:
    """Decode every fenced ``yaml``/``yml`` block of ``body`` in document order."""

    raw_blocks: list[RawBlock] = []
    for fenced in iter_fenced_blocks(body):
        if fenced.language not in _YAML_LANGUAGES:
            continue
        try:
            decoded = yaml.safe_load(fenced.content)
        except yaml.YAMLError as exc:
            raw_blocks.append(
                RawBlock(
                    offset=fenced.offset,
                    line=fenced.line,
                    content=fenced.content,
                    root_keys=(),
                    decode_error=str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
                )
            )
            continue
        root_keys: tuple[str, ...] = ()
        if isinstance(decoded, Mapping):
            root_keys = tuple(str(key) for key in decoded)
        raw_blocks.append(
            RawBlock(
                offset=fenced.offset,
                line=fenced.line,
                content=fenced.content,
                root_keys=root_keys,
                payload=decoded,
            )
        )
    return raw_blocks


def scan_blocks(body: str, kind: BlockKind) -> BlockScan[Any]:
    """Extract ``kind`` records from ``body`` and collect non-fatal warnings."""

    scan: BlockScan[Any] = BlockScan()
    record_type = BLOCK_TYPES[kind]
    for raw in iter_yaml_blocks(body):
        if raw.decode_error is not None:
            if f"{kind.value}:" in raw.content:
                _warn(scan, kind, raw, f"failed to decode {kind.value} block: {raw.decode_error}")
            continue
        if kind.value not in raw.root_keys:
            continue
        inner = raw.payload[kind.value]
        if not isinstance(inner, Mapping):
            _warn(scan, kind, raw, f"{kind.value} block must contain a mapping")
            continue
        try:
            record = record_type.from_mapping(inner)
        except BlockSchemaError as exc:
            _warn(scan, kind, raw, f"invalid {kind.value} block: {exc}")
            continue
        scan.blocks.append(LocatedBlock(record, raw.offset))
    return scan


def extract_blocks(body: str, kind: BlockKind) -> list[LocatedBlock[Any]]:
    """Return ``(record, offset)`` pairs for every valid ``kind`` block in ``body``."""
    return scan_blocks(body, kind).blocks


def extract_tasks(body: str) -> list[LocatedBlock[TaskBlock]]:
    return extract_blocks(body, BlockKind.TASK)


def extract_requirements(body: str) -> list[LocatedBlock[RequirementBlock]]:
    return extract_blocks(body, BlockKind.REQUIREMENT)


def extract_issues(body: str) -> list[LocatedBlock[IssueBlock]]:
    return extract_blocks(body, BlockKind.ISSUE)


def _warn(scan: BlockScan[Any], kind: BlockKind, raw: RawBlock, message: str) -> None:
    warning = BlockWarning(kind=kind, line=raw.line, offset=raw.offset, message=message)
    scan.warnings.append(warning)
    logger.warning("line %d: %s", raw.line, message)


def _required_id(payload: Mapping[str, Any]) -> str:
    value = payload.get("id")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise BlockSchemaError("id is required")
    text = str(value).strip()
    if not text:
        raise BlockSchemaError("id must not be empty")
    return text


def _required_text(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise BlockSchemaError(f"{name} is required")
    return value.strip()


def _optional_text(value: object, name: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise BlockSchemaError(f"{name} must be a string")
    return str(value)


E = TypeVar("E", bound=enum.Enum)


def _enum(enum_type: type[E], value: object, name: str) -> E:
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(str(member.value) for member in enum_type)
        raise BlockSchemaError(f"{name} {value!r} is not one of: {allowed}") from None


__all__ = [
    "BLOCK_TYPES",
    "BlockKind",
    "BlockScan",
    "BlockSchemaError",
    "BlockWarning",
    "IssueBlock",
    "IssueLocation",
    "LocatedBlock",
    "Priority",
    "RawBlock",
    "RequirementBlock",
    "RequirementStatus",
    "TaskAction",
    "TaskBlock",
    "TaskStatus",
    "extract_blocks",
    "extract_issues",
    "extract_requirements",
    "extract_tasks",
    "iter_yaml_blocks",
    "scan_blocks",
]
