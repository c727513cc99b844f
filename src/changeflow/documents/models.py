"""
changeflow — typed document frontmatter

File: src/changeflow/documents/models.py

Purpose
- Typed frontmatter records for every document kind of a change (proposal, spec, tasks,
  challenge, review) plus the field-level schema checks shared by the parser and the
  validation engine.

Functional requirements
- ``check_frontmatter`` never raises on bad input; it returns structured field issues.
- ``from_mapping`` raises ``FrontmatterSchemaError`` carrying the same issues.
- ``to_mapping`` is the exact inverse of ``from_mapping`` for every accepted record, and
  unknown keys survive a round trip through ``extra``.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Final

CHALLENGE_VERDICT_VALUES: Final[tuple[str, ...]] = ("APPROVED", "NEEDS_REVISION", "REJECTED")
REVIEW_VERDICT_VALUES: Final[tuple[str, ...]] = ("APPROVED", "NEEDS_CHANGES", "MAJOR_ISSUES")
RISK_SEVERITY_VALUES: Final[tuple[str, ...]] = ("high", "medium", "low")


class DocumentKind(enum.StrEnum):
    PROPOSAL = "proposal"
    SPEC = "spec"
    TASKS = "tasks"
    CHALLENGE = "challenge"
    REVIEW = "review"


class ProposalStatus(enum.StrEnum):
    PROPOSED = "proposed"
    CHALLENGED = "challenged"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class FieldIssue:
    """Single frontmatter schema failure (dotted field path + message)."""

    field: str
    message: str


class FrontmatterSchemaError(ValueError):
    def __init__(self, kind: str, issues: tuple[FieldIssue, ...]) -> None:
        self.kind = kind
        self.issues = issues
        rendered = "; ".join(f"{issue.field}: {issue.message}" for issue in issues)
        super().__init__(f"{kind} frontmatter invalid: {rendered}")


@dataclass(frozen=True, slots=True)
class SpecReference:
    id: str
    path: str

    def to_mapping(self) -> dict[str, Any]:
        return {"id": self.id, "path": self.path}


@dataclass(frozen=True, slots=True)
class Risk:
    severity: str
    category: str
    description: str

    def to_mapping(self) -> dict[str, Any]:
        return {"severity": self.severity, "category": self.category, "description": self.description}


@dataclass(frozen=True, slots=True)
class RequirementsSummary:
    total: int
    ids: tuple[str, ...] = ()

    def to_mapping(self) -> dict[str, Any]:
        return {"total": self.total, "ids": list(self.ids)}


class _Reader:
    """Collects field issues while coercing a raw frontmatter mapping."""

    __slots__ = ("_issues", "_raw", "_consumed")

    def __init__(self, raw: Mapping[str, object]) -> None:
        self._raw = raw
        self._issues: list[FieldIssue] = []
        self._consumed: set[str] = set()

    @property
    def issues(self) -> tuple[FieldIssue, ...]:
        return tuple(self._issues)

    def add(self, path: str, message: str) -> None:
        self._issues.append(FieldIssue(path, message))

    def extra(self) -> dict[str, Any]:
        return {key: value for key, value in self._raw.items() if key not in self._consumed}

    def _take(self, key: str) -> object:
        self._consumed.add(key)
        return self._raw.get(key)

    def doc_type(self, expected: DocumentKind) -> None:
        value = self._take("type")
        if value is None:
            self.add("type", f"required field missing (expected {expected.value!r})")
        elif value != expected.value:
            self.add("type", f"declares {value!r} but document is a {expected.value!r}")

    def required_str(self, key: str) -> str:
        value = self._take(key)
        if value is None:
            self.add(key, "required field missing")
            return ""
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            self.add(key, f"must be a string, got {type(value).__name__}")
            return ""
        text = str(value).strip()
        if not text:
            self.add(key, "must not be empty")
        return text

    def optional_str(self, key: str) -> str | None:
        value = self._take(key)
        if value is None:
            return None
        if not isinstance(value, str):
            self.add(key, f"must be a string, got {type(value).__name__}")
            return None
        return value

    def integer(self, key: str, default: int, *, minimum: int = 0) -> int:
        value = self._take(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int):
            self.add(key, f"must be an integer, got {type(value).__name__}")
            return default
        if value < minimum:
            self.add(key, f"must be >= {minimum}")
        return value

    def choice(self, key: str, allowed: tuple[str, ...], *, required: bool) -> str | None:
        value = self._take(key)
        if value is None:
            if required:
                self.add(key, f"required field missing (one of {', '.join(allowed)})")
            return None
        if not isinstance(value, str) or value not in allowed:
            self.add(key, f"invalid value {value!r} (expected one of {', '.join(allowed)})")
            return None
        return value

    def mapping(self, key: str) -> dict[str, Any] | None:
        value = self._take(key)
        if value is None:
            return None
        if not isinstance(value, Mapping):
            self.add(key, f"must be a mapping, got {type(value).__name__}")
            return None
        return dict(value)

    def str_mapping(self, key: str) -> dict[str, str]:
        raw = self.mapping(key)
        if raw is None:
            return {}
        out: dict[str, str] = {}
        for item_key, item_value in raw.items():
            if not isinstance(item_value, str):
                self.add(f"{key}.{item_key}", "must be a string")
                continue
            out[str(item_key)] = item_value
        return out

    def items(self, key: str, build: Callable[[str, object], Any]) -> tuple[Any, ...]:
        value = self._take(key)
        if value is None:
            return ()
        if not isinstance(value, list):
            self.add(key, f"must be a list, got {type(value).__name__}")
            return ()
        built = []
        for index, item in enumerate(value):
            result = build(f"{key}[{index}]", item)
            if result is not None:
                built.append(result)
        return tuple(built)

    def spec_reference(self, path: str, item: object) -> SpecReference | None:
        if isinstance(item, str) and item.strip():
            spec_id = item.strip()
            return SpecReference(id=spec_id, path=f"specs/{spec_id}.md")
        if not isinstance(item, Mapping):
            self.add(path, "must be a spec id or an {id, path} mapping")
            return None
        spec_id = item.get("id")
        if not isinstance(spec_id, str) or not spec_id.strip():
            self.add(f"{path}.id", "required string field missing")
            return None
        spec_path = item.get("path")
        if spec_path is None:
            spec_path = f"specs/{spec_id}.md"
        elif not isinstance(spec_path, str):
            self.add(f"{path}.path", "must be a string")
            return None
        return SpecReference(id=spec_id, path=spec_path)

    def risk(self, path: str, item: object) -> Risk | None:
        if not isinstance(item, Mapping):
            self.add(path, "must be a mapping")
            return None
        severity = item.get("severity")
        if severity not in RISK_SEVERITY_VALUES:
            self.add(f"{path}.severity", f"invalid value {severity!r}")
            return None
        return Risk(
            severity=str(severity),
            category=str(item.get("category", "")),
            description=str(item.get("description", "")),
        )


@dataclass(frozen=True, slots=True)
class ProposalFrontmatter:
    kind: ClassVar[DocumentKind] = DocumentKind.PROPOSAL

    id: str
    status: ProposalStatus = ProposalStatus.PROPOSED
    version: int = 1
    iteration: int = 1
    summary: str | None = None
    affected_specs: tuple[SpecReference, ...] = ()
    risks: tuple[Risk, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def read(cls, reader: _Reader) -> ProposalFrontmatter:
        reader.doc_type(cls.kind)
        doc_id = reader.required_str("id")
        status = reader.choice("status", tuple(ProposalStatus), required=True)
        return cls(
            id=doc_id,
            status=ProposalStatus(status) if status else ProposalStatus.PROPOSED,
            version=reader.integer("version", 1, minimum=1),
            iteration=reader.integer("iteration", 1),
            summary=reader.optional_str("summary"),
            affected_specs=reader.items("affected_specs", reader.spec_reference),
            risks=reader.items("risks", reader.risk),
            extra=reader.extra(),
        )

    def to_mapping(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "version": self.version,
            "status": self.status.value,
            "iteration": self.iteration,
        }
        if self.summary is not None:
            out["summary"] = self.summary
        out["affected_specs"] = [ref.to_mapping() for ref in self.affected_specs]
        if self.risks:
            out["risks"] = [risk.to_mapping() for risk in self.risks]
        out.update(self.extra)
        return out


@dataclass(frozen=True, slots=True)
class SpecFrontmatter:
    kind: ClassVar[DocumentKind] = DocumentKind.SPEC

    id: str
    title: str
    version: int = 1
    parent_spec: str | None = None
    related_specs: tuple[SpecReference, ...] = ()
    requirements: RequirementsSummary | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def read(cls, reader: _Reader) -> SpecFrontmatter:
        reader.doc_type(cls.kind)
        doc_id = reader.required_str("id")
        title = reader.required_str("title")
        version = reader.integer("version", 1, minimum=1)
        parent = reader.optional_str("parent_spec")
        related = reader.items("related_specs", reader.spec_reference)
        requirements: RequirementsSummary | None = None
        raw_requirements = reader.mapping("requirements")
        if raw_requirements is not None:
            total = raw_requirements.get("total", 0)
            ids = raw_requirements.get("ids", [])
            if isinstance(total, bool) or not isinstance(total, int) or not isinstance(ids, list):
                reader.add("requirements", "expected {total: int, ids: [str]}")
            else:
                requirements = RequirementsSummary(total=total, ids=tuple(str(i) for i in ids))
        return cls(
            id=doc_id,
            title=title,
            version=version,
            parent_spec=parent,
            related_specs=related,
            requirements=requirements,
            extra=reader.extra(),
        )

    def to_mapping(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "title": self.title,
            "version": self.version,
        }
        if self.parent_spec is not None:
            out["parent_spec"] = self.parent_spec
        if self.related_specs:
            out["related_specs"] = [ref.to_mapping() for ref in self.related_specs]
        if self.requirements is not None:
            out["requirements"] = self.requirements.to_mapping()
        out.update(self.extra)
        return out


@dataclass(frozen=True, slots=True)
class TasksFrontmatter:
    kind: ClassVar[DocumentKind] = DocumentKind.TASKS

    id: str
    version: int = 1
    proposal_ref: str | None = None
    summary: dict[str, Any] | None = None
    layers: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def read(cls, reader: _Reader) -> TasksFrontmatter:
        reader.doc_type(cls.kind)
        return cls(
            id=reader.required_str("id"),
            version=reader.integer("version", 1, minimum=1),
            proposal_ref=reader.optional_str("proposal_ref"),
            summary=reader.mapping("summary"),
            layers=reader.mapping("layers"),
            extra=reader.extra(),
        )

    def to_mapping(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "type": self.kind.value, "version": self.version}
        if self.proposal_ref is not None:
            out["proposal_ref"] = self.proposal_ref
        if self.summary is not None:
            out["summary"] = dict(self.summary)
        if self.layers is not None:
            out["layers"] = dict(self.layers)
        out.update(self.extra)
        return out


@dataclass(frozen=True, slots=True)
class ChallengeFrontmatter:
    kind: ClassVar[DocumentKind] = DocumentKind.CHALLENGE

    id: str
    version: int = 1
    verdict: str | None = None
    verdict_reason: str | None = None
    issues: dict[str, Any] | None = None
    source_checksums: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def read(cls, reader: _Reader) -> ChallengeFrontmatter:
        reader.doc_type(cls.kind)
        return cls(
            id=reader.required_str("id"),
            version=reader.integer("version", 1, minimum=1),
            verdict=reader.choice("verdict", CHALLENGE_VERDICT_VALUES, required=False),
            verdict_reason=reader.optional_str("verdict_reason"),
            issues=reader.mapping("issues"),
            source_checksums=reader.str_mapping("source_checksums"),
            extra=reader.extra(),
        )

    def to_mapping(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "type": self.kind.value, "version": self.version}
        if self.verdict is not None:
            out["verdict"] = self.verdict
        if self.verdict_reason is not None:
            out["verdict_reason"] = self.verdict_reason
        if self.issues is not None:
            out["issues"] = dict(self.issues)
        if self.source_checksums:
            out["source_checksums"] = dict(self.source_checksums)
        out.update(self.extra)
        return out


@dataclass(frozen=True, slots=True)
class ReviewFrontmatter:
    kind: ClassVar[DocumentKind] = DocumentKind.REVIEW

    id: str
    version: int = 1
    iteration: int = 1
    verdict: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def read(cls, reader: _Reader) -> ReviewFrontmatter:
        reader.doc_type(cls.kind)
        return cls(
            id=reader.required_str("id"),
            version=reader.integer("version", 1, minimum=1),
            iteration=reader.integer("iteration", 1),
            verdict=reader.choice("verdict", REVIEW_VERDICT_VALUES, required=False),
            extra=reader.extra(),
        )

    def to_mapping(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "version": self.version,
            "iteration": self.iteration,
        }
        if self.verdict is not None:
            out["verdict"] = self.verdict
        out.update(self.extra)
        return out


Frontmatter = (
    ProposalFrontmatter
    | SpecFrontmatter
    | TasksFrontmatter
    | ChallengeFrontmatter
    | ReviewFrontmatter
)

FRONTMATTER_TYPES: Final[dict[DocumentKind, type[Any]]] = {
    DocumentKind.PROPOSAL: ProposalFrontmatter,
    DocumentKind.SPEC: SpecFrontmatter,
    DocumentKind.TASKS: TasksFrontmatter,
    DocumentKind.CHALLENGE: ChallengeFrontmatter,
    DocumentKind.REVIEW: ReviewFrontmatter,
}


def check_frontmatter(kind: DocumentKind, raw: Mapping[str, object]) -> tuple[FieldIssue, ...]:
    """Return every schema issue of ``raw`` as frontmatter of ``kind``."""
    reader = _Reader(raw)
    FRONTMATTER_TYPES[kind].read(reader)
    return reader.issues


def frontmatter_from_mapping(kind: DocumentKind, raw: Mapping[str, object]) -> Frontmatter:
    reader = _Reader(raw)
    record = FRONTMATTER_TYPES[kind].read(reader)
    if reader.issues:
        raise FrontmatterSchemaError(kind.value, reader.issues)
    return record


def declared_kind(raw: Mapping[str, object]) -> DocumentKind | None:
    value = raw.get("type")
    try:
        return DocumentKind(value) if isinstance(value, str) else None
    except ValueError:
        return None


__all__ = [
    "CHALLENGE_VERDICT_VALUES",
    "ChallengeFrontmatter",
    "DocumentKind",
    "FRONTMATTER_TYPES",
    "FieldIssue",
    "Frontmatter",
    "FrontmatterSchemaError",
    "ProposalFrontmatter",
    "ProposalStatus",
    "REVIEW_VERDICT_VALUES",
    "RequirementsSummary",
    "ReviewFrontmatter",
    "Risk",
    "SpecFrontmatter",
    "SpecReference",
    "TasksFrontmatter",
    "check_frontmatter",
    "declared_kind",
    "frontmatter_from_mapping",
]
