"""
changeflow — frontmatter document parser

File: src/changeflow/documents/frontmatter.py

Purpose
- Split a change document into typed frontmatter and a free-text body, and serialize it
  back so that ``parse(serialize(doc))`` reproduces the same frontmatter.

Functional requirements
- A leading byte-order marker is dropped and CRLF / lone CR line endings become LF before
  splitting.
- The opening delimiter is the first line; the closing delimiter is a ``---`` line anchored at
  a line start, so delimiter text inside a multi-line YAML scalar cannot close the block.
- Malformed documents raise ``ParseError``; nothing is guessed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

from changeflow.documents.models import (
    DocumentKind,
    Frontmatter,
    FrontmatterSchemaError,
    declared_kind,
    frontmatter_from_mapping,
)
from changeflow.errors import ParseError

_BOM: Final[str] = "\ufeff"
_DELIMITER: Final[str] = "---"
_CLOSING_RE: Final[re.Pattern[str]] = re.compile(r"\n---[ \t]*(?:\n|$)")
_OPENING_TAIL_RE: Final[re.Pattern[str]] = re.compile(r"[ \t]*(?:\n|$)")


@dataclass(frozen=True, slots=True)
class RawDocument:
    """Document split into its undecoded-kind frontmatter mapping and body."""

    frontmatter: dict[str, Any] | None
    body: str
    body_line: int


@dataclass(frozen=True, slots=True)
class Document:
    kind: DocumentKind
    frontmatter: Frontmatter
    body: str
    path: Path | None = None


def normalize_newlines(raw: str) -> str:
    text = raw[1:] if raw.startswith(_BOM) else raw
    return text.replace("\r\n", "\n").replace("\r", "\n")


def has_frontmatter(raw: str) -> bool:
    text = normalize_newlines(raw)
    return text.startswith(_DELIMITER) and _OPENING_TAIL_RE.match(text, len(_DELIMITER)) is not None


def split_frontmatter(raw: str) -> RawDocument:
    """Split ``raw`` into its frontmatter mapping (``None`` when absent) and body.

    Raises ``ParseError`` when the opening delimiter has no anchored closing delimiter or
    the block is not a YAML mapping.
    """

    text = normalize_newlines(raw)
    if not has_frontmatter(text):
        return RawDocument(frontmatter=None, body=text, body_line=1)

    opening_end = text.find("\n")
    if opening_end == -1:
        raise ParseError(
            ParseError.UNTERMINATED_FRONTMATTER,
            "frontmatter opened but never closed",
            line=1,
            hint="add a closing '---' line after the metadata block",
        )

    closing = _CLOSING_RE.search(text, opening_end)
    if closing is None:
        raise ParseError(
            ParseError.UNTERMINATED_FRONTMATTER,
            "frontmatter opened but never closed",
            line=1,
            hint="add a closing '---' line after the metadata block",
        )

    yaml_text = text[opening_end + 1 : closing.start() + 1]
    body = text[closing.end() :]
    body_line = text.count("\n", 0, closing.end()) + 1
    try:
        loaded = yaml.safe_load(yaml_text) if yaml_text.strip() else {}
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        line = mark.line + 2 if mark is not None else 1
        raise ParseError(
            ParseError.INVALID_YAML,
            f"frontmatter is not valid YAML: {_yaml_problem(exc)}",
            line=line,
        ) from exc
    if not isinstance(loaded, dict):
        raise ParseError(
            ParseError.SCHEMA_MISMATCH,
            f"frontmatter must be a mapping, got {type(loaded).__name__}",
            line=2,
        )
    return RawDocument(
        frontmatter={str(key): value for key, value in loaded.items()},
        body=body,
        body_line=body_line,
    )


def parse(
    raw: str,
    *,
    kind: DocumentKind | None = None,
    path: Path | str | None = None,
) -> Document:
    """Parse ``raw`` into a typed ``Document``.

    When ``kind`` is given the frontmatter must declare that kind; otherwise the declared
    ``type`` selects the schema.
    """

    source = Path(path) if path is not None else None
    try:
        split = split_frontmatter(raw)
    except ParseError as exc:
        if source is None:
            raise
        raise exc.with_path(source) from exc

    if split.frontmatter is None:
        raise ParseError(
            ParseError.MISSING_FRONTMATTER,
            "document has no frontmatter block",
            path=source,
            line=1,
            hint="start the document with a '---' delimited YAML block",
        )

    declared = declared_kind(split.frontmatter)
    target = kind if kind is not None else declared
    if target is None:
        raise ParseError(
            ParseError.SCHEMA_MISMATCH,
            f"unknown document type {split.frontmatter.get('type')!r}",
            path=source,
            line=2,
        )

    try:
        frontmatter = frontmatter_from_mapping(target, split.frontmatter)
    except FrontmatterSchemaError as exc:
        raise ParseError(ParseError.SCHEMA_MISMATCH, str(exc), path=source, line=2) from exc

    return Document(kind=target, frontmatter=frontmatter, body=split.body, path=source)


def read_document(path: Path, *, kind: DocumentKind | None = None) -> Document:
    return parse(path.read_text(encoding="utf-8"), kind=kind, path=path)


def serialize_frontmatter(frontmatter: Frontmatter) -> str:
    dumped = yaml.safe_dump(
        frontmatter.to_mapping(),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"{_DELIMITER}\n{dumped}{_DELIMITER}\n"


def serialize(document: Document) -> str:
    return serialize_frontmatter(document.frontmatter) + document.body


def strip_frontmatter(raw: str) -> str:
    """Return only the body of ``raw`` (the whole normalized text when there is no block)."""
    return split_frontmatter(raw).body


def _yaml_problem(exc: yaml.YAMLError) -> str:
    problem = getattr(exc, "problem", None)
    return str(problem) if problem else str(exc).splitlines()[0]


__all__ = [
    "Document",
    "RawDocument",
    "has_frontmatter",
    "normalize_newlines",
    "parse",
    "read_document",
    "serialize",
    "serialize_frontmatter",
    "split_frontmatter",
    "strip_frontmatter",
]
