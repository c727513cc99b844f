"""
changeflow — content checksums and staleness

File: src/changeflow/documents/checksum.py

Purpose
- Content-normalized SHA-256 digests so staleness reacts to semantic edits only, never to
  line-ending or trailing-whitespace churn.

Functional requirements
- Digests render as ``sha256:<hex>``.
- Normalization unifies line endings, strips trailing whitespace per line, and drops
  trailing blank lines.
- The body-only variant ignores frontmatter so administrative metadata edits do not
  invalidate downstream reviews.
"""

from __future__ import annotations

from pathlib import Path

from changeflow.constants import CHECKSUM_PREFIX
from changeflow.documents.frontmatter import normalize_newlines, strip_frontmatter
from changeflow.utils.hashing import sha256_text


def normalize_content(content: str) -> str:
    lines = normalize_newlines(content).split("\n")
    return "\n".join(line.rstrip() for line in lines).rstrip()


def compute_checksum(content: str) -> str:
    """Return the ``sha256:<hex>`` digest of normalized ``content``."""
    return f"{CHECKSUM_PREFIX}{sha256_text(normalize_content(content))}"


def compute_body_checksum(content: str) -> str:
    """Digest of ``content`` with any frontmatter block removed.

    Raises ``ParseError`` when the frontmatter block is unterminated.
    """
    return compute_checksum(strip_frontmatter(content))


def compute_file_checksum(path: Path) -> str:
    return compute_checksum(path.read_text(encoding="utf-8"))


def is_stale(recorded: str | None, content: str) -> bool:
    """``True`` when ``content`` no longer matches the ``recorded`` digest (or none exists)."""
    if recorded is None:
        return True
    return recorded != compute_checksum(content)


def is_body_stale(recorded: str | None, content: str) -> bool:
    if recorded is None:
        return True
    return recorded != compute_body_checksum(content)


__all__ = [
    "compute_body_checksum",
    "compute_checksum",
    "compute_file_checksum",
    "is_body_stale",
    "is_stale",
    "normalize_content",
]
