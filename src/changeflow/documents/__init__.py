"""
changeflow — document layer

File: src/changeflow/documents/__init__.py

Purpose
- Frontmatter parsing, structured-block extraction, and content checksums for the documents
  that make up a change.

Non-functional requirements
- Everything in this layer is synchronous and pure apart from explicit file reads.
"""

from __future__ import annotations

from changeflow.documents.blocks import (
    BlockKind,
    IssueBlock,
    LocatedBlock,
    RequirementBlock,
    TaskBlock,
    extract_blocks,
    scan_blocks,
)
from changeflow.documents.checksum import (
    compute_body_checksum,
    compute_checksum,
    is_body_stale,
    is_stale,
)
from changeflow.documents.frontmatter import (
    Document,
    parse,
    read_document,
    serialize,
    split_frontmatter,
)
from changeflow.documents.models import DocumentKind

__all__ = [
    "BlockKind",
    "Document",
    "DocumentKind",
    "IssueBlock",
    "LocatedBlock",
    "RequirementBlock",
    "TaskBlock",
    "compute_body_checksum",
    "compute_checksum",
    "extract_blocks",
    "is_body_stale",
    "is_stale",
    "parse",
    "read_document",
    "scan_blocks",
    "serialize",
    "split_frontmatter",
]
