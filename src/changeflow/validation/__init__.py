"""
changeflow — validation layer

File: src/changeflow/validation/__init__.py

Purpose
- Schema and consistency checks over a change directory, reported as structured findings
  rather than bare failures.
"""

from __future__ import annotations

from changeflow.validation.consistency import check_consistency
from changeflow.validation.engine import validate, validate_document
from changeflow.validation.report import (
    Category,
    Finding,
    Location,
    Severity,
    ValidationMode,
    ValidationReport,
)
from changeflow.validation.rules import check_document

__all__ = [
    "Category",
    "Finding",
    "Location",
    "Severity",
    "ValidationMode",
    "ValidationReport",
    "check_consistency",
    "check_document",
    "validate",
    "validate_document",
]
