"""
changeflow — workflow layer

File: src/changeflow/workflow/__init__.py

Purpose
- The persisted change record, its phase machine, verdict parsing, and the engine that
  advances a change through proposal, challenge, implementation, review and archive.
"""

from __future__ import annotations

from changeflow.workflow.change import (
    TRANSITIONS,
    Change,
    ChecksumRecord,
    Phase,
    UsageRecord,
    ValidationEntry,
)
from changeflow.workflow.engine import StepOutcome, WorkflowEngine
from changeflow.workflow.state import StalenessReport, StateStore
from changeflow.workflow.verdict import (
    ProposalVerdict,
    ReviewVerdict,
    parse_proposal_verdict,
    parse_review_verdict,
)

__all__ = [
    "Change",
    "ChecksumRecord",
    "Phase",
    "ProposalVerdict",
    "ReviewVerdict",
    "StalenessReport",
    "StateStore",
    "StepOutcome",
    "TRANSITIONS",
    "UsageRecord",
    "ValidationEntry",
    "WorkflowEngine",
    "parse_proposal_verdict",
    "parse_review_verdict",
]
