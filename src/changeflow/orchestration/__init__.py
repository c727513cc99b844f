"""
changeflow — orchestration layer

File: src/changeflow/orchestration/__init__.py

Purpose
- External agent invocation: model selection, argv construction, process supervision, and
  per-stage tool narrowing.
"""

from __future__ import annotations

from changeflow.orchestration.agents import (
    AgentResult,
    AgentRunner,
    CommandAgentRunner,
    UsageMetrics,
    assemble_prompt,
)
from changeflow.orchestration.model_selector import (
    ChangeStats,
    Complexity,
    ModelChoice,
    ModelSpec,
    Provider,
    ProviderCatalog,
    assess_complexity,
    default_catalogs,
)
from changeflow.orchestration.process import ProcessResult, run_process
from changeflow.orchestration.tool_surface import Role, Stage

__all__ = [
    "AgentResult",
    "AgentRunner",
    "ChangeStats",
    "CommandAgentRunner",
    "Complexity",
    "ModelChoice",
    "ModelSpec",
    "ProcessResult",
    "Provider",
    "ProviderCatalog",
    "Role",
    "Stage",
    "UsageMetrics",
    "assemble_prompt",
    "assess_complexity",
    "default_catalogs",
    "run_process",
]
