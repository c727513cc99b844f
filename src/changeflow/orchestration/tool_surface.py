"""
changeflow — agent tool surface

File: src/changeflow/orchestration/tool_surface.py

Purpose
- Name the agent roles and workflow stages, and narrow the document tools each stage exposes
  to an agent's protocol server.

Functional requirements
- Every role belongs to exactly one stage; planning sees every tool, later stages a subset.
- The per-stage server config is written as ``mcp-<stage>.json`` for the agent CLI to load.

Non-functional requirements
- Config files are written atomically.
"""

from __future__ import annotations

import enum
import json
from pathlib import Path
from typing import Final

from changeflow.utils.fs import atomic_write

MCP_SERVER_NAME: Final[str] = "changeflow"


class Stage(enum.StrEnum):
    PLAN = "plan"
    CHALLENGE = "challenge"
    IMPLEMENT = "implement"
    REVIEW = "review"
    ARCHIVE = "archive"


class Role(enum.StrEnum):
    PROPOSAL = "proposal"
    REPROPOSAL = "reproposal"
    CHALLENGE = "challenge"
    IMPLEMENT = "implement"
    REVIEW = "review"
    RESOLVE = "resolve"
    ARCHIVE = "archive"


ALL_TOOLS: Final[tuple[str, ...]] = (
    "append_review",
    "create_proposal",
    "create_spec",
    "create_tasks",
    "list_changed_files",
    "list_knowledge",
    "list_specs",
    "read_all_requirements",
    "read_file",
    "read_implementation_summary",
    "read_knowledge",
    "validate_change",
    "write_knowledge",
)

STAGE_TOOLS: Final[dict[Stage, tuple[str, ...]]] = {
    Stage.PLAN: ALL_TOOLS,
    Stage.CHALLENGE: ("read_file", "list_specs", "read_knowledge", "list_knowledge", "validate_change"),
    Stage.IMPLEMENT: (
        "read_all_requirements",
        "read_implementation_summary",
        "list_changed_files",
        "read_file",
    ),
    Stage.REVIEW: ("validate_change", "append_review", "read_file"),
    Stage.ARCHIVE: (
        "read_knowledge",
        "list_knowledge",
        "write_knowledge",
        "read_file",
        "list_specs",
        "create_spec",
    ),
}

ROLE_STAGES: Final[dict[Role, Stage]] = {
    Role.PROPOSAL: Stage.PLAN,
    Role.REPROPOSAL: Stage.PLAN,
    Role.CHALLENGE: Stage.CHALLENGE,
    Role.IMPLEMENT: Stage.IMPLEMENT,
    Role.RESOLVE: Stage.IMPLEMENT,
    Role.REVIEW: Stage.REVIEW,
    Role.ARCHIVE: Stage.ARCHIVE,
}


def stage_for(role: Role) -> Stage:
    return ROLE_STAGES[role]


def tools_for(stage: Stage) -> tuple[str, ...]:
    return STAGE_TOOLS[stage]


def mcp_config(stage: Stage, *, server_command: str = "changeflow") -> dict[str, object]:
    return {
        "mcpServers": {
            MCP_SERVER_NAME: {
                "command": server_command,
                "args": ["mcp-server", "--tools", stage.value],
            }
        }
    }


def write_mcp_config(directory: Path, stage: Stage, *, server_command: str = "changeflow") -> Path:
    """Write ``mcp-<stage>.json`` into ``directory`` and return its path."""
    target = directory / f"mcp-{stage.value}.json"
    payload = json.dumps(mcp_config(stage, server_command=server_command), indent=2, sort_keys=True)
    atomic_write(target, payload + "\n")
    return target


__all__ = [
    "ALL_TOOLS",
    "MCP_SERVER_NAME",
    "ROLE_STAGES",
    "Role",
    "STAGE_TOOLS",
    "Stage",
    "mcp_config",
    "stage_for",
    "tools_for",
    "write_mcp_config",
]
