from __future__ import annotations

import json
from pathlib import Path

import pytest

from changeflow.orchestration.tool_surface import (
    ALL_TOOLS,
    MCP_SERVER_NAME,
    Role,
    Stage,
    stage_for,
    tools_for,
    write_mcp_config,
)


@pytest.mark.parametrize("role", list(Role))
def test_every_role_has_a_stage_with_known_tools(role: Role) -> None:
    tools = tools_for(stage_for(role))

    assert tools
    assert set(tools) <= set(ALL_TOOLS)


def test_reviewer_stages_cannot_author_planning_documents() -> None:
    for stage in (Stage.CHALLENGE, Stage.IMPLEMENT, Stage.REVIEW):
        assert not {"create_proposal", "create_spec", "create_tasks"} & set(tools_for(stage))
    assert "append_review" in tools_for(Stage.REVIEW)
    assert "write_knowledge" in tools_for(Stage.ARCHIVE)
    assert tools_for(Stage.PLAN) == ALL_TOOLS


def test_resolve_shares_the_implement_surface() -> None:
    assert stage_for(Role.RESOLVE) is Stage.IMPLEMENT
    assert stage_for(Role.REPROPOSAL) is Stage.PLAN


def test_mcp_config_file_names_the_stage(tmp_path: Path) -> None:
    path = write_mcp_config(tmp_path / "mcp", Stage.CHALLENGE, server_command="/usr/bin/changeflow")

    assert path == tmp_path / "mcp" / "mcp-challenge.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload == {
        "mcpServers": {
            MCP_SERVER_NAME: {
                "command": "/usr/bin/changeflow",
                "args": ["mcp-server", "--tools", "challenge"],
            }
        }
    }
