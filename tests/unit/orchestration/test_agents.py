"""
changeflow — unit tests for agent invocation

File: tests/unit/orchestration/test_agents.py

Purpose
- Validate per-provider argv construction, JSON-lines transcript decoding, usage accounting
  and the command runner against a fake agent executable.

What this test file should cover
- Prompt assembly layout.
- claude/codex/gemini transcript shapes.
- Cost estimation fallback from the model catalog.
"""

from __future__ import annotations

import json
import sys
from dataclasses import replace
from pathlib import Path

import pytest

from changeflow.orchestration.agents import (
    AgentRunner,
    CommandAgentRunner,
    ContextDoc,
    UsageMetrics,
    assemble_prompt,
    build_argv,
    extract_text,
    parse_usage,
    self_review_passed,
)
from changeflow.orchestration.model_selector import Complexity, ModelChoice, Provider, default_catalogs
from changeflow.orchestration.tool_surface import Role

CLAUDE_TRANSCRIPT = "\n".join(
    [
        json.dumps({"type": "system", "subtype": "init"}),
        json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": "Working"}]}}),
        json.dumps(
            {
                "type": "result",
                "result": "Wrote proposal.md",
                "usage": {"input_tokens": 1200, "output_tokens": 300},
                "total_cost_usd": 0.042,
                "duration_ms": 5100,
            }
        ),
    ]
)

CODEX_TRANSCRIPT = "\n".join(
    [
        "codex banner line",
        json.dumps({"type": "item.completed", "item": {"type": "reasoning", "text": "thinking"}}),
        json.dumps({"type": "item.completed", "item": {"type": "agent_message", "text": "Implemented."}}),
        json.dumps({"type": "turn.completed", "usage": {"input_tokens": 10, "output_tokens": 5}}),
        json.dumps({"type": "turn.completed", "usage": {"input_tokens": 30, "output_tokens": 15}}),
    ]
)

GEMINI_TRANSCRIPT = "\n".join(
    [
        json.dumps({"type": "message", "role": "user", "content": "prompt echo"}),
        json.dumps({"type": "message", "role": "assistant", "content": "Challenge "}),
        json.dumps({"type": "message", "role": "assistant", "content": "written."}),
        json.dumps({"type": "result", "stats": {"input_tokens": 7, "output_tokens": 3, "duration_ms": 50}}),
    ]
)

FAKE_AGENT = """import json
import sys

prompt = sys.stdin.read()
result = " ".join(sys.argv[1:]) + " | " + prompt
print(json.dumps({"type": "result", "result": result, "usage": {"input_tokens": 1000000, "output_tokens": 0}}))
"""


def test_prompt_sections_are_rendered_in_order() -> None:
    prompt = assemble_prompt(
        "Write the proposal.",
        system="You are a planner.",
        context=[ContextDoc("project.md", "Conventions."), ContextDoc("auth", "Spec body.", path="specs/auth.md")],
    )

    assert prompt.index("[System]") < prompt.index("[Context]") < prompt.index("[Task]")
    assert "--- auth --- (specs/auth.md)" in prompt
    assert prompt.endswith("[Task]\nWrite the proposal.")
    assert assemble_prompt("Only task.") == "[Task]\nOnly task."


def test_claude_argv_reads_stdin_and_carries_the_tool_config(tmp_path: Path) -> None:
    choice = ModelChoice(Provider.CLAUDE, "sonnet")

    argv = build_argv(Provider.CLAUDE, "claude", choice, mcp_config=tmp_path / "mcp-plan.json")

    assert argv == [
        "claude",
        "-p",
        "--model",
        "sonnet",
        "--output-format",
        "stream-json",
        "--verbose",
        "--mcp-config",
        str(tmp_path / "mcp-plan.json"),
    ]


def test_codex_argv_normalizes_reasoning_effort() -> None:
    choice = ModelChoice(Provider.CODEX, "gpt-5.2-codex", effort="extra high")

    argv = build_argv(Provider.CODEX, "codex", choice)

    assert argv == [
        "codex",
        "exec",
        "--model",
        "gpt-5.2-codex",
        "--config",
        "model_reasoning_effort=xhigh",
        "--json",
        "-",
    ]


def test_gemini_argv_ignores_the_tool_config(tmp_path: Path) -> None:
    choice = ModelChoice(Provider.GEMINI, "gemini-3-flash-preview")

    argv = build_argv(Provider.GEMINI, "gemini", choice, mcp_config=tmp_path / "mcp.json")

    assert argv == ["gemini", "--model", "gemini-3-flash-preview", "--output-format", "stream-json"]


def test_claude_transcript_prefers_the_result_event() -> None:
    assert extract_text(CLAUDE_TRANSCRIPT) == "Wrote proposal.md"
    assert parse_usage(CLAUDE_TRANSCRIPT) == UsageMetrics(1200, 300, 0.042, 5100)


def test_codex_transcript_sums_turn_usage() -> None:
    assert extract_text(CODEX_TRANSCRIPT) == "Implemented."
    assert parse_usage(CODEX_TRANSCRIPT) == UsageMetrics(40, 20, None, None)


def test_gemini_transcript_joins_assistant_messages() -> None:
    assert extract_text(GEMINI_TRANSCRIPT) == "Challenge written."
    assert parse_usage(GEMINI_TRANSCRIPT) == UsageMetrics(7, 3, None, 50)


def test_plain_output_falls_back_to_the_raw_text() -> None:
    assert extract_text("  no json here\n") == "no json here"
    assert parse_usage("no json here") == UsageMetrics()


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("done\n<review>PASS</review>", True),
        ("<review> NEEDS_REVISION </review>", False),
        ("<review>PASS</review>\n<review>NEEDS_REVISION</review>", False),
        ("no marker at all", True),
    ],
)
def test_self_review_marker(output: str, expected: bool) -> None:
    assert self_review_passed(output) is expected


@pytest.mark.asyncio
async def test_command_runner_invokes_the_provider_cli(tmp_path: Path) -> None:
    script = tmp_path / "fake-claude"
    script.write_text(f"#!{sys.executable}\n{FAKE_AGENT}", encoding="utf-8")
    script.chmod(0o755)
    catalogs = default_catalogs()
    catalogs[Provider.CLAUDE] = replace(catalogs[Provider.CLAUDE], command=str(script))
    choice = catalogs[Provider.CLAUDE].select(complexity=Complexity.MEDIUM)
    runner = CommandAgentRunner(catalogs, cwd=tmp_path, mcp_dir=tmp_path / ".mcp")

    result = await runner.run(Role.REVIEW, "hello", choice)

    assert isinstance(runner, AgentRunner)
    assert result.role is Role.REVIEW
    assert result.output.endswith(" | hello")
    assert f"--mcp-config {tmp_path / '.mcp' / 'mcp-review.json'}" in result.output
    assert (tmp_path / ".mcp" / "mcp-review.json").is_file()
    assert result.usage.tokens_in == 1_000_000
    assert result.usage.cost_usd == pytest.approx(3.0)
    assert result.usage.duration_ms is not None
