"""
changeflow — agent role invocation

File: src/changeflow/orchestration/agents.py

Purpose
- Turn ``(role, prompt, model_choice)`` into one external agent process run and return its
  output text together with usage metrics.

Functional requirements
- Each provider CLI gets its own non-interactive argv; the prompt always travels on stdin.
- Every invocation exposes only the tool surface of its role's stage via a per-stage MCP
  config file.
- Usage (tokens, cost, duration) is read from the agent's JSON-lines output; cost falls back
  to the model catalog estimate.

Non-functional requirements
- The workflow engine depends only on the ``AgentRunner`` protocol so tests can substitute a
  scripted runner.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Protocol, runtime_checkable

from changeflow.orchestration.model_selector import ModelChoice, Provider, ProviderCatalog
from changeflow.orchestration.process import run_process
from changeflow.orchestration.tool_surface import Role, stage_for, write_mcp_config

logger = logging.getLogger(__name__)

_EFFORT_ALIASES: Final[dict[str, str]] = {"extra high": "xhigh", "extra-high": "xhigh"}
_SELF_REVIEW_RE: Final[re.Pattern[str]] = re.compile(r"<review>\s*(PASS|NEEDS_REVISION)\s*</review>")


@dataclass(frozen=True, slots=True)
class ContextDoc:
    name: str
    content: str
    path: str | None = None


@dataclass(frozen=True, slots=True)
class UsageMetrics:
    tokens_in: int | None = None
    tokens_out: int | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None


@dataclass(frozen=True, slots=True)
class AgentResult:
    role: Role
    model: ModelChoice
    output: str
    usage: UsageMetrics = field(default_factory=UsageMetrics)
    raw_output: str = ""


@runtime_checkable
class AgentRunner(Protocol):
    async def run(self, role: Role, prompt: str, model_choice: ModelChoice) -> AgentResult: ...


def assemble_prompt(
    task: str,
    *,
    system: str | None = None,
    context: Sequence[ContextDoc] = (),
) -> str:
    """Render ``[System]``/``[Context]``/``[Task]`` sections into one prompt."""
    parts: list[str] = []
    if system:
        parts.append(f"[System]\n{system}\n")
    if context:
        parts.append("[Context]")
        for doc in context:
            header = f"--- {doc.name} ---"
            if doc.path:
                header += f" ({doc.path})"
            parts.append(header)
            parts.append(doc.content)
        parts.append("")
    parts.append(f"[Task]\n{task}")
    return "\n".join(parts)


def build_argv(
    provider: Provider,
    command: str,
    choice: ModelChoice,
    *,
    mcp_config: Path | None = None,
) -> list[str]:
    """Non-interactive argv for ``provider`` reading its prompt from stdin."""
    if provider is Provider.CLAUDE:
        argv = [command, "-p", "--model", choice.model, "--output-format", "stream-json", "--verbose"]
        if mcp_config is not None:
            argv.extend(["--mcp-config", str(mcp_config)])
        return argv
    if provider is Provider.CODEX:
        argv = [command, "exec", "--model", choice.model]
        if choice.effort:
            effort = _EFFORT_ALIASES.get(choice.effort.lower(), choice.effort.lower())
            argv.extend(["--config", f"model_reasoning_effort={effort}"])
        argv.extend(["--json", "-"])
        return argv
    return [command, "--model", choice.model, "--output-format", "stream-json"]


def iter_json_events(stdout: str) -> Iterator[dict[str, Any]]:
    for line in stdout.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(event, dict):
            yield event


def extract_text(stdout: str) -> str:
    """Assistant text from a JSON-lines transcript; the raw output when none is found."""
    result_text: str | None = None
    messages: list[str] = []
    for event in iter_json_events(stdout):
        event_type = event.get("type")
        if event_type == "result" and isinstance(event.get("result"), str):
            result_text = event["result"]
        elif event_type == "message" and event.get("role", "assistant") == "assistant":
            messages.append(_content_text(event.get("content")))
        elif event_type == "assistant":
            message = event.get("message")
            if isinstance(message, Mapping):
                messages.append(_content_text(message.get("content")))
        elif event_type == "item.completed":
            item = event.get("item")
            if isinstance(item, Mapping) and item.get("type") == "agent_message":
                messages.append(str(item.get("text", "")))
    if result_text is not None:
        return result_text
    joined = "".join(text for text in messages if text)
    return joined if joined else stdout.strip()


def parse_usage(stdout: str) -> UsageMetrics:
    """Sum token usage over claude ``result``, gemini ``stats`` and codex ``turn.completed`` events."""
    tokens_in = tokens_out = 0
    seen_tokens = False
    cost: float | None = None
    duration: int | None = None
    for event in iter_json_events(stdout):
        event_type = event.get("type")
        usage: object = None
        if event_type == "result":
            usage = event.get("usage") or event.get("stats")
            raw_cost = event.get("total_cost_usd", event.get("cost_usd"))
            if isinstance(raw_cost, (int, float)) and not isinstance(raw_cost, bool):
                cost = float(raw_cost)
            raw_duration = event.get("duration_ms")
            if not isinstance(raw_duration, int) and isinstance(usage, Mapping):
                raw_duration = usage.get("duration_ms")
            if isinstance(raw_duration, int) and not isinstance(raw_duration, bool):
                duration = raw_duration
        elif event_type == "turn.completed":
            usage = event.get("usage")
        if not isinstance(usage, Mapping):
            continue
        in_value = usage.get("input_tokens")
        out_value = usage.get("output_tokens")
        if isinstance(in_value, int) and not isinstance(in_value, bool):
            tokens_in += in_value
            seen_tokens = True
        if isinstance(out_value, int) and not isinstance(out_value, bool):
            tokens_out += out_value
            seen_tokens = True
    return UsageMetrics(
        tokens_in=tokens_in if seen_tokens else None,
        tokens_out=tokens_out if seen_tokens else None,
        cost_usd=cost,
        duration_ms=duration,
    )


def self_review_passed(output: str) -> bool:
    """``False`` only for an explicit ``<review>NEEDS_REVISION</review>`` marker."""
    markers = {match.group(1) for match in _SELF_REVIEW_RE.finditer(extract_text(output) + "\n" + output)}
    if "NEEDS_REVISION" in markers:
        return False
    if not markers:
        logger.warning("self-review marker not found in agent output; treating as PASS")
    return True


class CommandAgentRunner:
    """``AgentRunner`` that shells out to the configured provider CLIs."""

    def __init__(
        self,
        catalogs: Mapping[Provider, ProviderCatalog],
        *,
        cwd: Path,
        mcp_dir: Path,
        server_command: str = "changeflow",
        echo: bool = False,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._catalogs = dict(catalogs)
        self._cwd = cwd
        self._mcp_dir = mcp_dir
        self._server_command = server_command
        self._echo = echo
        self._env = dict(env) if env is not None else None

    async def run(self, role: Role, prompt: str, model_choice: ModelChoice) -> AgentResult:
        catalog = self._catalogs[model_choice.provider]
        mcp_path = write_mcp_config(self._mcp_dir, stage_for(role), server_command=self._server_command)
        argv = build_argv(model_choice.provider, catalog.command, model_choice, mcp_config=mcp_path)
        tag = model_choice.provider.value

        def _echo_line(stream: str, line: str) -> None:
            logger.info("[%s:%s] %s", tag, stream, line)

        result = await run_process(
            argv,
            stdin_data=prompt,
            cwd=self._cwd,
            env=self._env,
            on_line=_echo_line if self._echo else None,
        )
        usage = parse_usage(result.stdout)
        if usage.duration_ms is None:
            usage = UsageMetrics(usage.tokens_in, usage.tokens_out, usage.cost_usd, result.duration_ms)
        if usage.cost_usd is None and usage.tokens_in is not None:
            spec = model_choice.spec or catalog.find(model_choice.model)
            if spec is not None:
                estimate = spec.estimate_cost(usage.tokens_in, usage.tokens_out or 0)
                usage = UsageMetrics(usage.tokens_in, usage.tokens_out, estimate, usage.duration_ms)
        return AgentResult(
            role=role,
            model=model_choice,
            output=extract_text(result.stdout),
            usage=usage,
            raw_output=result.stdout,
        )


def _content_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            str(part.get("text", ""))
            for part in content
            if isinstance(part, Mapping) and part.get("type", "text") == "text"
        )
    return ""


__all__ = [
    "AgentResult",
    "AgentRunner",
    "CommandAgentRunner",
    "ContextDoc",
    "UsageMetrics",
    "assemble_prompt",
    "build_argv",
    "extract_text",
    "iter_json_events",
    "parse_usage",
    "self_review_passed",
]
