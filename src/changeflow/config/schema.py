"""
changeflow — configuration schema and validation.

File: src/changeflow/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys so typos never silently fall back to defaults.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, NotRequired, TypedDict

from changeflow.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_ARCHIVE_DIR,
    DEFAULT_CHANGES_DIR,
    DEFAULT_SPECS_DIR,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

PROVIDER_NAMES: Final[tuple[str, ...]] = ("gemini", "codex", "claude")
ROLE_NAMES: Final[tuple[str, ...]] = ("proposal", "challenge", "implement", "review", "resolve", "archive")
COMPLEXITY_NAMES: Final[tuple[str, ...]] = ("low", "medium", "high", "critical")
VALIDATION_MODES: Final[tuple[str, ...]] = ("soft", "strict")
SEVERITY_NAMES: Final[tuple[str, ...]] = ("high", "medium", "low")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("paths", "root"),)


class MetaConfig(TypedDict):
    schema_version: int


class WorkflowConfig(TypedDict):
    planning_iterations: int
    implementation_iterations: int
    format_iterations: int
    archive_iterations: int
    script_retries: int
    retry_delay_secs: int
    human_in_loop: bool
    validation_mode: str
    blocking_severity: str


class PathsConfig(TypedDict):
    root: str
    changes_dir: str
    specs_dir: str
    archive_dir: str


class ModelEntry(TypedDict):
    id: str
    model: str
    complexity: str
    reasoning: NotRequired[str]
    cost_per_1m_input: NotRequired[float]
    cost_per_1m_output: NotRequired[float]


class AgentConfig(TypedDict, total=False):
    command: str
    models: list[ModelEntry]
    default_model: str


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    redact_secrets: bool
    echo_output: bool


class ChangeflowConfig(TypedDict):
    meta: MetaConfig
    workflow: WorkflowConfig
    paths: PathsConfig
    agents: dict[str, AgentConfig]
    roles: dict[str, str]
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[ChangeflowConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "workflow": {
        "planning_iterations": 2,
        "implementation_iterations": 2,
        "format_iterations": 2,
        "archive_iterations": 1,
        "script_retries": 3,
        "retry_delay_secs": 5,
        "human_in_loop": True,
        "validation_mode": "soft",
        "blocking_severity": "high",
    },
    "paths": {
        "root": ".",
        "changes_dir": str(DEFAULT_CHANGES_DIR),
        "specs_dir": str(DEFAULT_SPECS_DIR),
        "archive_dir": str(DEFAULT_ARCHIVE_DIR),
    },
    "agents": {
        "gemini": {"command": "gemini"},
        "codex": {"command": "codex"},
        "claude": {"command": "claude"},
    },
    "roles": {
        "proposal": "gemini",
        "challenge": "codex",
        "implement": "claude",
        "review": "codex",
        "resolve": "claude",
        "archive": "gemini",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": ".changeflow/logs",
        "redact_secrets": True,
        "echo_output": False,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> ChangeflowConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade changeflow.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the changeflow runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``; lists are replaced whole."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    sections: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "workflow": _validate_workflow,
        "paths": _validate_paths,
        "agents": _validate_agents,
        "roles": _validate_roles,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(payload, set(sections), "", issues)
    _require_keys(payload, set(sections), "", issues)

    out: dict[str, Any] = {}
    for key in sorted(sections):
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        out[key] = sections[key](section, key, issues)
    _validate_cross_fields(out, issues)
    return out


def _validate_meta(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_workflow(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    counters = {
        "planning_iterations": 0,
        "implementation_iterations": 0,
        "format_iterations": 0,
        "archive_iterations": 0,
        "script_retries": 0,
        "retry_delay_secs": 0,
    }
    allowed = {*counters, "human_in_loop", "validation_mode", "blocking_severity"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key, minimum in sorted(counters.items()):
        if key in payload:
            parsed = _as_int(payload[key], _join(path, key), issues, minimum=minimum)
            if parsed is not None:
                out[key] = parsed
    if "human_in_loop" in payload:
        flag = _as_bool(payload["human_in_loop"], _join(path, "human_in_loop"), issues)
        if flag is not None:
            out["human_in_loop"] = flag
    if "validation_mode" in payload:
        mode = _as_enum(
            payload["validation_mode"], _join(path, "validation_mode"), issues, allowed_values=VALIDATION_MODES
        )
        if mode is not None:
            out["validation_mode"] = mode
    if "blocking_severity" in payload:
        severity = _as_enum(
            payload["blocking_severity"],
            _join(path, "blocking_severity"),
            issues,
            allowed_values=SEVERITY_NAMES,
        )
        if severity is not None:
            out["blocking_severity"] = severity
    return out


def _validate_paths(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"root", "changes_dir", "specs_dir", "archive_dir"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_agents(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(PROVIDER_NAMES), path, issues)
    out: dict[str, Any] = {}
    for name in sorted(payload):
        if name not in PROVIDER_NAMES:
            continue
        agent_path = _join(path, name)
        section = _as_object(payload[name], agent_path, issues)
        if section is None:
            continue
        _reject_unknown_keys(section, {"command", "models", "default_model"}, agent_path, issues)
        agent: dict[str, Any] = {}
        if "command" in section:
            command = _as_str(section["command"], _join(agent_path, "command"), issues)
            if command is not None:
                agent["command"] = command
        if "models" in section:
            models = _validate_models(section["models"], _join(agent_path, "models"), issues)
            if models is not None:
                agent["models"] = models
        if "default_model" in section:
            default = _as_str(section["default_model"], _join(agent_path, "default_model"), issues)
            if default is not None:
                agent["default_model"] = default
        if "models" in agent and "default_model" in agent:
            ids = {entry["id"] for entry in agent["models"]}
            if agent["default_model"] not in ids:
                issues.add(_join(agent_path, "default_model"), f"{agent['default_model']!r} is not a configured model id")
        out[name] = agent
    return out


def _validate_models(value: object, path: str, issues: _IssueCollector) -> list[dict[str, Any]] | None:
    if not isinstance(value, list) or not value:
        issues.add(path, "expected a non-empty array of model tables")
        return None
    allowed = {"id", "model", "complexity", "reasoning", "cost_per_1m_input", "cost_per_1m_output"}
    models: list[dict[str, Any]] = []
    seen: set[str] = set()
    for index, raw in enumerate(value):
        item_path = f"{path}[{index}]"
        item = _as_object(raw, item_path, issues)
        if item is None:
            continue
        _reject_unknown_keys(item, allowed, item_path, issues)
        _require_keys(item, {"id", "model", "complexity"}, item_path, issues)
        entry: dict[str, Any] = {}
        for key in ("id", "model", "reasoning"):
            if key in item:
                parsed = _as_str(item[key], _join(item_path, key), issues)
                if parsed is not None:
                    entry[key] = parsed
        if "complexity" in item:
            complexity = _as_enum(
                item["complexity"], _join(item_path, "complexity"), issues, allowed_values=COMPLEXITY_NAMES
            )
            if complexity is not None:
                entry["complexity"] = complexity
        for key in ("cost_per_1m_input", "cost_per_1m_output"):
            if key in item:
                cost = _as_float(item[key], _join(item_path, key), issues, minimum=0.0)
                if cost is not None:
                    entry[key] = cost
        model_id = entry.get("id")
        if isinstance(model_id, str):
            if model_id in seen:
                issues.add(_join(item_path, "id"), f"duplicate model id {model_id!r}")
            seen.add(model_id)
        models.append(entry)
    return models


def _validate_roles(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(ROLE_NAMES), path, issues)
    out: dict[str, Any] = {}
    for role in sorted(payload):
        if role not in ROLE_NAMES:
            continue
        provider = _as_enum(payload[role], _join(path, role), issues, allowed_values=PROVIDER_NAMES)
        if provider is not None:
            out[role] = provider
    return out


def _validate_observability(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "redact_secrets", "echo_output"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        level = _as_enum(
            raw_level.upper() if isinstance(raw_level, str) else raw_level,
            _join(path, "log_level"),
            issues,
            allowed_values=LOG_LEVELS,
        )
        if level is not None:
            out["log_level"] = level
    if "log_dir" in payload:
        log_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if log_dir is not None:
            out["log_dir"] = log_dir
    for key in ("redact_secrets", "echo_output"):
        if key in payload:
            flag = _as_bool(payload[key], _join(path, key), issues)
            if flag is not None:
                out[key] = flag
    return out


def _validate_cross_fields(config: Mapping[str, Any], issues: _IssueCollector) -> None:
    roles = config.get("roles")
    agents = config.get("agents")
    if not isinstance(roles, Mapping) or not isinstance(agents, Mapping):
        return
    for role in sorted(roles):
        provider = roles[role]
        if provider not in agents:
            issues.add(_join("roles", role), f"provider {provider!r} has no agents.{provider} table")


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(value: object, path: str, issues: _IssueCollector, *, minimum: int | None = None) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, (list, tuple)):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


__all__ = [
    "COMPLEXITY_NAMES",
    "ChangeflowConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "PROVIDER_NAMES",
    "ROLE_NAMES",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
