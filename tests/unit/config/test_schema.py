"""
changeflow — unit tests for config schema

File: tests/unit/config/test_schema.py

Purpose
- Validate strict schema checks, structured issue paths, and the typed settings view.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from changeflow.config import WorkflowSettings
from changeflow.config.schema import (
    ConfigValidationIssue,
    default_config,
    merge_config,
    validate_config,
)
from changeflow.orchestration.model_selector import Provider
from changeflow.orchestration.tool_surface import Role
from changeflow.validation.report import Severity, ValidationMode


def _issues(config: Any) -> list[tuple[str, str]]:
    return [(issue.path, issue.message) for issue in validate_config(config).issues]


def test_default_config_validates_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["workflow"]["planning_iterations"] == 2


def test_missing_sections_and_unknown_keys_are_explicit() -> None:
    config: dict[str, Any] = dict(default_config())
    config.pop("workflow")
    config["extras"] = {}

    assert _issues(config) == [
        ("extras", "unknown field"),
        ("workflow", "missing required field"),
    ]


def test_type_validation_reports_structured_paths() -> None:
    config = merge_config(
        default_config(),
        {"workflow": {"planning_iterations": "two", "retry_delay_secs": -1, "human_in_loop": "yes"}},
    )

    assert _issues(config) == [
        ("workflow.planning_iterations", "expected integer, got str"),
        ("workflow.retry_delay_secs", "must be >= 0"),
        ("workflow.human_in_loop", "expected boolean, got str"),
    ]


def test_enum_fields_list_the_allowed_values() -> None:
    config = merge_config(default_config(), {"workflow": {"validation_mode": "lenient"}})

    assert validate_config(config).issues == (
        ConfigValidationIssue(
            "workflow.validation_mode",
            "invalid value 'lenient'; expected one of: soft, strict",
        ),
    )


def test_roles_must_point_at_a_configured_agent() -> None:
    config = default_config()
    del config["agents"]["gemini"]

    assert _issues(config) == [
        ("roles.archive", "provider 'gemini' has no agents.gemini table"),
        ("roles.proposal", "provider 'gemini' has no agents.gemini table"),
    ]


def test_model_tables_are_validated() -> None:
    config = merge_config(
        default_config(),
        {
            "agents": {
                "codex": {
                    "models": [
                        {"id": "fast", "model": "gpt-5.2-codex", "complexity": "low"},
                        {"id": "fast", "model": "gpt-5.2-codex", "complexity": "extreme"},
                    ],
                    "default_model": "deep",
                }
            }
        },
    )

    assert _issues(config) == [
        ("agents.codex.models[1].complexity", "invalid value 'extreme'; expected one of: critical, high, low, medium"),
        ("agents.codex.models[1].id", "duplicate model id 'fast'"),
        ("agents.codex.default_model", "'deep' is not a configured model id"),
    ]


def test_newer_schema_version_carries_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})

    [(path, message)] = _issues(config)
    assert path == "meta.schema_version"
    assert "upgrade the changeflow runtime" in message


def test_merge_replaces_lists_and_leaves_the_base_untouched() -> None:
    base = {"agents": {"claude": {"models": [{"id": "a"}, {"id": "b"}]}}}

    merged = merge_config(base, {"agents": {"claude": {"models": [{"id": "c"}]}}})

    assert merged["agents"]["claude"]["models"] == [{"id": "c"}]
    assert base["agents"]["claude"]["models"] == [{"id": "a"}, {"id": "b"}]


def test_settings_view_of_the_defaults(tmp_path: Path) -> None:
    settings = WorkflowSettings.from_config(default_config(), root=tmp_path)

    assert settings.changes_dir == tmp_path / "changeflow" / "changes"
    assert settings.archive_dir == tmp_path / "changeflow" / "changes" / "archive"
    assert settings.validation_mode is ValidationMode.SOFT
    assert settings.blocking_severity is Severity.HIGH
    assert settings.provider_for(Role.REPROPOSAL) is Provider.GEMINI
    assert settings.provider_for(Role.RESOLVE) is Provider.CLAUDE
    assert settings.catalog_for(Role.CHALLENGE).command == "codex"
    assert settings.human_in_loop is True


def test_settings_fall_back_to_claude_without_role_routing(tmp_path: Path) -> None:
    config: dict[str, Any] = dict(default_config())
    config.pop("roles")

    settings = WorkflowSettings.from_config(config, root=tmp_path)

    assert settings.roles == {}
    assert settings.provider_for(Role.REVIEW) is Provider.CLAUDE
