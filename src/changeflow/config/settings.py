"""
changeflow — workflow settings

File: src/changeflow/config/settings.py

Purpose
- Typed, immutable view over a validated config mapping, as consumed by the workflow engine.

Functional requirements
- Directory settings resolve against ``paths.root`` or an explicit root override.
- Each agent role maps to a provider; roles without an entry use Claude.

Non-functional requirements
- Built once per run; nothing here reads files or the environment.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from changeflow.config.schema import default_config
from changeflow.orchestration.model_selector import (
    Provider,
    ProviderCatalog,
    catalogs_from_config,
)
from changeflow.orchestration.tool_surface import Role
from changeflow.validation.report import Severity, ValidationMode

_ROLE_CONFIG_KEYS: dict[Role, str] = {
    Role.PROPOSAL: "proposal",
    Role.REPROPOSAL: "proposal",
    Role.CHALLENGE: "challenge",
    Role.IMPLEMENT: "implement",
    Role.REVIEW: "review",
    Role.RESOLVE: "resolve",
    Role.ARCHIVE: "archive",
}


@dataclass(frozen=True, slots=True)
class WorkflowSettings:
    planning_iterations: int = 2
    implementation_iterations: int = 2
    format_iterations: int = 2
    archive_iterations: int = 1
    script_retries: int = 3
    retry_delay_secs: int = 5
    human_in_loop: bool = True
    validation_mode: ValidationMode = ValidationMode.SOFT
    blocking_severity: Severity = Severity.HIGH
    root: Path = Path(".")
    changes_dir: Path = Path("changeflow/changes")
    specs_dir: Path = Path("changeflow/specs")
    archive_dir: Path = Path("changeflow/changes/archive")
    roles: dict[Role, Provider] = field(default_factory=dict)
    catalogs: dict[Provider, ProviderCatalog] = field(default_factory=dict)
    echo_output: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None, *, root: Path | None = None) -> WorkflowSettings:
        """Build settings from a ``load_config`` result; paths resolve against ``paths.root``."""

        data: Mapping[str, Any] = config if config is not None else default_config()
        workflow = data["workflow"]
        paths = data["paths"]
        base = root if root is not None else Path(paths["root"])

        roles_section = data.get("roles", {})
        roles = {
            role: Provider(roles_section[key])
            for role, key in _ROLE_CONFIG_KEYS.items()
            if key in roles_section
        }
        return cls(
            planning_iterations=workflow["planning_iterations"],
            implementation_iterations=workflow["implementation_iterations"],
            format_iterations=workflow["format_iterations"],
            archive_iterations=workflow["archive_iterations"],
            script_retries=workflow["script_retries"],
            retry_delay_secs=workflow["retry_delay_secs"],
            human_in_loop=workflow["human_in_loop"],
            validation_mode=ValidationMode(workflow["validation_mode"]),
            blocking_severity=Severity(workflow["blocking_severity"]),
            root=base,
            changes_dir=base / paths["changes_dir"],
            specs_dir=base / paths["specs_dir"],
            archive_dir=base / paths["archive_dir"],
            roles=roles,
            catalogs=catalogs_from_config(data.get("agents", {})),
            echo_output=bool(data.get("observability", {}).get("echo_output", False)),
        )

    def provider_for(self, role: Role) -> Provider:
        return self.roles.get(role, Provider.CLAUDE)

    def catalog_for(self, role: Role) -> ProviderCatalog:
        return self.catalogs[self.provider_for(role)]


__all__ = ["WorkflowSettings"]
