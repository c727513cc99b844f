"""
changeflow — configuration layer

File: src/changeflow/config/__init__.py

Purpose
- Layered config loading (defaults, TOML, env, overrides), strict validation, and typed
  settings for the workflow engine.
"""

from __future__ import annotations

from changeflow.config.loader import ConfigLoadError, load_config
from changeflow.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    default_config,
    validate_config,
)
from changeflow.config.settings import WorkflowSettings

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "WorkflowSettings",
    "default_config",
    "load_config",
    "validate_config",
]
