"""Stable constants shared across changeflow layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_SCHEMA_VERSION: Final[str] = "2.0"

# Conventional per-change document names.
PROPOSAL_FILE: Final[str] = "proposal.md"
TASKS_FILE: Final[str] = "tasks.md"
CHALLENGE_FILE: Final[str] = "CHALLENGE.md"
REVIEW_FILE: Final[str] = "REVIEW.md"
IMPLEMENTATION_FILE: Final[str] = "IMPLEMENTATION.md"
VERIFICATION_FILE: Final[str] = "VERIFICATION.md"
STATE_FILE: Final[str] = "STATE.yaml"
SPECS_DIR: Final[str] = "specs"

# Files tracked by the staleness report, in report order.
TRACKED_FILES: Final[tuple[str, ...]] = (
    PROPOSAL_FILE,
    TASKS_FILE,
    CHALLENGE_FILE,
    REVIEW_FILE,
    IMPLEMENTATION_FILE,
    VERIFICATION_FILE,
)

# Default runtime paths (relative to the project root unless overridden by config).
DEFAULT_CHANGES_DIR: Final[PurePosixPath] = PurePosixPath("changeflow/changes")
DEFAULT_SPECS_DIR: Final[PurePosixPath] = PurePosixPath("changeflow/specs")
DEFAULT_ARCHIVE_DIR: Final[PurePosixPath] = PurePosixPath("changeflow/changes/archive")

# Checksum digest prefix written into STATE.yaml.
CHECKSUM_PREFIX: Final[str] = "sha256:"

__all__ = [
    "CHALLENGE_FILE",
    "CHECKSUM_PREFIX",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_ARCHIVE_DIR",
    "DEFAULT_CHANGES_DIR",
    "DEFAULT_SPECS_DIR",
    "IMPLEMENTATION_FILE",
    "PROPOSAL_FILE",
    "REVIEW_FILE",
    "SPECS_DIR",
    "STATE_FILE",
    "STATE_SCHEMA_VERSION",
    "TASKS_FILE",
    "TRACKED_FILES",
    "VERIFICATION_FILE",
]
