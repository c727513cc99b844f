"""Utility exports for filesystem and hashing helpers."""

from changeflow.utils.fs import (
    atomic_write,
    is_within,
    move_directory,
    normalize_relative_path,
    unique_destination,
)
from changeflow.utils.hashing import sha256_bytes, sha256_file, sha256_text

__all__ = [
    "atomic_write",
    "is_within",
    "move_directory",
    "normalize_relative_path",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
    "unique_destination",
]
