"""
changeflow — filesystem utilities

File: src/changeflow/utils/fs.py

Purpose
- Crash-safe persistence of change records and documents, and collision-free directory moves
  for archival.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Directory moves never overwrite an existing destination.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "is_within",
    "move_directory",
    "normalize_relative_path",
    "unique_destination",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The parent directory is created on demand. The temp file lives beside the target so
    ``os.replace`` stays a same-filesystem rename; a reader sees either the old content or
    the new content, never a torn write.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)
    payload = data if isinstance(data, bytes) else data.encode(encoding)

    try:
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if ``child`` resolves to a location inside ``parent``."""

    resolved_parent = Path(parent).resolve(strict=False)
    resolved_child = Path(child).resolve(strict=False)
    try:
        resolved_child.relative_to(resolved_parent)
    except ValueError:
        return False
    return True


def normalize_relative_path(raw: str) -> str:
    """Normalize a document-relative reference for existence checks.

    Backslashes become forward slashes, ``./`` prefixes and duplicate separators collapse,
    and the result is lower-cased so references survive case-insensitive authoring.
    """

    text = raw.strip().replace("\\", "/")
    parts = [part for part in text.split("/") if part not in ("", ".")]
    return "/".join(parts).lower()


def unique_destination(base: Path) -> Path:
    """Return ``base`` or the first free ``base-N`` sibling (N starting at 2)."""

    if not base.exists():
        return base
    counter = 2
    while True:
        candidate = base.with_name(f"{base.name}-{counter}")
        if not candidate.exists():
            return candidate
        counter += 1


def move_directory(source: PathLike, destination: PathLike) -> Path:
    """Move ``source`` to a free path derived from ``destination`` and return it."""

    src = Path(source)
    if not src.is_dir():
        raise NotADirectoryError(f"{src!s} is not a directory")
    dest = unique_destination(Path(destination))
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(dest))
    _fsync_directory(dest.parent)
    return dest


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
