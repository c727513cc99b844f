"""Unit tests for utils.fs and utils.hashing."""

from __future__ import annotations

from pathlib import Path

import pytest

from changeflow.utils.fs import (
    atomic_write,
    is_within,
    move_directory,
    normalize_relative_path,
    unique_destination,
)
from changeflow.utils.hashing import sha256_bytes, sha256_file, sha256_text


def test_atomic_write_creates_parents_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "changes" / "add-auth" / "STATE.yaml"

    atomic_write(target, "phase: proposed\n")
    atomic_write(target, b"phase: challenged\n")

    assert target.read_text(encoding="utf-8") == "phase: challenged\n"
    assert sorted(path.name for path in target.parent.iterdir()) == ["STATE.yaml"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("specs/auth.md", "specs/auth.md"),
        (" ./Specs//Auth.md ", "specs/auth.md"),
        ("specs\\auth.md", "specs/auth.md"),
    ],
)
def test_normalize_relative_path(raw: str, expected: str) -> None:
    assert normalize_relative_path(raw) == expected


def test_unique_destination_appends_a_counter(tmp_path: Path) -> None:
    base = tmp_path / "2026-03-01-add-auth"

    assert unique_destination(base) == base
    base.mkdir()
    assert unique_destination(base) == tmp_path / "2026-03-01-add-auth-2"
    (tmp_path / "2026-03-01-add-auth-2").mkdir()
    assert unique_destination(base) == tmp_path / "2026-03-01-add-auth-3"


def test_move_directory_never_overwrites(tmp_path: Path) -> None:
    source = tmp_path / "changes" / "add-auth"
    source.mkdir(parents=True)
    (source / "proposal.md").write_text("# Proposal\n", encoding="utf-8")
    existing = tmp_path / "archive" / "add-auth"
    existing.mkdir(parents=True)

    moved = move_directory(source, existing)

    assert moved == tmp_path / "archive" / "add-auth-2"
    assert (moved / "proposal.md").read_text(encoding="utf-8") == "# Proposal\n"
    assert not source.exists()
    assert list(existing.iterdir()) == []


def test_move_directory_requires_a_directory(tmp_path: Path) -> None:
    with pytest.raises(NotADirectoryError):
        move_directory(tmp_path / "missing", tmp_path / "archive")


def test_is_within(tmp_path: Path) -> None:
    assert is_within(tmp_path / "a" / "b", tmp_path)
    assert not is_within(tmp_path / ".." / "elsewhere", tmp_path)


def test_sha256_helpers_agree(tmp_path: Path) -> None:
    path = tmp_path / "spec.md"
    path.write_bytes(b"## Overview\n")

    assert sha256_file(path) == sha256_bytes(b"## Overview\n") == sha256_text("## Overview\n")
    assert sha256_file(path, chunk_size=3) == sha256_text("## Overview\n")
    with pytest.raises(ValueError):
        sha256_file(path, chunk_size=0)
