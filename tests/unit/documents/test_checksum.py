from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from changeflow.documents.checksum import (
    compute_body_checksum,
    compute_checksum,
    compute_file_checksum,
    is_body_stale,
    is_stale,
)
from changeflow.documents.layout import ChangeLayout
from changeflow.errors import ParseError


@given(st.lists(st.text(alphabet="abc #-", max_size=12), max_size=8))
def test_checksum_ignores_line_endings_and_trailing_whitespace(lines: list[str]) -> None:
    unix = "\n".join(lines)
    windows = "\r\n".join(f"{line}  " for line in lines) + "\r\n\r\n"

    assert compute_checksum(unix) == compute_checksum(windows)


def test_checksum_has_a_prefix_and_detects_content_changes() -> None:
    digest = compute_checksum("# Proposal\n")

    assert digest.startswith("sha256:")
    assert not is_stale(digest, "# Proposal")
    assert is_stale(digest, "# Proposal v2\n")
    assert is_stale(None, "# Proposal\n")


def test_body_checksum_ignores_frontmatter_edits() -> None:
    first = "---\nid: auth\nversion: 1\n---\n## Overview\n"
    second = "---\nid: auth\nversion: 2\n---\n## Overview\n"

    assert compute_body_checksum(first) == compute_body_checksum(second)
    assert not is_body_stale(compute_body_checksum(first), second)
    assert compute_checksum(first) != compute_checksum(second)


def test_body_checksum_of_unterminated_frontmatter_raises() -> None:
    with pytest.raises(ParseError):
        compute_body_checksum("---\nid: auth\n")


def test_file_checksum_matches_text_checksum(tmp_path: Path) -> None:
    path = tmp_path / "tasks.md"
    path.write_text("## Tasks\n", encoding="utf-8")

    assert compute_file_checksum(path) == compute_checksum("## Tasks\n")


def test_layout_paths_and_spec_discovery(tmp_path: Path) -> None:
    layout = ChangeLayout.for_change(tmp_path / "changes", "add-auth")
    layout.specs_dir.mkdir(parents=True)
    (layout.specs_dir / "sessions.md").write_text("x", encoding="utf-8")
    (layout.specs_dir / "auth.md").write_text("x", encoding="utf-8")
    (layout.specs_dir / "notes.txt").write_text("x", encoding="utf-8")

    assert layout.change_id == "add-auth"
    assert layout.relative(layout.challenge) == "CHALLENGE.md"
    assert layout.spec_ids() == ("auth", "sessions")
    assert layout.relative(layout.spec("auth")) == "specs/auth.md"
