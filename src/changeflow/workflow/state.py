"""
changeflow — persisted change state

File: src/changeflow/workflow/state.py

Purpose
- Load and save ``STATE.yaml`` for a change, and answer staleness questions against the
  checksums it records.

Functional requirements
- ``save`` writes through ``atomic_write``; a crash mid-write leaves the previous record intact.
- ``load`` raises ``StateNotFoundError`` for a missing record and ``CorruptStateError`` for one
  that does not parse into a ``Change``.
- Checksums are recorded only by ``mark_validated``.

Non-functional requirements
- The store holds no cached ``Change``; every operation loads, mutates a copy, and saves.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from changeflow.constants import TRACKED_FILES
from changeflow.documents.checksum import compute_body_checksum, compute_checksum
from changeflow.documents.frontmatter import has_frontmatter
from changeflow.documents.layout import ChangeLayout
from changeflow.errors import CorruptStateError, ParseError, StateError, StateNotFoundError
from changeflow.utils.fs import atomic_write
from changeflow.workflow.change import Change, format_timestamp, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StalenessReport:
    stale_files: tuple[str, ...]
    missing_checksums: tuple[str, ...]
    up_to_date: tuple[str, ...]

    @property
    def is_fresh(self) -> bool:
        return not self.stale_files and not self.missing_checksums

    def to_dict(self) -> dict[str, Any]:
        return {
            "stale_files": list(self.stale_files),
            "missing_checksums": list(self.missing_checksums),
            "up_to_date": list(self.up_to_date),
            "is_fresh": self.is_fresh,
        }


class StateStore:
    """Per-change ``STATE.yaml`` persistence under ``changes_dir``."""

    def __init__(self, changes_dir: Path) -> None:
        self.changes_dir = Path(changes_dir)

    def layout(self, change_id: str) -> ChangeLayout:
        if not change_id or "/" in change_id or "\\" in change_id or change_id in {".", ".."}:
            raise StateError(f"invalid change id {change_id!r}")
        return ChangeLayout.for_change(self.changes_dir, change_id)

    def exists(self, change_id: str) -> bool:
        return self.layout(change_id).state.is_file()

    def new(self, change_id: str, *, now: datetime | None = None) -> Change:
        """Build the record of a change that does not exist yet, without persisting it."""

        layout = self.layout(change_id)
        if layout.state.exists():
            raise StateError(f"change {change_id!r} already exists at {layout.root}")
        stamp = format_timestamp(now or utc_now())
        return Change(id=change_id, created_at=stamp, updated_at=stamp, last_action="created")

    def create(self, change_id: str, *, now: datetime | None = None) -> Change:
        change = self.new(change_id, now=now)
        layout = self.layout(change_id)
        self.save(change, now=now)
        logger.debug("created change %s at %s", change_id, layout.root)
        return change

    def load(self, change_id: str) -> Change:
        path = self.layout(change_id).state
        if not path.is_file():
            raise StateNotFoundError(path)
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise CorruptStateError(path, f"invalid YAML: {exc}") from exc
        if not isinstance(raw, dict):
            raise CorruptStateError(path, "state root must be a mapping")
        try:
            change = Change.from_mapping(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptStateError(path, f"{type(exc).__name__}: {exc}") from exc
        if change.id != change_id:
            raise CorruptStateError(path, f"change_id {change.id!r} does not match directory {change_id!r}")
        return change

    def load_or_new(self, change_id: str, *, now: datetime | None = None) -> Change:
        """Load an existing record, or build an unsaved one; the caller's first save creates it."""

        if self.exists(change_id):
            return self.load(change_id)
        return self.new(change_id, now=now)

    def save(self, change: Change, *, now: datetime | None = None) -> None:
        change.updated_at = format_timestamp(now or utc_now())
        payload = yaml.safe_dump(
            change.to_mapping(),
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )
        atomic_write(self.layout(change.id).state, payload)

    def tracked_paths(self, change: Change) -> list[str]:
        layout = self.layout(change.id)
        names = list(TRACKED_FILES)
        names.extend(layout.relative(path) for path in layout.spec_files())
        return names

    def is_fresh(self, change: Change, relative_path: str) -> bool:
        """The file exists and still matches the checksum recorded at its last validation."""

        path = self.layout(change.id).root / relative_path
        record = change.checksums.get(relative_path)
        if record is None or not path.is_file():
            return False
        return record.hash == compute_checksum(path.read_text(encoding="utf-8"))

    def is_body_fresh(self, change: Change, relative_path: str) -> bool:
        """Like ``is_fresh`` but ignores frontmatter-only edits when a body digest was recorded."""

        path = self.layout(change.id).root / relative_path
        record = change.checksums.get(relative_path)
        if record is None or not path.is_file():
            return False
        text = path.read_text(encoding="utf-8")
        if record.body_hash is None:
            return record.hash == compute_checksum(text)
        return record.body_hash == _body_checksum(text)

    def check_staleness(self, change: Change) -> StalenessReport:
        root = self.layout(change.id).root
        stale: list[str] = []
        missing: list[str] = []
        fresh: list[str] = []
        for relative_path in self.tracked_paths(change):
            path = root / relative_path
            if not path.is_file():
                continue
            record = change.checksums.get(relative_path)
            if record is None:
                missing.append(relative_path)
            elif record.hash != compute_checksum(path.read_text(encoding="utf-8")):
                stale.append(relative_path)
            else:
                fresh.append(relative_path)
        return StalenessReport(
            stale_files=tuple(stale),
            missing_checksums=tuple(missing),
            up_to_date=tuple(fresh),
        )

    def mark_validated(
        self,
        change: Change,
        relative_paths: Iterable[str],
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Record current checksums for ``relative_paths`` that exist; returns the recorded paths."""

        root = self.layout(change.id).root
        recorded: list[str] = []
        stamp = now or utc_now()
        for relative_path in relative_paths:
            path = root / relative_path
            if not path.is_file():
                continue
            text = path.read_text(encoding="utf-8")
            change.record_checksum(
                relative_path,
                compute_checksum(text),
                body_digest=_body_checksum(text),
                validated_at=stamp,
            )
            recorded.append(relative_path)
        return recorded


def _body_checksum(text: str) -> str | None:
    if not has_frontmatter(text):
        return None
    try:
        return compute_body_checksum(text)
    except ParseError:
        # Malformed frontmatter falls back to the whole-file digest.
        return None


__all__ = ["StalenessReport", "StateStore"]
