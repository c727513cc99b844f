"""
changeflow — unit tests for persisted change state

File: tests/unit/workflow/test_state.py

Purpose
- Validate STATE.yaml persistence, corruption handling, and checksum-based staleness.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest
import yaml

from changeflow.errors import CorruptStateError, StateError, StateNotFoundError
from changeflow.workflow.change import Phase, UsageRecord
from changeflow.workflow.state import StateStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "changes")


def test_create_then_load_round_trips(store: StateStore) -> None:
    created = store.create("add-auth", now=T0)
    created.record_usage(UsageRecord(step="proposal", model="opus", tokens_in=12, cost_usd=0.5))
    store.save(created, now=T0)

    loaded = store.load("add-auth")

    assert loaded == created
    assert loaded.phase is Phase.PROPOSED
    assert loaded.last_action == "created"
    assert loaded.updated_at == "2026-03-01T12:00:00Z"


def test_state_file_keeps_a_stable_field_order(store: StateStore) -> None:
    store.create("add-auth", now=T0)

    raw = yaml.safe_load(store.layout("add-auth").state.read_text(encoding="utf-8"))

    assert list(raw)[:5] == ["change_id", "schema_version", "created_at", "updated_at", "phase"]


def test_create_refuses_an_existing_change(store: StateStore) -> None:
    store.create("add-auth")

    with pytest.raises(StateError):
        store.create("add-auth")


@pytest.mark.parametrize("change_id", ["", "..", "a/b", "a\\b"])
def test_invalid_change_ids_are_rejected(store: StateStore, change_id: str) -> None:
    with pytest.raises(StateError):
        store.layout(change_id)


def test_missing_state_raises_not_found(store: StateStore) -> None:
    with pytest.raises(StateNotFoundError):
        store.load("nope")


@pytest.mark.parametrize(
    "payload",
    [
        "change_id: [unclosed\n",
        "- just\n- a list\n",
        "change_id: add-auth\nphase: flying\n",
        "change_id: other\n",
        "schema_version: '2.0'\n",
    ],
)
def test_corrupt_state_is_reported(store: StateStore, payload: str) -> None:
    state_path = store.layout("add-auth").state
    state_path.parent.mkdir(parents=True)
    state_path.write_text(payload, encoding="utf-8")

    with pytest.raises(CorruptStateError):
        store.load("add-auth")


def test_load_or_new_persists_nothing_until_saved(store: StateStore) -> None:
    first = store.load_or_new("add-auth", now=T0)
    assert first.last_action == "created"
    assert not store.exists("add-auth")

    first.last_verdict = "NEEDS_REVISION"
    store.save(first)

    assert store.exists("add-auth")
    assert store.load_or_new("add-auth").last_verdict == "NEEDS_REVISION"


def test_staleness_tracks_edits_after_validation(store: StateStore) -> None:
    change = store.create("add-auth")
    root = store.layout("add-auth").root
    (root / "specs").mkdir()
    (root / "proposal.md").write_text("# Proposal\n", encoding="utf-8")
    (root / "tasks.md").write_text("# Tasks\n", encoding="utf-8")
    (root / "specs" / "auth.md").write_text("# Auth\n", encoding="utf-8")

    recorded = store.mark_validated(change, ["proposal.md", "tasks.md", "CHALLENGE.md"], now=T0)
    assert recorded == ["proposal.md", "tasks.md"]

    (root / "tasks.md").write_text("# Tasks\n\nEdited.\n", encoding="utf-8")
    report = store.check_staleness(change)

    assert report.stale_files == ("tasks.md",)
    assert report.missing_checksums == ("specs/auth.md",)
    assert report.up_to_date == ("proposal.md",)
    assert not report.is_fresh
    assert store.is_fresh(change, "proposal.md")
    assert not store.is_fresh(change, "tasks.md")
    assert not store.is_fresh(change, "CHALLENGE.md")


def test_trailing_whitespace_does_not_make_a_file_stale(store: StateStore) -> None:
    change = store.create("add-auth")
    proposal = store.layout("add-auth").proposal
    proposal.write_text("# Proposal\n\nBody\n", encoding="utf-8")
    store.mark_validated(change, ["proposal.md"])

    proposal.write_text("# Proposal   \r\n\r\nBody\r\n\n\n", encoding="utf-8")

    assert store.is_fresh(change, "proposal.md")


def test_fresh_change_reports_fresh(store: StateStore) -> None:
    change = store.create("add-auth")
    store.layout("add-auth").proposal.write_text("# Proposal\n", encoding="utf-8")
    store.mark_validated(change, ["proposal.md"])

    report = store.check_staleness(change)

    assert report.is_fresh
    assert report.to_dict()["up_to_date"] == ["proposal.md"]


def test_body_freshness_ignores_frontmatter_only_edits(store: StateStore) -> None:
    change = store.create("add-auth")
    proposal = store.layout("add-auth").proposal
    proposal.write_text("---\nid: add-auth\nversion: 1\n---\n\n## Summary\n\nAdd tokens.\n", encoding="utf-8")
    store.mark_validated(change, ["proposal.md"], now=T0)
    store.save(change)
    reloaded = store.load("add-auth")
    assert reloaded.checksums["proposal.md"].body_hash is not None

    proposal.write_text("---\nid: add-auth\nversion: 2\n---\n\n## Summary\n\nAdd tokens.\n", encoding="utf-8")

    assert not store.is_fresh(reloaded, "proposal.md")
    assert store.is_body_fresh(reloaded, "proposal.md")

    proposal.write_text("---\nid: add-auth\nversion: 2\n---\n\n## Summary\n\nAdd API tokens.\n", encoding="utf-8")

    assert not store.is_body_fresh(reloaded, "proposal.md")


def test_body_freshness_of_a_plain_file_follows_the_whole_file(store: StateStore) -> None:
    change = store.create("add-auth")
    implementation = store.layout("add-auth").implementation
    implementation.write_text("# Implementation\n", encoding="utf-8")
    store.mark_validated(change, ["IMPLEMENTATION.md"], now=T0)

    assert change.checksums["IMPLEMENTATION.md"].body_hash is None
    assert store.is_body_fresh(change, "IMPLEMENTATION.md")

    implementation.write_text("# Implementation\n\nDone.\n", encoding="utf-8")

    assert not store.is_body_fresh(change, "IMPLEMENTATION.md")
