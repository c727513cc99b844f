"""
changeflow — change directory layout

File: src/changeflow/documents/layout.py

Purpose
- Conventional on-disk paths of one change directory: planning documents, verdict documents,
  the implementation summary, the specs folder and STATE.yaml.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from changeflow.constants import (
    CHALLENGE_FILE,
    IMPLEMENTATION_FILE,
    PROPOSAL_FILE,
    REVIEW_FILE,
    SPECS_DIR,
    STATE_FILE,
    TASKS_FILE,
    VERIFICATION_FILE,
)


@dataclass(frozen=True, slots=True)
class ChangeLayout:
    """Paths of every document belonging to the change rooted at ``root``."""

    root: Path

    @classmethod
    def for_change(cls, changes_dir: Path, change_id: str) -> ChangeLayout:
        return cls(root=Path(changes_dir) / change_id)

    @property
    def change_id(self) -> str:
        return self.root.name

    @property
    def proposal(self) -> Path:
        return self.root / PROPOSAL_FILE

    @property
    def tasks(self) -> Path:
        return self.root / TASKS_FILE

    @property
    def challenge(self) -> Path:
        return self.root / CHALLENGE_FILE

    @property
    def review(self) -> Path:
        return self.root / REVIEW_FILE

    @property
    def implementation(self) -> Path:
        return self.root / IMPLEMENTATION_FILE

    @property
    def verification(self) -> Path:
        return self.root / VERIFICATION_FILE

    @property
    def state(self) -> Path:
        return self.root / STATE_FILE

    @property
    def specs_dir(self) -> Path:
        return self.root / SPECS_DIR

    def spec(self, spec_id: str) -> Path:
        return self.specs_dir / f"{spec_id}.md"

    def spec_files(self) -> tuple[Path, ...]:
        if not self.specs_dir.is_dir():
            return ()
        return tuple(sorted(self.specs_dir.glob("*.md")))

    def spec_ids(self) -> tuple[str, ...]:
        return tuple(path.stem for path in self.spec_files())

    def relative(self, path: Path) -> str:
        """``path`` relative to the change root, POSIX-style (``specs/auth.md``)."""
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()


__all__ = ["ChangeLayout"]
