"""
changeflow — affected spec discovery

File: src/changeflow/documents/affected.py

Purpose
- Find the spec ids a proposal declares as affected, from its frontmatter or, failing that,
  from an "Affected specs:" line in its body.
"""

from __future__ import annotations

import re
from typing import Final

from changeflow.documents.frontmatter import split_frontmatter
from changeflow.documents.models import SpecReference

_AFFECTED_LINE_RE: Final[re.Pattern[str]] = re.compile(r"(?mi)^[-*]\s*Affected specs:\s*(.+?)\s*$")
_EMPTY_MARKERS: Final[frozenset[str]] = frozenset({"", "none", "n/a", "[]"})


def affected_specs(proposal_text: str) -> tuple[SpecReference, ...]:
    """Return the affected spec references of a proposal in declaration order.

    The ``affected_specs`` frontmatter list wins. A ``- Affected specs: a, b`` body line is
    the fallback for proposals that only mention them in prose. Raises ``ParseError`` on a
    malformed frontmatter block.
    """

    raw = split_frontmatter(proposal_text)
    if raw.frontmatter is not None and "affected_specs" in raw.frontmatter:
        return _from_frontmatter(raw.frontmatter["affected_specs"])
    match = _AFFECTED_LINE_RE.search(raw.body)
    if match is None:
        return ()
    return tuple(SpecReference(id=spec_id, path=f"specs/{spec_id}.md") for spec_id in _split_ids(match.group(1)))


def affected_spec_ids(proposal_text: str) -> tuple[str, ...]:
    return tuple(ref.id for ref in affected_specs(proposal_text))


def _from_frontmatter(value: object) -> tuple[SpecReference, ...]:
    if not isinstance(value, list):
        return ()
    refs: dict[str, SpecReference] = {}
    for item in value:
        if isinstance(item, str) and item.strip():
            spec_id = item.strip()
            refs.setdefault(spec_id, SpecReference(id=spec_id, path=f"specs/{spec_id}.md"))
        elif isinstance(item, dict) and isinstance(item.get("id"), str) and item["id"].strip():
            spec_id = item["id"].strip()
            path = item.get("path")
            refs.setdefault(
                spec_id,
                SpecReference(id=spec_id, path=path if isinstance(path, str) else f"specs/{spec_id}.md"),
            )
    return tuple(refs.values())


def _split_ids(raw: str) -> tuple[str, ...]:
    cleaned = raw.strip().strip("[]")
    if cleaned.strip().lower() in _EMPTY_MARKERS or raw.strip().lower() in _EMPTY_MARKERS:
        return ()
    ids: list[str] = []
    for part in cleaned.split(","):
        spec_id = part.strip().strip("`'\"").strip()
        if spec_id and spec_id.lower() not in _EMPTY_MARKERS and spec_id not in ids:
            ids.append(spec_id)
    return tuple(ids)


__all__ = ["affected_spec_ids", "affected_specs"]
