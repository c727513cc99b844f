"""
changeflow — markdown block tokenizer

File: src/changeflow/documents/markdown.py

Purpose
- Turn a document body into a flat, ordered sequence of block nodes (headings and fenced
  code blocks) so callers can reason about document structure instead of raw lines.

Functional requirements
- Heading-looking lines inside fenced blocks are content, never headings.
- Fences close only on a marker of the same character and at least the opening length.
- An unclosed fence runs to the end of the document.
- ATX and setext headings are both recognized.

Non-functional requirements
- Pure and deterministic; offsets are character offsets into the input string.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

_ATX_HEADING_RE: Final[re.Pattern[str]] = re.compile(
    r"^[ ]{0,3}(?P<hashes>#{1,6})(?:[ \t]+(?P<text>.*?))?[ \t]*$"
)
_ATX_CLOSING_RE: Final[re.Pattern[str]] = re.compile(r"(?:^|[ \t]+)#+[ \t]*$")
_SETEXT_UNDERLINE_RE: Final[re.Pattern[str]] = re.compile(r"^[ ]{0,3}(?P<marker>=+|-+)[ \t]*$")
_FENCE_START_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<indent>[ ]{0,3})(?P<marker>`{3,}|~{3,})(?P<info>.*)$"
)
_FENCE_CLOSE_RE: Final[re.Pattern[str]] = re.compile(r"^[ ]{0,3}(?P<marker>`{3,}|~{3,})[ \t]*$")


@dataclass(frozen=True, slots=True)
class Heading:
    level: int
    text: str
    line: int
    offset: int


@dataclass(frozen=True, slots=True)
class FencedBlock:
    info: str
    content: str
    line: int
    offset: int
    closed: bool

    @property
    def language(self) -> str:
        """First word of the info string, lower-cased (``"yaml"`` for ```` ```yaml title ````)."""
        parts = self.info.split(maxsplit=1)
        return parts[0].lower() if parts else ""


Block = Heading | FencedBlock


@dataclass(slots=True)
class _FenceState:
    marker_char: str
    marker_length: int
    indent: int
    info: str
    line: int
    offset: int
    content: list[str]


def parse_blocks(text: str) -> tuple[Block, ...]:
    """Tokenize ``text`` into headings and fenced blocks in document order."""

    blocks: list[Block] = []
    fence: _FenceState | None = None
    offset = 0
    previous_paragraph: tuple[str, int, int] | None = None

    for index, raw_line in enumerate(text.splitlines(keepends=True)):
        line_number = index + 1
        line = raw_line.rstrip("\r\n")
        line_offset = offset
        offset += len(raw_line)

        if fence is not None:
            if _closes_fence(line, fence):
                blocks.append(_finish_fence(fence, closed=True))
                fence = None
            else:
                fence.content.append(_strip_indent(line, fence.indent))
            continue

        opened = _open_fence(line, line_number, line_offset)
        if opened is not None:
            fence = opened
            previous_paragraph = None
            continue

        atx = _ATX_HEADING_RE.match(line)
        if atx is not None:
            blocks.append(
                Heading(
                    level=len(atx.group("hashes")),
                    text=_strip_atx_closing(atx.group("text") or ""),
                    line=line_number,
                    offset=line_offset,
                )
            )
            previous_paragraph = None
            continue

        setext = _SETEXT_UNDERLINE_RE.match(line)
        if setext is not None and previous_paragraph is not None:
            paragraph_text, paragraph_line, paragraph_offset = previous_paragraph
            level = 1 if setext.group("marker").startswith("=") else 2
            blocks.append(
                Heading(
                    level=level,
                    text=paragraph_text,
                    line=paragraph_line,
                    offset=paragraph_offset,
                )
            )
            previous_paragraph = None
            continue

        if line.strip():
            previous_paragraph = (line.strip(), line_number, line_offset)
        else:
            previous_paragraph = None

    if fence is not None:
        blocks.append(_finish_fence(fence, closed=False))

    return tuple(blocks)


def iter_headings(text: str) -> tuple[Heading, ...]:
    return tuple(block for block in parse_blocks(text) if isinstance(block, Heading))


def iter_fenced_blocks(text: str) -> tuple[FencedBlock, ...]:
    return tuple(block for block in parse_blocks(text) if isinstance(block, FencedBlock))


def line_of(text: str, offset: int) -> int:
    """Return the 1-indexed line number containing character ``offset``."""
    return text.count("\n", 0, max(offset, 0)) + 1


def section_text(text: str, heading: Heading, headings: tuple[Heading, ...]) -> str:
    """Return the body text under ``heading`` up to the next heading of equal or higher rank."""

    end = len(text)
    seen = False
    for candidate in headings:
        if candidate == heading:
            seen = True
            continue
        if seen and candidate.level <= heading.level:
            end = candidate.offset
            break
    start = text.find("\n", heading.offset)
    if start == -1:
        return ""
    return text[start + 1 : end]


def _open_fence(line: str, line_number: int, line_offset: int) -> _FenceState | None:
    match = _FENCE_START_RE.match(line)
    if match is None:
        return None
    marker = match.group("marker")
    info = match.group("info").strip()
    # A backtick fence's info string may not itself contain backticks.
    if marker[0] == "`" and "`" in info:
        return None
    return _FenceState(
        marker_char=marker[0],
        marker_length=len(marker),
        indent=len(match.group("indent")),
        info=info,
        line=line_number,
        offset=line_offset,
        content=[],
    )


def _closes_fence(line: str, state: _FenceState) -> bool:
    match = _FENCE_CLOSE_RE.match(line)
    if match is None:
        return False
    marker = match.group("marker")
    return marker[0] == state.marker_char and len(marker) >= state.marker_length


def _finish_fence(state: _FenceState, *, closed: bool) -> FencedBlock:
    content = "\n".join(state.content)
    if state.content:
        content += "\n"
    return FencedBlock(
        info=state.info,
        content=content,
        line=state.line,
        offset=state.offset,
        closed=closed,
    )


def _strip_indent(line: str, indent: int) -> str:
    removable = 0
    while removable < indent and removable < len(line) and line[removable] == " ":
        removable += 1
    return line[removable:]


def _strip_atx_closing(text: str) -> str:
    stripped = _ATX_CLOSING_RE.sub("", text)
    return stripped.strip()


__all__ = [
    "Block",
    "FencedBlock",
    "Heading",
    "iter_fenced_blocks",
    "iter_headings",
    "line_of",
    "parse_blocks",
    "section_text",
]
