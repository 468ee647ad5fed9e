"""
Markdown task line codec.

Parses task lines into ``TaskRecord``s and renders them back. A synced
line carries a hidden identity marker at its end::

    - [ ] Write report 📅 2024-05-01 #work <!-- mtd:mtd_k3v9x0qa -->

Two legacy marker forms (``^mtd_...`` block references and
``<!-- MicrosoftToDoSync:... -->`` comments) are still recognised when
parsing but never emitted.
"""

import re
import secrets
import string
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Tuple

from ..core.models import MarkerKind, TaskRecord
from ..utils.text import (
    CHECKLIST_MARKER_PREFIX,
    MARKER_PREFIXES,
    TASK_MARKER_PREFIX,
    collapse_whitespace,
    extract_due_date,
    find_tag,
    strip_markers,
)


TASK_RE = re.compile(r'^(\s*)([-*])\s+\[([ xX])\]\s+(.*)$')
HEADING_RE = re.compile(r'^(#{1,6})\s+(.*?)\s*#*\s*$')
FENCE_RE = re.compile(r'^\s*(```|~~~)')

MARKER_ID_LENGTH = 8
MARKER_ALPHABET = string.ascii_lowercase + string.digits
INDENT_TAB_WIDTH = 2


@dataclass(frozen=True)
class MarkerMatch:
    """A marker found at the end of a task body."""

    kind: MarkerKind
    marker_id: str
    start: int
    end: int


@dataclass(frozen=True)
class MarkerGrammar:
    """One syntax for identity markers.

    ``owned`` grammars are this tool's own syntax and are always stripped;
    for the others a foreign id means the text belongs to the user and is
    left alone.
    """

    kind: MarkerKind
    pattern: Pattern[str]
    owned: bool = True

    def match(self, text: str) -> Optional[MarkerMatch]:
        found = self.pattern.search(text)
        if not found:
            return None
        marker_id = found.group(1)
        if not marker_id.startswith(MARKER_PREFIXES):
            if not self.owned:
                return None
            marker_id = ""
        return MarkerMatch(self.kind, marker_id, found.start(), found.end())


# Tried in order; the first grammar that matches wins.
MARKER_GRAMMARS: Tuple[MarkerGrammar, ...] = (
    MarkerGrammar(
        MarkerKind.COMMENT,
        re.compile(r'\s*<!--\s*mtd\s*:\s*([A-Za-z0-9_]+)\s*-->\s*$', re.IGNORECASE),
    ),
    MarkerGrammar(
        MarkerKind.CARET,
        re.compile(r'\s+\^([A-Za-z0-9_-]+)\s*$'),
        owned=False,
    ),
    MarkerGrammar(
        MarkerKind.LEGACY_COMMENT,
        re.compile(r'\s*<!--\s*MicrosoftToDoSync\s*:\s*([A-Za-z0-9_]+)\s*-->\s*$', re.IGNORECASE),
    ),
)


def match_marker(text: str, grammars: Iterable[MarkerGrammar] = MARKER_GRAMMARS) -> Optional[MarkerMatch]:
    """Return the first marker match in priority order, or None."""
    for grammar in grammars:
        found = grammar.match(text)
        if found:
            return found
    return None


def new_marker_id(checklist: bool = False) -> str:
    """Mint a fresh marker id (``mtd_xxxxxxxx`` or ``mtdc_xxxxxxxx``)."""
    prefix = CHECKLIST_MARKER_PREFIX if checklist else TASK_MARKER_PREFIX
    return prefix + ''.join(secrets.choice(MARKER_ALPHABET) for _ in range(MARKER_ID_LENGTH))


def format_marker(marker_id: str) -> str:
    return f"<!-- mtd:{marker_id} -->"


def indent_width(indent: str) -> int:
    return len(indent.replace('\t', ' ' * INDENT_TAB_WIDTH))


def parse_task_line(
    line: str,
    tag_names: Iterable[str] = (),
    heading: str = "",
    line_index: int = 0,
) -> Optional[TaskRecord]:
    """
    Parse a single markdown line.

    Args:
        line: Raw document line (without newline)
        tag_names: Routing tags to recognise; other tags stay in the title
        heading: Enclosing heading text
        line_index: Index of the line in its document

    Returns:
        TaskRecord, or None if the line is not a task or has an empty title
    """
    match = TASK_RE.match(line)
    if not match:
        return None

    indent, bullet, status_char, rest = match.groups()

    marker = match_marker(rest)
    marker_id = ""
    marker_kind = None
    if marker:
        marker_id = marker.marker_id
        marker_kind = marker.kind
        rest = rest[:marker.start]
    rest = strip_markers(rest)

    tag = None
    found = find_tag(rest, list(tag_names))
    if found:
        tag, start, end = found
        rest = f"{rest[:start]} {rest[end:]}"

    title, due_date = extract_due_date(rest)
    title = collapse_whitespace(title)
    if not title:
        return None

    return TaskRecord(
        line_index=line_index,
        indent=indent,
        bullet=bullet,
        completed=status_char in ('x', 'X'),
        title=title,
        due_date=due_date,
        tag=tag,
        marker_id=marker_id,
        heading=heading,
        marker_kind=marker_kind,
    )


def parse_heading(line: str) -> Optional[str]:
    match = HEADING_RE.match(line)
    if not match:
        return None
    return match.group(2).strip()


def _front_matter_end(lines: List[str]) -> int:
    """Index of the first line after a leading YAML front matter block."""
    if not lines or lines[0].strip() != '---':
        return 0
    for index in range(1, len(lines)):
        if lines[index].strip() in ('---', '...'):
            return index + 1
    return 0


def parse_document(lines: List[str], tag_names: Iterable[str] = ()) -> List[TaskRecord]:
    """
    Parse every task in a document.

    Headings set the ``heading`` of the tasks that follow them. A task
    indented deeper than an earlier task is nested under it; its
    ``parent_index`` points at the top-level task of that nesting chain.
    Front matter and fenced code blocks are skipped.
    """
    tags = list(tag_names)
    records: List[TaskRecord] = []
    heading = ""
    in_fence = False
    # (indent width, line index of top-level ancestor)
    stack: List[Tuple[int, int]] = []

    for index in range(_front_matter_end(lines), len(lines)):
        line = lines[index]
        if FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        heading_text = parse_heading(line)
        if heading_text is not None:
            heading = heading_text
            stack = []
            continue

        record = parse_task_line(line, tags, heading=heading, line_index=index)
        if record is None:
            continue

        width = indent_width(record.indent)
        while stack and width <= stack[-1][0]:
            stack.pop()
        if stack:
            record.parent_index = stack[0][1]
        stack.append((width, index))
        records.append(record)

    return records


def format_task_line(
    indent: str,
    bullet: str,
    completed: bool,
    title: str,
    due_date: Optional[str] = None,
    tag: Optional[str] = None,
    marker_id: str = "",
) -> str:
    """Render a task line; the marker is always last."""
    parts = [f"{indent}{bullet} [{'x' if completed else ' '}]", title]
    if due_date:
        parts.append(f"📅 {due_date}")
    if tag:
        parts.append(tag)
    if marker_id:
        parts.append(format_marker(marker_id))
    return ' '.join(parts)


def render_record(record: TaskRecord) -> str:
    return format_task_line(
        record.indent,
        record.bullet,
        record.completed,
        record.title,
        record.due_date,
        record.tag,
        record.marker_id,
    )


def attach_marker(line: str, marker_id: str) -> str:
    """Give a raw line the emitted marker form, keeping the rest verbatim."""
    found = match_marker(line)
    body = line[:found.start] if found else line
    return f"{body.rstrip()} {format_marker(marker_id)}"


def split_document(text: str) -> Tuple[List[str], bool]:
    """Split text into lines, reporting whether it ended with a newline."""
    normalized = text.replace('\r\n', '\n').replace('\r', '\n')
    trailing_newline = normalized.endswith('\n')
    if trailing_newline:
        normalized = normalized[:-1]
    if not normalized and not trailing_newline:
        return [], False
    return normalized.split('\n'), trailing_newline


def join_document(lines: List[str], trailing_newline: bool = True) -> str:
    text = '\n'.join(lines)
    if trailing_newline and lines:
        text += '\n'
    return text
