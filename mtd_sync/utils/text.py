"""
Title canonicalization and content hashing.

Titles coming from the remote service never carry document bookkeeping
(identity markers, routing tags) or task-plugin metadata (scheduled dates,
recurrence, priority glyphs), while titles in a document may. Everything
here reduces both sides to a comparable form.
"""

import re
from typing import Iterable, Optional, Tuple


TASK_MARKER_PREFIX = 'mtd_'
CHECKLIST_MARKER_PREFIX = 'mtdc_'
MARKER_PREFIXES = (TASK_MARKER_PREFIX, CHECKLIST_MARKER_PREFIX)

# Identity markers, emitted and legacy forms
COMMENT_MARKER_RE = re.compile(r'<!--\s*mtd\s*:\s*([A-Za-z0-9_]+)\s*-->', re.IGNORECASE)
LEGACY_COMMENT_MARKER_RE = re.compile(r'<!--\s*MicrosoftToDoSync\s*:\s*([A-Za-z0-9_]+)\s*-->', re.IGNORECASE)
CARET_MARKER_RE = re.compile(r'(?<!\S)\^(mtdc?_[a-z0-9_]+)(?!\S)')

DUE_DATE_RE = re.compile(r'(?:^|\s)\U0001F4C5\s*(\d{4}-\d{2}-\d{2})(?=\s|$)')

# Dates stamped by the Tasks plugin: due, done, created, start, scheduled
DATE_STAMP_RE = re.compile(r'[\U0001F4C5✅➕\U0001F6EB⏳]️?\s*\d{4}-\d{2}-\d{2}')
RECURRENCE_RE = re.compile(
    r'\U0001F501️?[^\U0001F4C5✅➕\U0001F6EB⏳\U0001F53A⏫\U0001F53C\U0001F53D⏬#<]*'
)
PRIORITY_RE = re.compile(r'[\U0001F53A⏫\U0001F53C\U0001F53D⏬]️?')

_WHITESPACE_RE = re.compile(r'\s+')


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(' ', text).strip()


def normalize_tag(tag: Optional[str]) -> str:
    """Normalize a routing tag: trimmed, lower case, leading ``#``."""
    if not tag:
        return ''
    value = tag.strip()
    if not value:
        return ''
    if not value.startswith('#'):
        value = f'#{value}'
    return value.lower()


def tag_pattern(tag: str) -> 're.Pattern[str]':
    """Whole-token, case-insensitive pattern for a routing tag."""
    normalized = normalize_tag(tag)
    return re.compile(r'(?<!\S)' + re.escape(normalized) + r'(?![\w/-])', re.IGNORECASE)


def find_tag(text: str, tags: Iterable[str]) -> Optional[Tuple[str, int, int]]:
    """
    Locate the earliest occurrence of any of ``tags`` in ``text``.

    Returns:
        ``(tag_as_written, start, end)`` or None
    """
    best = None
    for tag in tags:
        if not normalize_tag(tag):
            continue
        match = tag_pattern(tag).search(text)
        if match and (best is None or match.start() < best[1]):
            best = (match.group(0), match.start(), match.end())
    return best


def strip_tags(text: str, tags: Iterable[str]) -> str:
    for tag in tags:
        if normalize_tag(tag):
            text = tag_pattern(tag).sub(' ', text)
    return text


def strip_markers(text: str) -> str:
    """Remove every identity marker form from ``text``."""
    text = COMMENT_MARKER_RE.sub(' ', text)
    text = LEGACY_COMMENT_MARKER_RE.sub(' ', text)
    text = CARET_MARKER_RE.sub(' ', text)
    return text


def extract_due_date(text: str) -> Tuple[str, Optional[str]]:
    """
    Split an embedded ``📅 YYYY-MM-DD`` token out of a title.

    The last occurrence wins; all occurrences are removed.
    """
    matches = list(DUE_DATE_RE.finditer(text))
    if not matches:
        return text, None
    due_date = matches[-1].group(1)
    return collapse_whitespace(DUE_DATE_RE.sub(' ', text)), due_date


def canonicalize_title(title: Optional[str], tags: Iterable[str] = ()) -> str:
    """Reduce a title to the form used for hashing and comparison."""
    text = strip_markers(title or '')
    text = strip_tags(text, tags)
    text = DATE_STAMP_RE.sub(' ', text)
    text = RECURRENCE_RE.sub(' ', text)
    text = PRIORITY_RE.sub(' ', text)
    return collapse_whitespace(text)


def sanitize_title_for_remote(title: Optional[str], tags: Iterable[str] = ()) -> str:
    """Strip document bookkeeping that must never be echoed to the remote side."""
    text = strip_markers(title or '')
    text = strip_tags(text, tags)
    text, _ = extract_due_date(text)
    return collapse_whitespace(text)


def hash_task(title: Optional[str], completed: bool, due_date: Optional[str], tags: Iterable[str] = ()) -> str:
    """Content hash of a top-level task: ``completed|title|due``."""
    return f"{1 if completed else 0}|{canonicalize_title(title, tags)}|{due_date or ''}"


def hash_checklist(title: Optional[str], completed: bool, tags: Iterable[str] = ()) -> str:
    """Content hash of a checklist item: ``completed|title``."""
    return f"{1 if completed else 0}|{canonicalize_title(title, tags)}"
