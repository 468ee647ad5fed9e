"""
Markdown document handling for mtd-sync.
"""

from .parser import (
    parse_task_line,
    parse_document,
    format_task_line,
    render_record,
    attach_marker,
    new_marker_id,
    match_marker,
    split_document,
    join_document,
    MarkerGrammar,
    MarkerMatch,
    MARKER_GRAMMARS,
)
from .patch import DocumentPatch
from .vault import DocumentStore, LIST_ANNOTATION_KEY
from .watcher import Debouncer, DocumentWatcher, PeriodicRunner

__all__ = [
    'parse_task_line',
    'parse_document',
    'format_task_line',
    'render_record',
    'attach_marker',
    'new_marker_id',
    'match_marker',
    'split_document',
    'join_document',
    'MarkerGrammar',
    'MarkerMatch',
    'MARKER_GRAMMARS',
    'DocumentPatch',
    'DocumentStore',
    'LIST_ANNOTATION_KEY',
    'Debouncer',
    'DocumentWatcher',
    'PeriodicRunner',
]
