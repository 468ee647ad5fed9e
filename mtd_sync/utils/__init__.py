"""
Utility functions for mtd-sync.
"""

from .io import safe_read_json, safe_write_json, atomic_write
from .date import parse_date, parse_timestamp, due_date_to_remote, due_date_from_remote
from .text import (
    canonicalize_title,
    hash_task,
    hash_checklist,
    sanitize_title_for_remote,
    extract_due_date,
    normalize_tag,
)

__all__ = [
    # I/O utilities
    'safe_read_json',
    'safe_write_json',
    'atomic_write',
    # Date utilities
    'parse_date',
    'parse_timestamp',
    'due_date_to_remote',
    'due_date_from_remote',
    # Text utilities
    'canonicalize_title',
    'hash_task',
    'hash_checklist',
    'sanitize_title_for_remote',
    'extract_due_date',
    'normalize_tag',
]
