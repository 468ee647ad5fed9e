"""
Date parsing and formatting utilities.
"""

import os
import re
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional


DUE_DATE_FORMAT = '%Y-%m-%d'
_FRACTION_RE = re.compile(r'\.(\d+)')
_ZONE_NAME_RE = re.compile(r'^[A-Za-z][A-Za-z0-9_+-]*(/[A-Za-z0-9_+-]+)+$')


def parse_date(date_str: Optional[str]) -> Optional[date]:
    """
    Parse a ``YYYY-MM-DD`` string (or the date part of an ISO datetime).

    Args:
        date_str: Date string to parse

    Returns:
        Parsed date object or None if invalid
    """
    if not date_str:
        return None
    try:
        return datetime.strptime(date_str[:10], DUE_DATE_FORMAT).date()
    except (ValueError, TypeError):
        return None


def is_valid_due_date(value: Optional[str]) -> bool:
    return parse_date(value) is not None and len(value or '') == 10


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a remote modification timestamp into an aware UTC datetime.

    The remote service reports seven fractional digits
    (``2024-05-01T10:15:30.1234567Z``); Python only keeps six, so the
    fraction is truncated before parsing. Naive values are assumed UTC.
    """
    if not value:
        return None

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    text = _FRACTION_RE.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _zone_from_path(path: str) -> Optional[str]:
    """``.../zoneinfo/Europe/Berlin`` -> ``Europe/Berlin``."""
    marker = 'zoneinfo/'
    if marker not in path:
        return None
    name = path.rsplit(marker, 1)[1]
    for prefix in ('posix/', 'right/'):
        if name.startswith(prefix):
            name = name[len(prefix):]
    return name or None


def _is_zone_name(name: Optional[str]) -> bool:
    return bool(name) and (name == 'UTC' or _ZONE_NAME_RE.match(name) is not None)


def local_timezone_name(localtime_path: str = '/etc/localtime', timezone_file: str = '/etc/timezone') -> str:
    """
    Best-effort IANA name of the local zone.

    Checked in order: ``$TZ``, the ``/etc/localtime`` symlink target
    (Linux and macOS) and ``/etc/timezone`` (Debian). Falls back to UTC.
    """
    candidates = [os.environ.get('TZ', '').lstrip(':')]
    if os.path.islink(localtime_path):
        candidates.append(_zone_from_path(os.path.realpath(localtime_path)))
    try:
        with open(timezone_file, encoding='utf-8') as handle:
            candidates.append(handle.read().strip())
    except OSError:
        pass

    for name in candidates:
        if _is_zone_name(name):
            return name
    return 'UTC'


def due_date_to_remote(due_date: str) -> Dict[str, str]:
    """Build the remote ``dueDateTime`` payload for a calendar date."""
    return {
        'dateTime': f'{due_date}T00:00:00',
        'timeZone': local_timezone_name(),
    }


def due_date_from_remote(due: Optional[Dict[str, Any]]) -> Optional[str]:
    """Extract ``YYYY-MM-DD`` from a remote ``dueDateTime`` payload."""
    if not isinstance(due, dict):
        return None
    value = due.get('dateTime')
    if not isinstance(value, str) or len(value) < 10:
        return None
    candidate = value[:10]
    return candidate if is_valid_due_date(candidate) else None


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
