"""Conflict resolution for bidirectional sync.

The decision uses two weak signals per side: a content hash and the
remote modification timestamp. ``decide_winner`` is pure so every
combination can be tested without a network or a document.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

from ..utils.date import parse_timestamp


class Winner(Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class TaskSnapshot:
    """Current content hash of one side, plus its modification time if known."""

    content_hash: str
    modified_at: Optional[str] = None


@dataclass(frozen=True)
class SyncRecord:
    """What was recorded at the last successful sync."""

    local_hash: str
    remote_hash: str
    remote_modified_at: Optional[str] = None


@dataclass(frozen=True)
class ChangeSet:
    local_changed: bool
    remote_changed: bool
    remote_stale: bool


def detect_changes(local: TaskSnapshot, remote: TaskSnapshot, last: SyncRecord) -> ChangeSet:
    """
    Classify what changed since ``last``.

    ``remote_stale`` means the remote timestamp did not move although its
    content hash did. It is only raised when both timestamps are known.
    """
    local_changed = local.content_hash != last.local_hash
    remote_hash_changed = remote.content_hash != last.remote_hash

    remote_time = parse_timestamp(remote.modified_at)
    known_time = parse_timestamp(last.remote_modified_at)
    both_known = remote_time is not None and known_time is not None

    remote_stale = both_known and remote_time == known_time and remote_hash_changed
    remote_advanced = both_known and remote_time > known_time
    remote_changed = not remote_stale and (remote_hash_changed or remote_advanced)

    return ChangeSet(local_changed, remote_changed, remote_stale)


def decide_winner(
    local: TaskSnapshot,
    remote: TaskSnapshot,
    last: SyncRecord,
    stale_favors_local: bool = True,
) -> Winner:
    """
    Pick the side whose fields are rendered.

    Local edits always win; otherwise a remote change wins; a stale remote
    signal goes to local (configurable); with nothing changed the remote
    side is canonical.
    """
    changes = detect_changes(local, remote, last)
    if changes.local_changed:
        return Winner.LOCAL
    if changes.remote_changed:
        return Winner.REMOTE
    if changes.remote_stale:
        return Winner.LOCAL if stale_favors_local else Winner.REMOTE
    return Winner.REMOTE


class ConflictResolver:
    """Applies ``decide_winner`` with the configured stale-remote policy."""

    def __init__(self, stale_remote_favors_local: bool = True, logger: Optional[logging.Logger] = None):
        self.stale_remote_favors_local = stale_remote_favors_local
        self.logger = logger or logging.getLogger(__name__)

    def resolve(self, label: str, local: TaskSnapshot, remote: TaskSnapshot, last: SyncRecord) -> Winner:
        changes = detect_changes(local, remote, last)
        winner = decide_winner(local, remote, last, self.stale_remote_favors_local)
        if changes.remote_stale:
            self.logger.info(f"Remote timestamp unchanged but content differs for {label}; using {winner.value}")
        elif changes.local_changed and changes.remote_changed:
            self.logger.debug(f"Both sides changed for {label}; local wins")
        return winner
