"""
Sync module for mtd-sync - reconciliation, conflict resolution and tag routing.
"""

from .resolver import ConflictResolver, SyncRecord, TaskSnapshot, Winner, decide_winner, detect_changes
from .router import TagRouter
from .context import SyncContext
from .engine import ReconciliationEngine, MASS_DELETION_THRESHOLD

__all__ = [
    'ConflictResolver',
    'SyncRecord',
    'TaskSnapshot',
    'Winner',
    'decide_winner',
    'detect_changes',
    'TagRouter',
    'SyncContext',
    'ReconciliationEngine',
    'MASS_DELETION_THRESHOLD',
]
