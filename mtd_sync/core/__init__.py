"""
Core module for mtd-sync - contains domain models, persisted state, and exceptions.
"""

from .models import (
    TaskRecord,
    RemoteTask,
    RemoteChecklistItem,
    RemoteCollection,
    MappingEntry,
    ChecklistMappingEntry,
    RoutingRule,
    SyncSettings,
    SyncSummary,
    TaskStatus,
    DeletionPolicy,
    MarkerKind,
)
from .mapping_store import MappingStore
from .config import SyncState, load_state, save_state, migrate_state

from .exceptions import (
    MtdSyncError,
    ConfigurationError,
    AuthRequiredError,
    AuthenticationFailedError,
    RemoteError,
    RemoteRequestFailed,
    DocumentError,
    SyncError,
)

__all__ = [
    # Models
    'TaskRecord',
    'RemoteTask',
    'RemoteChecklistItem',
    'RemoteCollection',
    'MappingEntry',
    'ChecklistMappingEntry',
    'RoutingRule',
    'SyncSettings',
    'SyncSummary',
    'TaskStatus',
    'DeletionPolicy',
    'MarkerKind',
    # State
    'MappingStore',
    'SyncState',
    'load_state',
    'save_state',
    'migrate_state',
    # Exceptions
    'MtdSyncError',
    'ConfigurationError',
    'AuthRequiredError',
    'AuthenticationFailedError',
    'RemoteError',
    'RemoteRequestFailed',
    'DocumentError',
    'SyncError',
]
