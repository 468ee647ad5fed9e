"""
Command implementations for mtd-sync.
"""

from .sync import SyncCommand, PushCommand, RouteCommand, ClearCommand
from .auth import LoginCommand, LogoutCommand
from .lists import ListsCommand, BindCommand
from .watch import WatchCommand

__all__ = [
    'SyncCommand',
    'PushCommand',
    'RouteCommand',
    'ClearCommand',
    'LoginCommand',
    'LogoutCommand',
    'ListsCommand',
    'BindCommand',
    'WatchCommand',
]
