"""
Microsoft To Do integration for mtd-sync.
"""

from .auth import TokenProvider
from .gateway import GraphClient, KEEP, format_graph_failure

__all__ = ['TokenProvider', 'GraphClient', 'KEEP', 'format_graph_failure']
