"""
mtd-sync - bidirectional sync between markdown task documents and Microsoft To Do.
"""

__version__ = "0.4.0"
