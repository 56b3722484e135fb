"""Synchronization of the offline store with the server."""

from replica.sync.conflicts import ConflictResolver
from replica.sync.engine import SyncEngine
from replica.sync.manager import SyncManager

__all__ = ["ConflictResolver", "SyncEngine", "SyncManager"]
