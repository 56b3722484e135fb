"""
Replica

Offline storage, synchronization and caching for a backend data API.

The SDK provides:
- A local replica of server collections that works while offline
- Synchronization with conflict detection and pluggable resolution strategies
- A query result cache with per content type expiration
- Encryption at rest for the offline store

Quick Start:
    from replica import ClientSettings, ReplicaClient

    settings = ClientSettings(api_key="...", offline_storage=True)
    async with ReplicaClient(settings) as client:
        tasks = client.data("Tasks")

        client.set_offline(True)
        await tasks.create({"Title": "Written while offline"})

        client.set_offline(False)
        result = await client.sync()
        print(result.synced_to_server)
"""

__version__ = "0.1.0"

from replica.auth import Authentication, TokenAuthentication
from replica.caching.cache import CacheEngine, CacheIndex
from replica.client import ReplicaClient
from replica.config import (
    CachingSettings,
    ClientSettings,
    ConflictSettings,
    EncryptionSettings,
    FilesSettings,
    OfflineStorageSettings,
    StorageProvider,
    StorageSettings,
    TypeSettings,
)
from replica.data import DataCollection
from replica.errors import ConfigurationError, ErrorCode, ReplicaError, SyncItemError
from replica.events import EventEmitter, SyncEvent
from replica.schema.query import DataQuery, Operation
from replica.schema.sync import (
    ConflictRecord,
    ConflictResolutionStrategy,
    ContentTypeConflicts,
    ItemState,
    ResolutionType,
    SyncResultInfo,
    SyncStorage,
)
from replica.sync.engine import SyncEngine
from replica.sync.manager import SyncManager

__all__ = [
    # Version
    "__version__",
    # Client
    "ReplicaClient",
    "DataCollection",
    "DataQuery",
    "Operation",
    # Configuration
    "ClientSettings",
    "OfflineStorageSettings",
    "CachingSettings",
    "ConflictSettings",
    "StorageSettings",
    "StorageProvider",
    "EncryptionSettings",
    "FilesSettings",
    "TypeSettings",
    # Sync
    "SyncEngine",
    "SyncManager",
    "SyncEvent",
    "EventEmitter",
    "SyncResultInfo",
    "ConflictRecord",
    "ContentTypeConflicts",
    "ConflictResolutionStrategy",
    "ResolutionType",
    "ItemState",
    "SyncStorage",
    # Cache
    "CacheEngine",
    "CacheIndex",
    # Auth
    "Authentication",
    "TokenAuthentication",
    # Errors
    "ReplicaError",
    "ConfigurationError",
    "SyncItemError",
    "ErrorCode",
]
