"""
Construction of store backends from configuration.
"""

from __future__ import annotations

import logging
from pathlib import Path

from replica.config import StorageProvider, StorageSettings
from replica.errors import ConfigurationError
from replica.storage.base import BaseStore
from replica.storage.dict_store import DictStore
from replica.storage.file_store import FileSystemStore
from replica.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

SQLITE_FILENAME = "replica.sqlite"


def create_store(settings: StorageSettings, key: str) -> BaseStore:
    """
    Build the store for ``key`` using the configured provider.

    Different keys (offline data, cache table, file locations) never share
    blobs: file system stores get a subdirectory per key and SQLite stores a
    namespace per key.
    """
    provider = settings.provider
    base_path = Path(settings.storage_path).expanduser()
    if settings.name:
        base_path = base_path / settings.name

    if provider == StorageProvider.MEMORY:
        return DictStore()
    if provider == StorageProvider.FILE_SYSTEM:
        return FileSystemStore(base_path / key)
    if provider == StorageProvider.SQLITE:
        return SQLiteStore(base_path / SQLITE_FILENAME, namespace=key)
    if provider == StorageProvider.CUSTOM:
        if not isinstance(settings.implementation, BaseStore):
            raise ConfigurationError(
                "Custom storage provider requires a BaseStore implementation"
            )
        return settings.implementation

    raise ConfigurationError(f"Unsupported storage provider {provider}")


def create_auxiliary_store(settings: StorageSettings, key: str) -> BaseStore:
    """
    Store for SDK bookkeeping (cache table, file locations).

    A custom implementation holds user collections only, so bookkeeping for
    custom providers stays in memory.
    """
    if settings.provider == StorageProvider.CUSTOM:
        logger.debug(f"Custom storage provider: keeping {key} in memory")
        return DictStore()
    return create_store(settings, key)
