"""
Client - the unified entry point for every data operation.

``ReplicaClient.process_query`` decides for each query whether it runs
against the offline store, through the cache or directly against the server,
and mirrors successful online operations into the offline store.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable
from typing import Any

from replica.auth import Authentication, TokenAuthentication
from replica.caching.cache import CacheEngine, CacheIndex
from replica.config import ClientSettings
from replica.constants import (
    CREATED_AT_FIELD,
    FILES_LOCATION_KEY,
    MODIFIED_AT_FIELD,
    OFFLINE_STORE_KEY,
)
from replica.data import DataCollection
from replica.errors import TOKEN_ERROR_CODES, ErrorCode, ReplicaError
from replica.events import EventEmitter, Listener, SyncEvent
from replica.offline.files import OfflineFiles
from replica.offline.processor import OfflineQueryProcessor
from replica.schema.query import DataQuery, Operation
from replica.schema.sync import SyncResultInfo
from replica.storage.base import BaseStore
from replica.storage.dict_store import DictStore
from replica.storage.encryption import create_encryption_provider
from replica.storage.manager import create_auxiliary_store, create_store
from replica.sync.engine import SyncEngine
from replica.transport.base import BaseTransport
from replica.transport.http import HttpTransport
from replica.transport.request import build_request

logger = logging.getLogger(__name__)


class ReplicaClient:
    """
    SDK client with offline storage, synchronization and caching.

    Usage:
        async with ReplicaClient(ClientSettings(offline_storage=True)) as client:
            tasks = client.data("Tasks")
            await tasks.create({"Title": "Buy milk"})
            client.set_offline(False)
            result = await client.sync()
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        transport: BaseTransport | None = None,
        auth: Authentication | None = None,
        store: BaseStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or ClientSettings()
        offline = self.settings.offline_storage
        caching = self.settings.caching

        if auth is None:
            auth = (
                TokenAuthentication(self.settings.token, self.settings.token_type)
                if self.settings.token
                else Authentication()
            )
        self.auth = auth
        self.transport = transport or HttpTransport(
            self.settings.base_url, self.settings.api_key, auth=self.auth
        )
        self.emitter = EventEmitter()

        uses_local_data = offline.enabled or caching.enabled
        if store is None:
            store = create_store(offline.storage, OFFLINE_STORE_KEY) if uses_local_data else DictStore()
        self.store = store
        self.processor = OfflineQueryProcessor(store, create_encryption_provider(offline.encryption))

        if uses_local_data:
            files_store = create_auxiliary_store(offline.storage, FILES_LOCATION_KEY)
            cache_store = create_auxiliary_store(offline.storage, caching.storage_path)
        else:
            files_store, cache_store = DictStore(), DictStore()
        self._aux_stores = [files_store, cache_store]

        self.files = OfflineFiles(
            files_store, offline.files.storage_path, offline.files.max_concurrent_downloads
        )
        self.cache = CacheEngine(
            caching,
            CacheIndex(cache_store),
            self.processor,
            self._send_online,
            offline_storage_enabled=offline.enabled,
            clock=clock,
        )
        self.sync_engine = SyncEngine(
            self.processor,
            self.process_query,
            self.emitter,
            offline,
            is_online=self.is_online,
            files=self.files,
            transport=self.transport,
        )
        self._offline = offline.enabled and offline.offline

    async def initialize(self) -> None:
        await self.store.initialize()
        for aux_store in self._aux_stores:
            await aux_store.initialize()

    async def close(self) -> None:
        await self.transport.close()
        await self.store.close()
        for aux_store in self._aux_stores:
            await aux_store.close()

    async def __aenter__(self) -> ReplicaClient:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def offline_storage_enabled(self) -> bool:
        return self.settings.offline_storage.enabled

    @property
    def caching_enabled(self) -> bool:
        return self.settings.caching.enabled

    def is_online(self) -> bool:
        return not self._offline

    def set_offline(self, offline: bool) -> None:
        """Switch between offline and online mode."""
        if offline and not self.offline_storage_enabled:
            raise ReplicaError("Offline storage must be enabled to go offline")
        self._offline = offline
        logger.info(f"Client is now {'offline' if offline else 'online'}")

    def is_synchronizing(self) -> bool:
        return self.sync_engine.is_synchronizing()

    def on(self, event: SyncEvent | str, listener: Listener) -> Listener:
        return self.emitter.on(event, listener)

    def off(self, event: SyncEvent | str, listener: Listener | None = None) -> None:
        self.emitter.off(event, listener)

    def data(self, collection_name: str) -> DataCollection:
        return DataCollection(self, collection_name)

    # ------------------------------------------------------------------
    # Offline storage
    # ------------------------------------------------------------------

    async def sync(self) -> SyncResultInfo:
        return await self.sync_engine.sync()

    async def get_items_for_sync(self) -> dict[str, list[dict[str, Any]]]:
        return await self.sync_engine.get_items_for_sync()

    async def purge(self, content_type: str) -> None:
        await self.processor.purge(content_type)

    async def purge_all(self) -> None:
        await self.processor.purge_all()
        await self.files.purge_all()

    # ------------------------------------------------------------------
    # Query routing
    # ------------------------------------------------------------------

    async def process_query(self, query: DataQuery) -> dict[str, Any]:
        """Run a query online or offline, through the cache when it applies."""
        offline_enabled = self.offline_storage_enabled
        if query.use_offline is None:
            query.use_offline = offline_enabled and not self.is_online()

        query.use_cache = (
            self.caching_enabled
            and not query.is_sync
            and not self.processor.is_query_unsupported_offline(query)
        )
        if query.apply_offline is None:
            query.apply_offline = offline_enabled or query.use_cache

        if query.force_cache and not query.use_cache:
            raise ReplicaError.from_code(ErrorCode.CANNOT_FORCE_CACHE_WHEN_DISABLED)

        if not query.is_sync and self.is_synchronizing():
            raise ReplicaError.from_code(ErrorCode.SYNC_IN_PROGRESS)

        if query.use_offline:
            return await self._process_offline(query)

        if not query.skip_auth and self.auth.is_authentication_in_progress():
            await self.auth.wait_for_authentication()

        try:
            if query.use_cache:
                return await self.cache.process_query(query)
            return await self._send_online(query)
        except ReplicaError as e:
            if e.code not in TOKEN_ERROR_CODES or query.no_retry or query.skip_auth:
                raise
            logger.warning(f"Token rejected for {query.collection_name}, re-authenticating")
            await self.auth.ensure_authentication()
            return await self.process_query(query.for_retry())

    async def _process_offline(self, query: DataQuery) -> dict[str, Any]:
        if not query.apply_offline:
            raise ReplicaError("The applyOffline must be false when working offline.")
        try:
            return await self.processor.process_query(query)
        except ReplicaError as e:
            if e.code == ErrorCode.GENERAL:
                raise ReplicaError(e.message, ErrorCode.GENERAL_DATABASE_ERROR) from e
            raise
        except (ValueError, TypeError, KeyError) as e:
            raise ReplicaError(str(e), ErrorCode.GENERAL_DATABASE_ERROR) from e

    async def _send_online(self, query: DataQuery) -> dict[str, Any]:
        response = await self.transport.send(build_request(query))

        if query.apply_offline and self.settings.offline_storage.auto_sync:
            try:
                await self._apply_offline(query, response)
            except ReplicaError as e:
                if e.code != ErrorCode.OPERATION_NOT_SUPPORTED_OFFLINE:
                    raise
                logger.debug(f"Not mirrored offline: {e.message}")
        return response

    async def _apply_offline(self, query: DataQuery, response: dict[str, Any]) -> None:
        """Mirror a successful online operation into the offline store."""
        operation = query.operation
        result = response.get("result")

        if operation in (Operation.READ, Operation.READ_BY_ID):
            if not result:
                return
            mirror = dataclasses.replace(
                query, operation=Operation.CREATE, data=result, is_sync=True, keep_dirty=True
            )
        elif operation == Operation.CREATE:
            mirror = dataclasses.replace(query, data=_merge_created(query.data, result), is_sync=True)
        elif operation in (Operation.UPDATE, Operation.RAW_UPDATE):
            data = _with_modified_at(query.data or {}, response.get(MODIFIED_AT_FIELD))
            mirror = dataclasses.replace(query, data=data, is_sync=True)
        elif operation in (Operation.DESTROY, Operation.DESTROY_SINGLE):
            mirror = dataclasses.replace(query, is_sync=True)
        else:
            return

        await self.processor.process_query(mirror)


def _merge_created(data: Any, result: Any) -> Any:
    """Combine the create payload with the server-assigned Id and timestamps."""
    if isinstance(data, list):
        return [_merge_created(item, created) for item, created in zip(data, result or [])]

    merged = dict(data or {})
    merged.update(result or {})
    if CREATED_AT_FIELD in merged:
        merged.setdefault(MODIFIED_AT_FIELD, merged[CREATED_AT_FIELD])
    return merged


def _with_modified_at(data: dict[str, Any], modified_at: Any) -> dict[str, Any]:
    if modified_at is None:
        return data
    if any(key.startswith("$") for key in data):
        updated = dict(data)
        updated["$set"] = dict(data.get("$set") or {}, **{MODIFIED_AT_FIELD: modified_at})
        return updated
    return dict(data, **{MODIFIED_AT_FIELD: modified_at})
