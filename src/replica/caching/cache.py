"""
Cache Engine.

Cacheable reads are answered from the offline store while the data they
produced is fresh. The cache itself only stores *when* a result set was
downloaded: one ``{hash: {"cachedAt": ms}}`` table per content type, where
the hash identifies a query (stable JSON of its parameters) or a single item
(its Id). Item bodies always come from the offline store.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from replica.config import CachingSettings
from replica.constants import ID_FIELD, Headers
from replica.offline.processor import OfflineQueryProcessor
from replica.schema.query import CACHEABLE_OPERATIONS, DataQuery, Operation
from replica.storage.base import BaseStore

logger = logging.getLogger(__name__)

Sender = Callable[[DataQuery], Awaitable[dict[str, Any]]]


def hash_query_parameters(params: Any) -> str:
    """Deterministic serialization; key order does not matter."""
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


class CacheIndex:
    """
    Freshness table for every content type.

    Loaded from the store on first access and kept in memory afterwards.
    ``invalidate`` drops the in-memory copy so the next access reloads it.
    """

    def __init__(self, store: BaseStore):
        self.store = store
        self._tables: dict[str, dict[str, dict[str, int]]] | None = None

    def invalidate(self) -> None:
        self._tables = None

    async def _load(self) -> dict[str, dict[str, dict[str, int]]]:
        if self._tables is None:
            blobs = await self.store.get_all_data()
            self._tables = {ct: json.loads(blob) for ct, blob in blobs.items() if blob}
        return self._tables

    async def table(self, content_type: str) -> dict[str, dict[str, int]]:
        """A copy of the table for ``content_type``."""
        return dict((await self._load()).get(content_type, {}))

    async def lookup(self, content_type: str, hash_key: str) -> dict[str, int] | None:
        return (await self._load()).get(content_type, {}).get(hash_key)

    async def _save(self, content_type: str) -> None:
        tables = await self._load()
        await self.store.save_data(content_type, json.dumps(tables.get(content_type, {})))

    async def record(self, content_type: str, hash_keys: Iterable[str], cached_at: int) -> None:
        """Mark every hash in ``hash_keys`` as downloaded at ``cached_at``."""
        table = (await self._load()).setdefault(content_type, {})
        for hash_key in hash_keys:
            table[hash_key] = {"cachedAt": cached_at}
        await self._save(content_type)

    async def remove(self, content_type: str, hash_key: str) -> None:
        table = (await self._load()).get(content_type)
        if table is not None and table.pop(hash_key, None) is not None:
            await self._save(content_type)

    async def clear(self, content_type: str) -> None:
        await self.store.purge(content_type)
        if self._tables is not None:
            self._tables.pop(content_type, None)

    async def clear_all(self) -> None:
        await self.store.purge_all()
        self.invalidate()


class CacheEngine:
    """Routes cacheable reads between the network and the offline store."""

    def __init__(
        self,
        settings: CachingSettings,
        index: CacheIndex,
        processor: OfflineQueryProcessor,
        send: Sender,
        offline_storage_enabled: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.index = index
        self.processor = processor
        self._send = send
        self.offline_storage_enabled = offline_storage_enabled
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def is_query_unsupported(self, query: DataQuery) -> bool:
        if query.get_header(Headers.POWER_FIELDS):
            return True
        return self.processor.is_query_unsupported_offline(query)

    def _type_enabled(self, content_type: str) -> bool:
        type_settings = self.settings.for_type(content_type)
        return type_settings is None or type_settings.enabled

    def should_skip_cache(self, query: DataQuery) -> bool:
        return (
            query.operation not in CACHEABLE_OPERATIONS
            or not self._type_enabled(query.collection_name)
            or query.ignore_cache
            or self.is_query_unsupported(query)
        )

    def hash_for_query(self, query: DataQuery) -> str:
        if query.operation == Operation.READ_BY_ID:
            return str(query.item_id)
        return hash_query_parameters(query.get_query_parameters())

    def effective_max_age(self, query: DataQuery) -> int:
        """Max age in ms: per call, then per content type, then global."""
        if query.max_age is not None:
            return int(query.max_age)
        type_settings = self.settings.for_type(query.collection_name)
        if type_settings is not None and type_settings.max_age is not None:
            return int(type_settings.max_age * 60 * 1000)
        return self.settings.max_age_ms

    def is_expired(self, query: DataQuery, entry: dict[str, int]) -> bool:
        return entry["cachedAt"] + self.effective_max_age(query) <= self._now_ms()

    async def process_query(self, query: DataQuery) -> dict[str, Any]:
        """Answer ``query`` from the cache when possible, else from the network."""
        if self.should_skip_cache(query):
            if (
                query.ignore_cache
                and query.operation in CACHEABLE_OPERATIONS
                and self._type_enabled(query.collection_name)
                and not self.is_query_unsupported(query)
            ):
                # Bypass the cached copy but refresh it with the response
                return await self._fetch_and_cache(query, self.hash_for_query(query))
            return await self._send(query)

        content_type = query.collection_name
        hash_key = self.hash_for_query(query)
        entry = await self.index.lookup(content_type, hash_key)
        if entry is None:
            logger.debug(f"Cache miss for {content_type}")
            return await self._fetch_and_cache(query, hash_key)

        if self.is_expired(query, entry) and not query.force_cache:
            logger.debug(f"Cache entry expired for {content_type}")
            await self.index.remove(content_type, hash_key)
            return await self._fetch_and_cache(query, hash_key)

        logger.debug(f"Cache hit for {content_type}")
        return await self.processor.process_query(query)

    async def _fetch_and_cache(self, query: DataQuery, hash_key: str) -> dict[str, Any]:
        response = await self._send(query)

        # The offline store cannot answer counts for data it never downloaded
        if query.operation == Operation.COUNT:
            return response

        result = response.get("result")
        if isinstance(result, dict):
            result = [result]
        hashes = [str(item[ID_FIELD]) for item in result or [] if isinstance(item, dict) and item.get(ID_FIELD)]
        hashes.append(hash_key)
        await self.index.record(query.collection_name, hashes, self._now_ms())
        return response

    async def clear(self, content_type: str) -> None:
        """Forget the cache for one content type. Safe to call repeatedly."""
        await self.index.clear(content_type)
        if not self.offline_storage_enabled:
            await self.processor.purge(content_type)

    async def clear_all(self) -> None:
        await self.index.clear_all()
        if not self.offline_storage_enabled:
            await self.processor.purge_all()
