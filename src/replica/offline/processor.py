"""
Offline Query Processor.

Executes data queries against the local store. Each content type is kept as
one JSON object mapping item Id to item, passed through the encryption
provider on its way to and from the store.

Writes made by the application mark items with the pending-mutation state
marker so that the sync engine can find them later. Writes made by the sync
engine itself (``is_sync=True``) describe server state and clear the marker.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import uuid
from typing import Any

from replica.constants import (
    CREATED_AT_FIELD,
    ID_FIELD,
    MODIFIED_AT_FIELD,
    OFFLINE_STATE_MARKER,
    Headers,
    is_files_type,
    is_users_type,
)
from replica.errors import ErrorCode, ReplicaError, offline_not_supported
from replica.offline.filtering import apply_query, matches_filter, unsupported_operators
from replica.schema.item import Item, item_state, strip_state, utc_now_iso
from replica.schema.query import DataQuery, Operation
from replica.schema.sync import ItemState
from replica.storage.base import BaseStore
from replica.storage.encryption import EncryptionProvider, PassthroughEncryption

logger = logging.getLogger(__name__)

SUPPORTED_UPDATE_OPERATORS = frozenset({"$set", "$unset", "$inc"})

Collection = dict[str, Item]


class OfflineQueryProcessor:
    """Runs ``DataQuery`` objects against the local store."""

    def __init__(self, store: BaseStore, encryption: EncryptionProvider | None = None):
        self.store = store
        self.encryption = encryption or PassthroughEncryption()
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _lock_for(self, content_type: str) -> asyncio.Lock:
        lock = self._locks.get(content_type)
        if lock is None:
            lock = self._locks[content_type] = asyncio.Lock()
        return lock

    def _decode(self, blob: str | None) -> Collection:
        if not blob:
            return {}
        return json.loads(self.encryption.decrypt(blob))

    async def _load(self, content_type: str) -> Collection:
        return self._decode(await self.store.get_data(content_type))

    async def _persist(self, content_type: str, collection: Collection) -> None:
        blob = json.dumps(collection, default=str)
        await self.store.save_data(content_type, self.encryption.encrypt(blob))

    async def get_all_collections(self) -> dict[str, list[Item]]:
        """Every persisted collection, state markers included. Items are copies."""
        blobs = await self.store.get_all_data()
        return {
            content_type: [copy.deepcopy(item) for item in self._decode(blob).values()]
            for content_type, blob in blobs.items()
        }

    async def get_dirty_items(self) -> dict[str, list[Item]]:
        """Items with a pending mutation, grouped by content type."""
        dirty: dict[str, list[Item]] = {}
        for content_type, items in (await self.get_all_collections()).items():
            pending = [item for item in items if item_state(item)]
            if pending:
                dirty[content_type] = pending
        return dirty

    async def purge(self, content_type: str) -> None:
        async with self._lock_for(content_type):
            await self.store.purge(content_type)

    async def purge_all(self) -> None:
        await self.store.purge_all()

    # ------------------------------------------------------------------
    # Capability checks
    # ------------------------------------------------------------------

    @staticmethod
    def should_autogenerate_id(content_type: str) -> bool:
        """Whether locally generated Ids are kept by the server."""
        return not (is_users_type(content_type) or is_files_type(content_type))

    def unsupported_reason(self, query: DataQuery) -> str | None:
        """Why ``query`` cannot run offline, or None when it can."""
        if query.operation in (Operation.SET_ACL, Operation.SET_OWNER):
            return f"operation {query.operation.value}"
        if query.get_header(Headers.POWER_FIELDS):
            return "power fields"
        if query.get_header(Headers.SINGLE_FIELD):
            return "single field selection"

        if query.operation != Operation.READ_BY_ID:
            operators = unsupported_operators(query.get_query_parameters()["filter"])
            if operators:
                return f"filter operators {', '.join(sorted(set(operators)))}"

        if query.operation in (Operation.UPDATE, Operation.RAW_UPDATE) and isinstance(query.data, dict):
            update_ops = [
                key for key in query.data
                if key.startswith("$") and key not in SUPPORTED_UPDATE_OPERATORS
            ]
            if update_ops:
                return f"update operators {', '.join(sorted(update_ops))}"
        return None

    def is_query_unsupported_offline(self, query: DataQuery) -> bool:
        return self.unsupported_reason(query) is not None

    # ------------------------------------------------------------------
    # Query execution
    # ------------------------------------------------------------------

    async def process_query(self, query: DataQuery) -> dict[str, Any]:
        """Execute ``query`` offline and return a response shaped like the server's."""
        reason = self.unsupported_reason(query)
        if reason:
            raise offline_not_supported(reason)

        operation = query.operation
        if operation == Operation.READ:
            return await self._read(query)
        if operation == Operation.READ_BY_ID:
            return await self._read_by_id(query)
        if operation == Operation.COUNT:
            return await self._count(query)
        if operation == Operation.CREATE:
            return await self._create(query)
        if operation in (Operation.UPDATE, Operation.RAW_UPDATE):
            return await self._update(query)
        if operation in (Operation.DESTROY, Operation.DESTROY_SINGLE):
            return await self._destroy(query)

        raise offline_not_supported(f"operation {operation.value}")

    def _visible(self, collection: Collection) -> list[Item]:
        return [
            item for item in collection.values()
            if item_state(item) != ItemState.DELETED.value
        ]

    async def _read(self, query: DataQuery) -> dict[str, Any]:
        params = query.get_query_parameters()
        items = self._visible(await self._load(query.collection_name))
        matching = [item for item in items if matches_filter(item, params["filter"])]
        page = apply_query(
            matching,
            sort=params["sort"],
            skip=params["skip"],
            take=params["limit"],
            select=params["select"],
        )
        return {"result": [strip_state(item) for item in page], "count": len(matching)}

    async def _read_by_id(self, query: DataQuery) -> dict[str, Any]:
        collection = await self._load(query.collection_name)
        item = collection.get(str(query.item_id))
        if item is None or item_state(item) == ItemState.DELETED.value:
            raise ReplicaError.from_code(ErrorCode.ITEM_NOT_FOUND)
        return {"result": strip_state(item)}

    async def _count(self, query: DataQuery) -> dict[str, Any]:
        params = query.get_query_parameters()
        items = self._visible(await self._load(query.collection_name))
        return {"result": sum(1 for item in items if matches_filter(item, params["filter"]))}

    def _target_filter(self, query: DataQuery) -> dict[str, Any]:
        if query.item_id is not None:
            return {ID_FIELD: query.item_id}
        return query.get_query_parameters()["filter"] or {}

    async def _create(self, query: DataQuery) -> dict[str, Any]:
        content_type = query.collection_name
        payload = query.data
        many = isinstance(payload, list)
        new_items = payload if many else [payload]
        now = utc_now_iso()
        created: list[dict[str, Any]] = []

        async with self._lock_for(content_type):
            collection = await self._load(content_type)
            for data in new_items:
                item = copy.deepcopy(data)
                if not item.get(ID_FIELD):
                    item[ID_FIELD] = str(uuid.uuid4())
                item_key = str(item[ID_FIELD])
                existing = collection.get(item_key)

                if query.is_sync:
                    if query.keep_dirty and existing is not None and item_state(existing):
                        logger.debug(f"Kept pending local changes of {content_type}/{item_key}")
                        continue
                    if not query.preserve_state:
                        item.pop(OFFLINE_STATE_MARKER, None)
                else:
                    if existing is not None and item_state(existing) != ItemState.DELETED.value:
                        raise ReplicaError(
                            f"An item with Id {item_key} already exists",
                            ErrorCode.GENERAL_DATABASE_ERROR,
                        )
                    item.setdefault(CREATED_AT_FIELD, now)
                    item.setdefault(MODIFIED_AT_FIELD, item[CREATED_AT_FIELD])
                    if existing is not None:
                        # Re-creating an item deleted locally but still on the server
                        item[OFFLINE_STATE_MARKER] = ItemState.MODIFIED.value
                    else:
                        item[OFFLINE_STATE_MARKER] = ItemState.CREATED.value

                collection[item_key] = item
                created.append({ID_FIELD: item[ID_FIELD], CREATED_AT_FIELD: item.get(CREATED_AT_FIELD)})
            await self._persist(content_type, collection)

        return {"result": created if many else created[0]}

    def _apply_update(self, item: Item, data: dict[str, Any]) -> None:
        if not any(key.startswith("$") for key in data):
            data = {"$set": data}

        for field_name, value in (data.get("$set") or {}).items():
            if field_name == ID_FIELD:
                continue
            item[field_name] = copy.deepcopy(value)
        for field_name in data.get("$unset") or {}:
            item.pop(field_name, None)
        for field_name, amount in (data.get("$inc") or {}).items():
            item[field_name] = (item.get(field_name) or 0) + amount

    async def _update(self, query: DataQuery) -> dict[str, Any]:
        content_type = query.collection_name
        filter_expr = self._target_filter(query)
        data = query.data or {}
        last_modified = None
        updated = 0

        async with self._lock_for(content_type):
            collection = await self._load(content_type)
            for item in self._visible(collection):
                if not matches_filter(item, filter_expr):
                    continue

                # Offline edits keep the last server ModifiedAt for conflict detection
                server_modified_at = item.get(MODIFIED_AT_FIELD)
                self._apply_update(item, data)

                if query.is_sync:
                    if not query.preserve_state:
                        item.pop(OFFLINE_STATE_MARKER, None)
                else:
                    item[MODIFIED_AT_FIELD] = server_modified_at
                    if item_state(item) != ItemState.CREATED.value:
                        item[OFFLINE_STATE_MARKER] = ItemState.MODIFIED.value

                last_modified = item.get(MODIFIED_AT_FIELD)
                updated += 1

            if updated:
                await self._persist(content_type, collection)

        return {"result": updated, MODIFIED_AT_FIELD: last_modified}

    async def _destroy(self, query: DataQuery) -> dict[str, Any]:
        content_type = query.collection_name
        filter_expr = self._target_filter(query)
        removed = 0

        async with self._lock_for(content_type):
            collection = await self._load(content_type)
            candidates = list(collection.values()) if query.is_sync else self._visible(collection)
            for item in candidates:
                if not matches_filter(item, filter_expr):
                    continue

                key = str(item[ID_FIELD])
                if query.is_sync or item_state(item) == ItemState.CREATED.value:
                    del collection[key]
                else:
                    item[OFFLINE_STATE_MARKER] = ItemState.DELETED.value
                removed += 1

            if removed:
                await self._persist(content_type, collection)

        if query.operation == Operation.DESTROY_SINGLE and not removed and not query.is_sync:
            raise ReplicaError.from_code(ErrorCode.ITEM_NOT_FOUND)
        return {"result": removed}
