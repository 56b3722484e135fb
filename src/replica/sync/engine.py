"""
Synchronization Engine.

Reconciles the offline store with the server. A sync run consists of one or
more passes; each pass:

1. loads every persisted collection,
2. fetches the server counterparts of dirty items (skipped for client wins),
3. classifies dirty items into creates, updates, deletes and conflicts,
4. resolves conflicts with the configured strategy,
5. replays the queues against the server and writes the results back.

Updates and deletes are guarded by an ``{Id, ModifiedAt}`` filter. When the
server reports that no item matched, the item changed again in the meantime
and the whole pass is repeated, up to ``max_sync_passes`` times.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any

from replica.config import OfflineStorageSettings
from replica.constants import (
    CREATED_AT_FIELD,
    ID_FIELD,
    MODIFIED_AT_FIELD,
    OFFLINE_STATE_MARKER,
    SYNC_BATCH_SIZE,
    is_files_type,
)
from replica.errors import ConfigurationError, ErrorCode, ReplicaError, SyncItemError
from replica.events import EventEmitter, SyncEvent
from replica.offline.files import OfflineFiles
from replica.offline.processor import OfflineQueryProcessor
from replica.schema.item import Item, item_state, same_timestamp, strip_state
from replica.schema.query import DataQuery, Operation
from replica.schema.sync import (
    ConflictRecord,
    ConflictResolutionStrategy,
    ContentTypeConflicts,
    ContentTypeSyncData,
    FailedItemInfo,
    ItemState,
    ResolutionType,
    SyncedItemInfo,
    SyncItem,
    SyncResultInfo,
    SyncStorage,
)
from replica.sync.conflicts import ConflictResolver
from replica.transport.base import BaseTransport
from replica.transport.request import Request

logger = logging.getLogger(__name__)

Sender = Callable[[DataQuery], Awaitable[dict[str, Any]]]


def _without_id(item: Item) -> Item:
    return {key: value for key, value in item.items() if key != ID_FIELD}


class SyncEngine:
    """Drives sync runs for one client."""

    def __init__(
        self,
        processor: OfflineQueryProcessor,
        send: Sender,
        emitter: EventEmitter,
        settings: OfflineStorageSettings,
        is_online: Callable[[], bool],
        files: OfflineFiles | None = None,
        transport: BaseTransport | None = None,
    ):
        self.processor = processor
        self._send = send
        self.emitter = emitter
        self.settings = settings
        self.resolver = ConflictResolver(settings.conflicts)
        self._is_online = is_online
        self.files = files
        self.transport = transport

        self._is_synchronizing = False
        self._result: SyncResultInfo | None = None

    def is_synchronizing(self) -> bool:
        return self._is_synchronizing

    @property
    def strategy(self) -> ConflictResolutionStrategy:
        return self.settings.conflicts.strategy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sync(self) -> SyncResultInfo:
        """
        Run a full synchronization.

        Per-item failures are collected in ``failed_items`` of the returned
        result. Pass-level failures are stored in ``error``, emitted with
        ``syncEnd`` and then raised.
        """
        if self._is_synchronizing:
            raise ReplicaError.from_code(ErrorCode.SYNC_IN_PROGRESS)
        if not self._is_online():
            raise ReplicaError("Cannot synchronize while offline")

        self._is_synchronizing = True
        result = self._result = SyncResultInfo()
        logger.info(f"Sync started with strategy {self.strategy.value}")
        await self.emitter.emit(SyncEvent.SYNC_START)

        try:
            for pass_number in range(1, self.settings.max_sync_passes + 1):
                has_conflicts = await self._run_pass()
                if not has_conflicts:
                    break
                logger.info(f"New conflicts found during sync pass {pass_number}, repeating")
            else:
                raise ReplicaError.from_code(ErrorCode.NON_CONVERGENT_SYNC)
        except Exception as e:
            result.error = e
            logger.error(f"Sync failed: {e}")
            raise
        finally:
            self._is_synchronizing = False
            self._result = None
            logger.info(
                f"Sync finished: {result.synced_to_server} to server, "
                f"{result.synced_to_client} to client, "
                f"{sum(len(v) for v in result.failed_items.values())} failed"
            )
            await self.emitter.emit(SyncEvent.SYNC_END, result)

        return result

    async def get_items_for_sync(self) -> dict[str, list[dict[str, Any]]]:
        """Pending local changes as ``{content type: [{"item": ..., "action": ...}]}``."""
        dirty = await self.processor.get_dirty_items()
        return {
            content_type: [
                {"item": strip_state(item), "action": item_state(item)} for item in items
            ]
            for content_type, items in dirty.items()
        }

    # ------------------------------------------------------------------
    # Result accounting
    # ------------------------------------------------------------------

    async def _on_item_processed(
        self, item_id: Any, content_type: str, storage: SyncStorage, state: ItemState
    ) -> None:
        info = SyncedItemInfo(item_id=item_id, type=state, storage=storage, content_type=content_type)
        self._result.record_synced(info)
        await self.emitter.emit(SyncEvent.ITEM_PROCESSED, info)

    async def _on_item_failed(self, failure: SyncItemError) -> None:
        if failure.item_state == ItemState.CREATED.value and failure.items:
            item_ids = [item.get(ID_FIELD) for item in failure.items]
        else:
            item_ids = [failure.item_id]

        for item_id in item_ids:
            info = FailedItemInfo(
                item_id=item_id,
                type=ItemState(failure.item_state),
                storage=SyncStorage(failure.storage),
                content_type=failure.content_type,
                error=failure.error or failure,
            )
            logger.warning(f"Sync failed for {failure.content_type}/{item_id}: {failure.message}")
            self._result.record_failed(info)
            await self.emitter.emit(SyncEvent.ITEM_PROCESSED, info)

    def _has_failed(self, content_type: str, item: Item) -> bool:
        return self._result.has_failed(content_type, item.get(ID_FIELD))

    @staticmethod
    async def _settle(operations: Iterable[Awaitable[Any]]) -> list[Any]:
        return list(await asyncio.gather(*operations, return_exceptions=True))

    async def _handle_outcomes(self, outcomes: list[Any]) -> bool:
        """Record failures. Returns True when a replayed item hit a new conflict."""
        has_conflicts = False
        for outcome in outcomes:
            if isinstance(outcome, SyncItemError):
                if outcome.is_conflict:
                    has_conflicts = True
                else:
                    await self._on_item_failed(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
        return has_conflicts

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def _run_pass(self) -> bool:
        collections = await self.processor.get_all_collections()
        dirty = {
            content_type: [item for item in items if item_state(item)]
            for content_type, items in collections.items()
        }
        dirty = {content_type: items for content_type, items in dirty.items() if items}
        if not dirty:
            logger.debug("No pending changes")
            return False

        if self.strategy == ConflictResolutionStrategy.CLIENT_WINS:
            sync_data = self._client_wins_sync_data(dirty)
            client_wins = True
        else:
            sync_data = await self._standard_sync_data(dirty)
            client_wins = False

        per_type = await asyncio.gather(
            *(
                self._replay_content_type(content_type, data, client_wins)
                for content_type, data in sync_data.items()
                if not data.is_empty()
            )
        )
        return await self._handle_outcomes([o for outcomes in per_type for o in outcomes])

    def _client_wins_sync_data(self, dirty: dict[str, list[Item]]) -> dict[str, ContentTypeSyncData]:
        sync_data: dict[str, ContentTypeSyncData] = {}
        for content_type, items in dirty.items():
            data = sync_data[content_type] = ContentTypeSyncData()
            for item in items:
                state = item.pop(OFFLINE_STATE_MARKER)
                sync_item = SyncItem(remote_item=item, resulting_item=item)
                if state == ItemState.CREATED.value:
                    data.created_items.append(sync_item)
                elif state == ItemState.MODIFIED.value:
                    data.modified_items.append(sync_item)
                elif state == ItemState.DELETED.value:
                    data.deleted_items.append(sync_item)
        return sync_data

    # ------------------------------------------------------------------
    # Collect and classify
    # ------------------------------------------------------------------

    async def _fetch_batch(self, content_type: str, batch_ids: list[Any]) -> list[Item]:
        query = DataQuery(
            collection_name=content_type,
            operation=Operation.READ,
            filter={ID_FIELD: {"$in": batch_ids}},
            is_sync=True,
            apply_offline=False,
        )
        response = await self._send(query)
        return response.get("result") or []

    async def _fetch_server_items(self, content_type: str, items: list[Item]) -> dict[Any, Item]:
        """Server counterparts of ``items``, requested in batches of ``SYNC_BATCH_SIZE`` Ids."""
        if self.processor.should_autogenerate_id(content_type):
            ids = [item[ID_FIELD] for item in items]
        else:
            # Temporary local Ids do not exist on the server yet
            ids = [item[ID_FIELD] for item in items if item_state(item) != ItemState.CREATED.value]

        batches = [ids[i:i + SYNC_BATCH_SIZE] for i in range(0, len(ids), SYNC_BATCH_SIZE)]
        logger.debug(f"Fetching {len(ids)} server item(s) of {content_type} in {len(batches)} batch(es)")
        responses = await asyncio.gather(*(self._fetch_batch(content_type, batch) for batch in batches))

        server_items: dict[Any, Item] = {}
        for batch_items in responses:
            for server_item in batch_items:
                server_items[server_item[ID_FIELD]] = server_item
        return server_items

    async def _standard_sync_data(self, dirty: dict[str, list[Item]]) -> dict[str, ContentTypeSyncData]:
        content_types = list(dirty)
        fetched = await asyncio.gather(
            *(self._fetch_server_items(content_type, dirty[content_type]) for content_type in content_types)
        )

        sync_data: dict[str, ContentTypeSyncData] = {}
        conflicts: list[ContentTypeConflicts] = []
        for content_type, server_items in zip(content_types, fetched):
            data, type_conflicts = await self._classify(content_type, dirty[content_type], server_items)
            sync_data[content_type] = data
            conflicts.append(type_conflicts)

        await self.resolver.apply(conflicts)
        await self._merge_resolved_conflicts(conflicts, sync_data)
        return sync_data

    async def _classify(
        self, content_type: str, offline_items: list[Item], server_items: dict[Any, Item]
    ) -> tuple[ContentTypeSyncData, ContentTypeConflicts]:
        data = ContentTypeSyncData()
        conflicts = ContentTypeConflicts(content_type_name=content_type)

        for offline_item in offline_items:
            state = offline_item.pop(OFFLINE_STATE_MARKER)
            item_id = offline_item[ID_FIELD]
            server_item = server_items.get(item_id)

            if server_item is None:
                if state == ItemState.MODIFIED.value:
                    # Modified locally, deleted on the server
                    conflicts.conflicting_items.append(ConflictRecord(offline_item, None))
                elif state == ItemState.DELETED.value:
                    await self._purge_orphan(content_type, item_id)
                else:
                    data.created_items.append(SyncItem(remote_item=None, resulting_item=offline_item))
                continue

            if state == ItemState.CREATED.value:
                await self._fail_duplicate(content_type, item_id)
                continue

            unchanged_on_server = same_timestamp(
                server_item.get(MODIFIED_AT_FIELD), offline_item.get(MODIFIED_AT_FIELD)
            )
            if not unchanged_on_server:
                client_item = None if state == ItemState.DELETED.value else offline_item
                conflicts.conflicting_items.append(ConflictRecord(client_item, server_item))
            elif state == ItemState.DELETED.value:
                data.deleted_items.append(SyncItem(remote_item=server_item, resulting_item=offline_item))
            else:
                data.modified_items.append(SyncItem(remote_item=server_item, resulting_item=offline_item))

        return data, conflicts

    async def _purge_orphan(self, content_type: str, item_id: Any) -> None:
        """Drop a local delete whose item no longer exists on the server."""
        try:
            await self._purge_by_id(content_type, item_id)
        except Exception as e:
            await self._on_item_failed(SyncItemError(
                item_state=ItemState.DELETED.value,
                content_type=content_type,
                storage=SyncStorage.CLIENT.value,
                error=e,
                item_id=item_id,
            ))
            return
        await self._on_item_processed(item_id, content_type, SyncStorage.CLIENT, ItemState.DELETED)

    async def _fail_duplicate(self, content_type: str, item_id: Any) -> None:
        """A locally created item whose Id already exists on the server."""
        if self._result.has_failed(content_type, item_id):
            return
        error =ReplicaError.from_code(ErrorCode.SYNC_ERROR)
        if self.strategy == ConflictResolutionStrategy.CUSTOM:
            targets = [
                (ItemState.MODIFIED, SyncStorage.CLIENT),
                (ItemState.MODIFIED, SyncStorage.SERVER),
            ]
        else:
            targets = [(ItemState.CREATED, SyncStorage.CLIENT)]

        for state, storage in targets:
            await self._on_item_failed(SyncItemError(
                item_state=state.value,
                content_type=content_type,
                storage=storage.value,
                error=error,
                item_id=item_id,
            ))

    # ------------------------------------------------------------------
    # Conflict merging
    # ------------------------------------------------------------------

    async def _merge_resolved_conflicts(
        self, conflicts: list[ContentTypeConflicts], sync_data: dict[str, ContentTypeSyncData]
    ) -> None:
        local_operations: list[Awaitable[Any]] = []

        for type_conflicts in conflicts:
            content_type = type_conflicts.content_type_name
            data = sync_data[content_type]
            for record in type_conflicts.conflicting_items:
                resolution = record.result.resolution_type
                if resolution == ResolutionType.KEEP_SERVER:
                    local_operations.append(self._handle_keep_server(content_type, record, data))
                elif resolution == ResolutionType.KEEP_CLIENT:
                    self._handle_keep_client(record, data)
                elif resolution == ResolutionType.CUSTOM:
                    if is_files_type(content_type):
                        raise ReplicaError.from_code(ErrorCode.CUSTOM_FILE_SYNC_NOT_SUPPORTED)
                    local_operations.extend(self._handle_custom(content_type, record, data))
                else:
                    # Skipped items stay dirty until a later sync
                    logger.debug(f"Conflict left unresolved in {content_type}")

        await self._handle_outcomes(await self._settle(local_operations))

    async def _handle_keep_server(
        self, content_type: str, record: ConflictRecord, data: ContentTypeSyncData
    ) -> None:
        server_item, client_item = record.server_item, record.client_item

        if server_item is not None:
            # Replaces the local copy entirely, also when it was deleted locally
            query = DataQuery(content_type, Operation.CREATE, data=copy.deepcopy(server_item), is_sync=True)
            state = ItemState.MODIFIED if client_item is not None else ItemState.CREATED
            item_id = server_item[ID_FIELD]
        elif client_item is not None:
            query = DataQuery(
                content_type, Operation.DESTROY_SINGLE, item_id=client_item[ID_FIELD], is_sync=True
            )
            state = ItemState.DELETED
            item_id = client_item[ID_FIELD]
        else:
            raise ConfigurationError(
                'Both server item and client item are not set when syncing data with "keepServer" resolution.'
            )

        try:
            await self.processor.process_query(query)
        except Exception as e:
            raise SyncItemError(
                item_state=state.value,
                content_type=content_type,
                storage=SyncStorage.CLIENT.value,
                error=e,
                item_id=item_id,
            ) from e

        await self._on_item_processed(item_id, content_type, SyncStorage.CLIENT, state)
        if state == ItemState.MODIFIED and is_files_type(content_type):
            # File content has to follow the server metadata
            data.modified_items.append(SyncItem(
                remote_item=server_item,
                resulting_item=copy.deepcopy(server_item),
                resolution_type=ResolutionType.KEEP_SERVER,
            ))

    def _handle_keep_client(self, record: ConflictRecord, data: ContentTypeSyncData) -> None:
        server_item, client_item = record.server_item, record.client_item

        if server_item is not None and client_item is not None:
            resulting = dict(client_item, **{MODIFIED_AT_FIELD: server_item.get(MODIFIED_AT_FIELD)})
            queue = data.modified_items
        elif server_item is not None:
            resulting = server_item
            queue = data.deleted_items
        elif client_item is not None:
            resulting = client_item
            queue = data.created_items
        else:
            raise ConfigurationError(
                'Both server item and client item are not set when syncing data with "keepClient" resolution.'
            )

        queue.append(SyncItem(
            remote_item=server_item,
            resulting_item=resulting,
            resolution_type=ResolutionType.KEEP_CLIENT,
        ))

    def _handle_custom(
        self, content_type: str, record: ConflictRecord, data: ContentTypeSyncData
    ) -> list[Awaitable[Any]]:
        server_item, client_item = record.server_item, record.client_item
        custom_item = record.result.item
        if custom_item is not None:
            custom_item = {
                key: value for key, value in copy.deepcopy(custom_item).items()
                if key not in (CREATED_AT_FIELD, MODIFIED_AT_FIELD)
            }

        operations: list[Awaitable[Any]] = []
        if server_item is not None and custom_item is not None:
            # Bring the server version in locally; the replayed update completes it
            operations.append(self._store_server_copy(content_type, server_item))

        if server_item is not None and custom_item is not None and client_item is None:
            custom_item[ID_FIELD] = server_item[ID_FIELD]
            data.modified_items.append(SyncItem(server_item, custom_item, is_custom=True))
        elif server_item is not None and custom_item is None:
            data.deleted_items.append(SyncItem(server_item, server_item, is_custom=True))
        elif server_item is None and custom_item is not None and client_item is not None:
            custom_item[ID_FIELD] = client_item[ID_FIELD]
            operations.append(self.processor.process_query(DataQuery(
                content_type,
                Operation.UPDATE,
                item_id=client_item[ID_FIELD],
                data=_without_id(custom_item),
                is_sync=True,
                preserve_state=True,
            )))
            data.created_items.append(SyncItem(None, custom_item, is_custom=True))
        elif server_item is None and custom_item is None:
            operations.append(self._purge_orphan(content_type, client_item[ID_FIELD]))
        else:
            custom_item[ID_FIELD] = server_item[ID_FIELD]
            data.modified_items.append(SyncItem(server_item, custom_item, is_custom=True))

        return operations

    async def _store_server_copy(self, content_type: str, server_item: Item) -> None:
        try:
            await self.processor.process_query(DataQuery(
                content_type,
                Operation.CREATE,
                data=copy.deepcopy(server_item),
                is_sync=True,
                preserve_state=True,
            ))
        except Exception as e:
            raise SyncItemError(
                item_state=ItemState.CREATED.value,
                content_type=content_type,
                storage=SyncStorage.CLIENT.value,
                error=e,
                item_id=server_item[ID_FIELD],
            ) from e
        await self._on_item_processed(server_item[ID_FIELD], content_type, SyncStorage.CLIENT, ItemState.CREATED)

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def _replay_content_type(
        self, content_type: str, data: ContentTypeSyncData, client_wins: bool
    ) -> list[Any]:
        """Creates, then updates, then deletes. Items within a step run concurrently."""
        outcomes: list[Any] = []
        is_files = is_files_type(content_type)

        created = [s for s in data.created_items if not self._has_failed(content_type, s.resulting_item)]
        if created:
            if is_files:
                outcomes += await self._settle(self._create_file(content_type, s) for s in created)
            else:
                outcomes += await self._settle([self._create_batch(content_type, created)])

        modified = [s for s in data.modified_items if not self._has_failed(content_type, s.resulting_item)]
        if modified:
            if client_wins:
                update = self._update_file_client_wins if is_files else self._update_item_client_wins
            else:
                update = self._update_file if is_files else self._update_item
            outcomes += await self._settle(update(content_type, s) for s in modified)

        deleted = [s for s in data.deleted_items if not self._has_failed(content_type, s.resulting_item)]
        if deleted:
            delete = self._delete_item_client_wins if client_wins else self._delete_item
            outcomes += await self._settle(delete(content_type, s) for s in deleted)

        return outcomes

    def _failure(
        self, state: ItemState, content_type: str, storage: SyncStorage, error: BaseException, **kwargs: Any
    ) -> SyncItemError:
        return SyncItemError(
            item_state=state.value,
            content_type=content_type,
            storage=storage.value,
            error=error,
            **kwargs,
        )

    async def _purge_by_id(self, content_type: str, item_id: Any) -> None:
        await self.processor.process_query(
            DataQuery(content_type, Operation.DESTROY_SINGLE, item_id=item_id, is_sync=True)
        )

    async def _sync_local_update(self, content_type: str, item: Item, modified_at: Any) -> None:
        updated = dict(item)
        if modified_at is not None:
            updated[MODIFIED_AT_FIELD] = modified_at
        await self.processor.process_query(DataQuery(
            content_type,
            Operation.UPDATE,
            item_id=item[ID_FIELD],
            data=_without_id(updated),
            is_sync=True,
        ))

    async def _create_batch(self, content_type: str, sync_items: list[SyncItem]) -> None:
        """One server create for every new item of a content type."""
        originals = [s.resulting_item for s in sync_items]
        items = [copy.deepcopy(item) for item in originals]

        temp_ids: list[Any] = []
        if not self.processor.should_autogenerate_id(content_type):
            temp_ids = [item.pop(ID_FIELD, None) for item in items]

        try:
            response = await self._send(DataQuery(
                content_type, Operation.CREATE, data=items, is_sync=True, apply_offline=False
            ))
        except Exception as e:
            raise self._failure(ItemState.CREATED, content_type, SyncStorage.SERVER, e, items=originals) from e

        created = response.get("result") or []
        if isinstance(created, dict):
            created = [created]
        for item, server_fields in zip(items, created):
            item[ID_FIELD] = server_fields[ID_FIELD]
            item[CREATED_AT_FIELD] = item[MODIFIED_AT_FIELD] = server_fields.get(CREATED_AT_FIELD)

        for sync_item, item in zip(sync_items, items):
            if sync_item.is_custom:
                await self._on_item_processed(item[ID_FIELD], content_type, SyncStorage.CLIENT, ItemState.MODIFIED)

        try:
            await self.processor.process_query(DataQuery(content_type, Operation.CREATE, data=items, is_sync=True))
        except Exception as e:
            raise self._failure(ItemState.CREATED, content_type, SyncStorage.CLIENT, e, items=items) from e

        for item in items:
            await self._on_item_processed(item[ID_FIELD], content_type, SyncStorage.SERVER, ItemState.CREATED)

        new_ids = {item[ID_FIELD] for item in items}
        stale_ids = [temp_id for temp_id in temp_ids if temp_id is not None and temp_id not in new_ids]
        if stale_ids:
            try:
                await self.processor.process_query(DataQuery(
                    content_type, Operation.DESTROY, filter={ID_FIELD: {"$in": stale_ids}}, is_sync=True
                ))
            except Exception as e:
                raise self._failure(ItemState.CREATED, content_type, SyncStorage.CLIENT, e, items=items) from e

    async def _update_item(self, content_type: str, sync_item: SyncItem) -> None:
        """Guarded update: only applies if the server copy is still the one we compared against."""
        item = strip_state(sync_item.resulting_item)
        item_id = item[ID_FIELD]
        guard = {ID_FIELD: item_id, MODIFIED_AT_FIELD: (sync_item.remote_item or {}).get(MODIFIED_AT_FIELD)}

        try:
            response = await self._send(DataQuery(
                content_type,
                Operation.UPDATE,
                filter=guard,
                data={"$set": _without_id(item)},
                is_sync=True,
                apply_offline=False,
            ))
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.SERVER, e, item_id=item_id) from e

        if response.get("result") != 1:
            raise self._failure(
                ItemState.MODIFIED,
                content_type,
                SyncStorage.SERVER,
                ReplicaError.from_code(ErrorCode.SYNC_CONFLICT),
                item_id=item_id,
            )

        await self._on_item_processed(item_id, content_type, SyncStorage.SERVER, ItemState.MODIFIED)
        try:
            await self._sync_local_update(content_type, item, response.get(MODIFIED_AT_FIELD))
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.CLIENT, e, item_id=item_id) from e

        if sync_item.is_custom and not self._result.has_synced(content_type, item_id, SyncStorage.CLIENT):
            await self._on_item_processed(item_id, content_type, SyncStorage.CLIENT, ItemState.MODIFIED)

    async def _update_item_client_wins(self, content_type: str, sync_item: SyncItem) -> None:
        item = strip_state(sync_item.resulting_item)
        item_id = item.get(ID_FIELD)
        if not item_id:
            raise ReplicaError("When updating an item it must have an Id field.")

        try:
            response = await self._send(DataQuery(
                content_type,
                Operation.UPDATE,
                item_id=item_id,
                data=_without_id(item),
                is_sync=True,
                apply_offline=False,
            ))
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.SERVER, e, item_id=item_id) from e

        await self._on_item_processed(item_id, content_type, SyncStorage.SERVER, ItemState.MODIFIED)
        try:
            await self._sync_local_update(content_type, item, response.get(MODIFIED_AT_FIELD))
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.CLIENT, e, item_id=item_id) from e

    async def _delete_item(self, content_type: str, sync_item: SyncItem) -> None:
        item = sync_item.resulting_item
        item_id = item[ID_FIELD]
        guard = {ID_FIELD: item_id, MODIFIED_AT_FIELD: (sync_item.remote_item or {}).get(MODIFIED_AT_FIELD)}

        try:
            response = await self._send(DataQuery(
                content_type, Operation.DESTROY, filter=guard, is_sync=True, apply_offline=False
            ))
        except Exception as e:
            raise self._failure(ItemState.DELETED, content_type, SyncStorage.SERVER, e, item_id=item_id) from e

        if response.get("result") != 1:
            raise self._failure(
                ItemState.DELETED,
                content_type,
                SyncStorage.SERVER,
                ReplicaError.from_code(ErrorCode.SYNC_CONFLICT),
                item_id=item_id,
            )

        await self._on_item_processed(item_id, content_type, SyncStorage.SERVER, ItemState.DELETED)
        await self._purge_local_copy(content_type, item_id)
        if sync_item.is_custom:
            await self._on_item_processed(item_id, content_type, SyncStorage.CLIENT, ItemState.DELETED)

    async def _delete_item_client_wins(self, content_type: str, sync_item: SyncItem) -> None:
        item_id = sync_item.resulting_item.get(ID_FIELD)
        if not item_id:
            raise ReplicaError("When deleting an item it must have an Id field.")

        try:
            await self._send(DataQuery(
                content_type, Operation.DESTROY_SINGLE, item_id=item_id, is_sync=True, apply_offline=False
            ))
        except Exception as e:
            raise self._failure(ItemState.DELETED, content_type, SyncStorage.SERVER, e, item_id=item_id) from e

        await self._on_item_processed(item_id, content_type, SyncStorage.SERVER, ItemState.DELETED)
        await self._purge_local_copy(content_type, item_id)

    async def _purge_local_copy(self, content_type: str, item_id: Any) -> None:
        try:
            await self._purge_by_id(content_type, item_id)
            if self.files is not None and is_files_type(content_type):
                await self.files.purge(item_id)
        except Exception as e:
            raise self._failure(ItemState.DELETED, content_type, SyncStorage.CLIENT, e, item_id=item_id) from e

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _require_transport(self) -> BaseTransport:
        if self.transport is None:
            raise ConfigurationError("File synchronization requires a transport")
        return self.transport

    async def _location_of(self, item_id: Any) -> str | None:
        if self.files is None or item_id is None:
            return None
        return await self.files.get_location(item_id)

    async def _file_exists_on_server(self, content_type: str, item_id: Any) -> bool:
        try:
            await self._send(DataQuery(
                content_type, Operation.READ_BY_ID, item_id=item_id, is_sync=True, apply_offline=False
            ))
        except ReplicaError:
            return False
        return True

    async def _transfer_file(self, content_type: str, item: Item, location: str, is_update: bool) -> Item:
        """Upload local content. Updates use PUT only if the file still exists on the server."""
        transport = self._require_transport()
        can_update = is_update and await self._file_exists_on_server(content_type, item[ID_FIELD])
        if can_update:
            request = Request("PUT", f"{content_type}/{item[ID_FIELD]}/Content")
            fields = _without_id(item)
        else:
            request = Request("POST", content_type)
            fields = item if is_update else _without_id(item)
        response = await transport.upload(request, Path(location), fields)
        return response.get("result") or {}

    async def _create_file(self, content_type: str, sync_item: SyncItem) -> None:
        item = copy.deepcopy(sync_item.resulting_item)
        temp_id = item.get(ID_FIELD)
        location = await self._location_of(temp_id)
        payload = item if self.processor.should_autogenerate_id(content_type) else _without_id(item)

        try:
            if location:
                server_fields = await self._transfer_file(content_type, payload, location, is_update=False)
            else:
                response = await self._send(DataQuery(
                    content_type, Operation.CREATE, data=payload, is_sync=True, apply_offline=False
                ))
                server_fields = response.get("result") or {}
        except Exception as e:
            raise self._failure(ItemState.CREATED, content_type, SyncStorage.SERVER, e, item_id=temp_id) from e

        merged = dict(item, **server_fields)
        merged.setdefault(MODIFIED_AT_FIELD, merged.get(CREATED_AT_FIELD))
        await self._on_item_processed(merged[ID_FIELD], content_type, SyncStorage.SERVER, ItemState.CREATED)

        try:
            await self.processor.process_query(DataQuery(content_type, Operation.CREATE, data=merged, is_sync=True))
            if temp_id is not None and temp_id != merged[ID_FIELD]:
                await self._purge_by_id(content_type, temp_id)
                if location:
                    await self.files.set_location(merged[ID_FIELD], location)
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.CLIENT, e, item_id=temp_id) from e

    async def _update_file(self, content_type: str, sync_item: SyncItem) -> None:
        item = strip_state(sync_item.resulting_item)
        item_id = item[ID_FIELD]
        location = await self._location_of(item_id)

        if sync_item.resolution_type != ResolutionType.KEEP_SERVER and not location:
            # Metadata only
            await self._update_item(content_type, sync_item)
            return

        try:
            response = await self._send(DataQuery(
                content_type, Operation.READ_BY_ID, item_id=item_id, is_sync=True, apply_offline=False
            ))
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.SERVER, e, item_id=item_id) from e

        server_file = response.get("result") or {}
        if not same_timestamp(server_file.get(MODIFIED_AT_FIELD), item.get(MODIFIED_AT_FIELD)):
            raise self._failure(
                ItemState.MODIFIED,
                content_type,
                SyncStorage.SERVER,
                ReplicaError.from_code(ErrorCode.SYNC_CONFLICT),
                item_id=item_id,
            )

        modified_at = None
        try:
            if sync_item.resolution_type == ResolutionType.KEEP_SERVER:
                if location:
                    await self.files.download(item, self._require_transport())
            else:
                uploaded = await self._transfer_file(content_type, item, location, is_update=True)
                modified_at = uploaded.get(MODIFIED_AT_FIELD)
                await self._on_item_processed(item_id, content_type, SyncStorage.SERVER, ItemState.MODIFIED)
            await self._sync_local_update(content_type, item, modified_at)
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.CLIENT, e, item_id=item_id) from e

    async def _update_file_client_wins(self, content_type: str, sync_item: SyncItem) -> None:
        item = strip_state(sync_item.resulting_item)
        item_id = item[ID_FIELD]
        location = await self._location_of(item_id)
        if not location:
            await self._update_item_client_wins(content_type, sync_item)
            return

        try:
            uploaded = await self._transfer_file(content_type, item, location, is_update=True)
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.SERVER, e, item_id=item_id) from e

        await self._on_item_processed(item_id, content_type, SyncStorage.SERVER, ItemState.MODIFIED)
        try:
            await self._sync_local_update(content_type, item, uploaded.get(MODIFIED_AT_FIELD))
        except Exception as e:
            raise self._failure(ItemState.MODIFIED, content_type, SyncStorage.CLIENT, e, item_id=item_id) from e
