"""Data model: items, query descriptors and synchronization records."""

from replica.schema.item import (
    Item,
    is_dirty,
    item_state,
    parse_timestamp,
    same_timestamp,
    strip_state,
    utc_now_iso,
)
from replica.schema.query import CACHEABLE_OPERATIONS, DataQuery, Operation
from replica.schema.sync import (
    ConflictRecord,
    ConflictResolutionStrategy,
    ConflictResult,
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

__all__ = [
    # Items
    "Item",
    "is_dirty",
    "item_state",
    "parse_timestamp",
    "same_timestamp",
    "strip_state",
    "utc_now_iso",
    # Queries
    "CACHEABLE_OPERATIONS",
    "DataQuery",
    "Operation",
    # Sync
    "ConflictRecord",
    "ConflictResolutionStrategy",
    "ConflictResult",
    "ContentTypeConflicts",
    "ContentTypeSyncData",
    "FailedItemInfo",
    "ItemState",
    "ResolutionType",
    "SyncItem",
    "SyncResultInfo",
    "SyncStorage",
    "SyncedItemInfo",
]
