"""
Data model for one synchronization pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from replica.errors import ConfigurationError


class ItemState(str, Enum):
    """Pending local mutation recorded by the state marker."""

    CREATED = "create"
    MODIFIED = "update"
    DELETED = "delete"


class SyncStorage(str, Enum):
    """Which side received a synced change."""

    SERVER = "server"
    CLIENT = "client"


class ConflictResolutionStrategy(str, Enum):
    """Configured strategy for conflicting items."""

    CLIENT_WINS = "clientWins"
    SERVER_WINS = "serverWins"
    CUSTOM = "custom"


class ResolutionType(str, Enum):
    """Decision taken for a single conflict."""

    KEEP_SERVER = "keepServer"
    KEEP_CLIENT = "keepClient"
    CUSTOM = "custom"
    SKIP = "skip"


@dataclass
class ConflictResult:
    """Outcome of resolving one conflict. ``item`` is used by custom resolutions."""

    resolution_type: ResolutionType | None = None
    item: dict[str, Any] | None = None


@dataclass
class ConflictRecord:
    """A local item and its diverged server counterpart."""

    client_item: dict[str, Any] | None
    server_item: dict[str, Any] | None
    result: ConflictResult = field(default_factory=ConflictResult)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.client_item is None and self.server_item is None:
            raise ConfigurationError(
                "A conflict must have a client item, a server item or both."
            )

    def resolve(self, resolution_type: ResolutionType, item: dict[str, Any] | None = None) -> None:
        """Record a decision. Custom resolutions pass the merged ``item``."""
        self.result = ConflictResult(resolution_type=ResolutionType(resolution_type), item=item)


@dataclass
class ContentTypeConflicts:
    """All conflicts found in one content type."""

    content_type_name: str
    conflicting_items: list[ConflictRecord] = field(default_factory=list)


@dataclass
class SyncItem:
    """An item queued for replay."""

    remote_item: dict[str, Any] | None
    resulting_item: dict[str, Any]
    resolution_type: ResolutionType | None = None
    is_custom: bool = False


@dataclass
class ContentTypeSyncData:
    """Replay queues for one content type."""

    created_items: list[SyncItem] = field(default_factory=list)
    modified_items: list[SyncItem] = field(default_factory=list)
    deleted_items: list[SyncItem] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.created_items or self.modified_items or self.deleted_items)


@dataclass
class SyncedItemInfo:
    """Payload of the ``itemProcessed`` event."""

    item_id: str | None
    type: ItemState
    storage: SyncStorage
    content_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "itemId": self.item_id,
            "type": self.type.value,
            "storage": self.storage.value,
            "contentType": self.content_type,
        }


@dataclass
class FailedItemInfo(SyncedItemInfo):
    """A synced item that failed, with the error that caused it."""

    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        error = self.error
        data["error"] = error.to_dict() if hasattr(error, "to_dict") else str(error)
        return data


@dataclass
class SyncResultInfo:
    """Accumulated result of one sync run, emitted with ``syncEnd``."""

    synced_items: dict[str, list[SyncedItemInfo]] = field(default_factory=dict)
    synced_to_server: int = 0
    synced_to_client: int = 0
    failed_items: dict[str, list[FailedItemInfo]] = field(default_factory=dict)
    error: BaseException | None = None

    def record_synced(self, info: SyncedItemInfo) -> None:
        self.synced_items.setdefault(info.content_type, []).append(info)
        if info.storage == SyncStorage.SERVER:
            self.synced_to_server += 1
        else:
            self.synced_to_client += 1

    def record_failed(self, info: FailedItemInfo) -> None:
        self.failed_items.setdefault(info.content_type, []).append(info)

    def has_failed(self, content_type: str, item_id: str | None) -> bool:
        return any(f.item_id == item_id for f in self.failed_items.get(content_type, []))

    def has_synced(self, content_type: str, item_id: str | None, storage: SyncStorage) -> bool:
        return any(
            s.item_id == item_id and s.storage == storage
            for s in self.synced_items.get(content_type, [])
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "syncedItems": {
                ct: [s.to_dict() for s in items] for ct, items in self.synced_items.items()
            },
            "syncedToServer": self.synced_to_server,
            "syncedToClient": self.synced_to_client,
            "failedItems": {
                ct: [f.to_dict() for f in items] for ct, items in self.failed_items.items()
            },
            "error": self.error.to_dict() if hasattr(self.error, "to_dict") else (
                str(self.error) if self.error else None
            ),
        }
