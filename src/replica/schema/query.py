"""
Query descriptor - one normalized data operation.

A descriptor is built per call, consumed once and discarded. Retries build a
fresh descriptor through ``for_retry``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from replica.constants import Headers


class Operation(str, Enum):
    """Kinds of data operations."""

    READ = "read"
    READ_BY_ID = "readById"
    COUNT = "count"
    CREATE = "create"
    UPDATE = "update"
    RAW_UPDATE = "rawUpdate"
    DESTROY = "destroy"
    DESTROY_SINGLE = "destroySingle"
    SET_ACL = "setAcl"
    SET_OWNER = "setOwner"


CACHEABLE_OPERATIONS = frozenset({Operation.READ, Operation.READ_BY_ID, Operation.COUNT})


@dataclass
class DataQuery:
    """A single data operation with its parameters and routing flags."""

    collection_name: str
    operation: Operation
    filter: Any = None
    data: Any = None
    item_id: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)

    # Routing flags. None means "decide from the client configuration".
    use_offline: bool | None = None
    apply_offline: bool | None = None
    is_sync: bool = False
    skip_auth: bool = False
    no_retry: bool = False

    # Cache flags
    use_cache: bool = False
    ignore_cache: bool = False
    force_cache: bool = False
    max_age: int | None = None  # milliseconds

    # Keep the local state marker on sync-internal writes
    preserve_state: bool = False

    # Sync creates leave items with pending local changes untouched
    keep_dirty: bool = False

    # Extra per-operation options (acl payload, ...)
    options: dict[str, Any] = field(default_factory=dict)

    def for_retry(self) -> DataQuery:
        """A fresh descriptor for re-issuing this operation once."""
        return replace(
            self,
            headers=dict(self.headers),
            options=dict(self.options),
            no_retry=True,
        )

    def get_header(self, name: str) -> Any:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def get_header_as_json(self, name: str) -> Any:
        value = self.get_header(name)
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    def get_query_parameters(self) -> dict[str, Any]:
        """
        Normalized parameters that identify the result set of a read.

        An explicit ``filter`` wins over the filter header.
        """
        if self.operation == Operation.READ_BY_ID:
            return {
                "filter": self.item_id,
                "expand": self.get_header_as_json(Headers.EXPAND),
            }

        return {
            "filter": self.filter or self.get_header_as_json(Headers.FILTER) or {},
            "sort": self.get_header_as_json(Headers.SORT),
            "limit": self.get_header_as_json(Headers.TAKE),
            "skip": self.get_header_as_json(Headers.SKIP),
            "select": self.get_header_as_json(Headers.SELECT),
            "expand": self.get_header_as_json(Headers.EXPAND),
        }
