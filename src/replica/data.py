"""
Per-collection data API.

Query modifiers apply to the next operation only::

    tasks = client.data("Tasks")
    items = await tasks.ignore_cache().get({"Done": False})
    await tasks.use_offline(True).create({"Title": "Offline task"})
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from replica.constants import ID_FIELD, Headers
from replica.schema.query import DataQuery, Operation

if TYPE_CHECKING:
    from replica.client import ReplicaClient


class DataCollection:
    """Operations on one content type."""

    def __init__(self, client: ReplicaClient, collection_name: str):
        self.client = client
        self.collection_name = collection_name
        self._options: dict[str, Any] = {}
        self._headers: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Modifiers
    # ------------------------------------------------------------------

    def _set_option(self, key: str, value: Any) -> DataCollection:
        self._options[key] = value
        return self

    def use_offline(self, use_offline: bool = True) -> DataCollection:
        return self._set_option("use_offline", use_offline)

    def apply_offline(self, apply_offline: bool = True) -> DataCollection:
        return self._set_option("apply_offline", apply_offline)

    def is_sync(self, is_sync: bool = True) -> DataCollection:
        return self._set_option("is_sync", is_sync)

    def skip_auth(self, skip_auth: bool = True) -> DataCollection:
        return self._set_option("skip_auth", skip_auth)

    def ignore_cache(self) -> DataCollection:
        return self._set_option("ignore_cache", True)

    def force_cache(self) -> DataCollection:
        return self._set_option("force_cache", True)

    def max_age(self, minutes: float) -> DataCollection:
        return self._set_option("max_age", int(minutes * 60 * 1000))

    def with_headers(self, headers: dict[str, Any]) -> DataCollection:
        self._headers.update(headers)
        return self

    def expand(self, expand_expression: dict[str, Any]) -> DataCollection:
        return self.with_headers({Headers.EXPAND: expand_expression})

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _build(self, operation: Operation, headers: dict[str, Any] | None = None, **kwargs: Any) -> DataQuery:
        options, self._options = self._options, {}
        query_headers, self._headers = dict(self._headers), {}
        query_headers.update(headers or {})
        return DataQuery(
            collection_name=self.collection_name,
            operation=operation,
            headers=query_headers,
            **kwargs,
            **options,
        )

    async def _process(self, query: DataQuery) -> dict[str, Any]:
        return await self.client.process_query(query)

    async def get(
        self,
        filter: dict[str, Any] | None = None,
        sort: dict[str, int] | None = None,
        skip: int | None = None,
        take: int | None = None,
        select: dict[str, int] | None = None,
    ) -> dict[str, Any]:
        """Items matching ``filter``: ``{"result": [...], "count": n}``."""
        headers: dict[str, Any] = {}
        if sort:
            headers[Headers.SORT] = sort
        if skip is not None:
            headers[Headers.SKIP] = skip
        if take is not None:
            headers[Headers.TAKE] = take
        if select:
            headers[Headers.SELECT] = select
        return await self._process(self._build(Operation.READ, headers=headers, filter=filter))

    async def get_by_id(self, item_id: str) -> dict[str, Any]:
        return await self._process(self._build(Operation.READ_BY_ID, item_id=item_id))

    async def count(self, filter: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._process(self._build(Operation.COUNT, filter=filter))

    async def create(self, data: dict[str, Any] | list[dict[str, Any]]) -> dict[str, Any]:
        return await self._process(self._build(Operation.CREATE, data=data))

    async def update(self, data: dict[str, Any], filter: dict[str, Any] | None = None) -> dict[str, Any]:
        """Update every item matching ``filter``."""
        return await self._process(self._build(Operation.UPDATE, data=data, filter=filter))

    async def update_single(self, item: dict[str, Any]) -> dict[str, Any]:
        """Update one item identified by its ``Id``."""
        item_id = item.get(ID_FIELD)
        if item_id is None:
            raise ValueError("update_single requires an item with an Id")
        data = {key: value for key, value in item.items() if key != ID_FIELD}
        return await self._process(self._build(Operation.UPDATE, data=data, item_id=item_id))

    async def raw_update(
        self,
        update_expression: dict[str, Any],
        filter: dict[str, Any] | str | None = None,
    ) -> dict[str, Any]:
        """Apply an update expression (``$set``, ``$inc``...). A string filter is an item Id."""
        if isinstance(filter, str):
            query = self._build(Operation.RAW_UPDATE, data=update_expression, item_id=filter)
        else:
            query = self._build(Operation.RAW_UPDATE, data=update_expression, filter=filter)
        return await self._process(query)

    async def destroy(self, filter: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._process(self._build(Operation.DESTROY, filter=filter))

    async def destroy_single(self, item_id: str) -> dict[str, Any]:
        return await self._process(self._build(Operation.DESTROY_SINGLE, item_id=item_id))

    async def set_acl(self, item_id: str, acl: dict[str, Any]) -> dict[str, Any]:
        return await self._process(self._build(Operation.SET_ACL, item_id=item_id, options={"acl": acl}))

    async def set_owner(self, item_id: str, owner_id: str) -> dict[str, Any]:
        return await self._process(
            self._build(Operation.SET_OWNER, item_id=item_id, options={"owner": owner_id})
        )

    @staticmethod
    def is_new(item: dict[str, Any]) -> bool:
        return ID_FIELD not in item

    async def save(self, item: dict[str, Any]) -> dict[str, Any]:
        """Create ``item`` if it has no Id, update it otherwise."""
        is_new = self.is_new(item)
        response = await (self.create(item) if is_new else self.update_single(item))
        return dict(response, type="create" if is_new else "update")
