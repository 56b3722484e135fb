"""
Request building.

Each operation has a builder turning a ``DataQuery`` into a ``Request``: the
HTTP method, the endpoint relative to the base URL, headers and body. Query
expressions travel as JSON encoded ``X-Replica-*`` headers.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from replica.constants import Headers
from replica.errors import ErrorCode, ReplicaError
from replica.schema.query import DataQuery, Operation


@dataclass
class Request:
    """A transport-independent HTTP request."""

    method: str
    endpoint: str
    headers: dict[str, str] = field(default_factory=dict)
    data: Any = None
    authenticate: bool = True

    def header_json(self, name: str) -> Any:
        value = self.headers.get(name)
        return json.loads(value) if value else None


def _encode(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, default=str)


def _base_headers(query: DataQuery) -> dict[str, str]:
    headers = {name: _encode(value) for name, value in query.headers.items() if value is not None}
    if query.is_sync:
        headers[Headers.SYNC] = "true"
    return headers


def _with_filter(query: DataQuery, headers: dict[str, str]) -> dict[str, str]:
    if query.filter:
        headers[Headers.FILTER] = _encode(query.filter)
    return headers


def _single_endpoint(query: DataQuery, suffix: str = "") -> str:
    if query.item_id is None:
        raise ReplicaError(
            f"Operation {query.operation.value} requires an item Id", ErrorCode.INVALID_REQUEST
        )
    return f"{query.collection_name}/{query.item_id}{suffix}"


def _read(query: DataQuery) -> Request:
    return Request("GET", query.collection_name, _with_filter(query, _base_headers(query)))


def _read_by_id(query: DataQuery) -> Request:
    return Request("GET", _single_endpoint(query), _base_headers(query))


def _count(query: DataQuery) -> Request:
    return Request("GET", f"{query.collection_name}/_count", _with_filter(query, _base_headers(query)))


def _create(query: DataQuery) -> Request:
    return Request("POST", query.collection_name, _base_headers(query), query.data)


def _update(query: DataQuery) -> Request:
    if query.item_id is not None:
        return Request("PUT", _single_endpoint(query), _base_headers(query), query.data)
    return Request("PUT", query.collection_name, _with_filter(query, _base_headers(query)), query.data)


def _destroy(query: DataQuery) -> Request:
    return Request("DELETE", query.collection_name, _with_filter(query, _base_headers(query)))


def _destroy_single(query: DataQuery) -> Request:
    return Request("DELETE", _single_endpoint(query), _base_headers(query))


def _set_acl(query: DataQuery) -> Request:
    return Request("PUT", _single_endpoint(query, "/_acl"), _base_headers(query), query.options.get("acl"))


def _set_owner(query: DataQuery) -> Request:
    return Request(
        "PUT",
        _single_endpoint(query, "/_owner"),
        _base_headers(query),
        {"Owner": query.options.get("owner")},
    )


BUILDERS: dict[Operation, Callable[[DataQuery], Request]] = {
    Operation.READ: _read,
    Operation.READ_BY_ID: _read_by_id,
    Operation.COUNT: _count,
    Operation.CREATE: _create,
    Operation.UPDATE: _update,
    Operation.RAW_UPDATE: _update,
    Operation.DESTROY: _destroy,
    Operation.DESTROY_SINGLE: _destroy_single,
    Operation.SET_ACL: _set_acl,
    Operation.SET_OWNER: _set_owner,
}


def build_request(query: DataQuery) -> Request:
    """Build the request for a query."""
    request = BUILDERS[query.operation](query)
    request.authenticate = not query.skip_auth
    return request
