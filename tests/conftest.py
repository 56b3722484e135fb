"""
Pytest configuration and shared fixtures for replica tests.
"""

import copy
import tempfile
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from replica.constants import Headers, is_files_type, is_users_type
from replica.errors import ErrorCode, ReplicaError
from replica.offline.filtering import matches_filter
from replica.transport.base import BaseTransport
from replica.transport.request import Request

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeServer(BaseTransport):
    """
    In-memory backend speaking the same request format as HttpTransport.

    Every write stamps a new, strictly increasing ModifiedAt.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = {}
        self.file_contents: dict[str, bytes] = {}
        self.requests: list[Request] = []
        self.uploads: list[tuple[Request, Path, dict]] = []
        self.failures: dict[tuple[str, str], ReplicaError] = {}
        self.before_request = None
        self._ticks = 0

    def timestamp(self) -> str:
        self._ticks += 1
        moment = BASE_TIME + timedelta(seconds=self._ticks)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def seed(self, content_type: str, items: list[dict]) -> list[dict]:
        """Put items on the server, stamping missing timestamps."""
        collection = self.collections.setdefault(content_type, {})
        seeded = []
        for item in items:
            item = copy.deepcopy(item)
            item.setdefault("Id", uuid.uuid4().hex)
            item.setdefault("CreatedAt", self.timestamp())
            item.setdefault("ModifiedAt", item["CreatedAt"])
            collection[item["Id"]] = item
            seeded.append(copy.deepcopy(item))
        return seeded

    def get(self, content_type: str, item_id: str) -> dict | None:
        return self.collections.get(content_type, {}).get(item_id)

    def touch(self, content_type: str, item_id: str, **fields) -> dict:
        """Modify an item server-side, as another client would."""
        item = self.collections[content_type][item_id]
        item.update(fields)
        item["ModifiedAt"] = self.timestamp()
        return copy.deepcopy(item)

    def fail(self, method: str, content_type: str, error: ReplicaError) -> None:
        self.failures[(method, content_type)] = error

    def requests_for(self, method: str, content_type: str | None = None) -> list[Request]:
        return [
            r for r in self.requests
            if r.method == method and (content_type is None or r.endpoint.split("/")[0] == content_type)
        ]

    @staticmethod
    def _matches(item: dict, filter_expr: dict | None) -> bool:
        # Operators the local evaluator does not know (geo queries...) match everything
        try:
            return matches_filter(item, filter_expr)
        except ValueError:
            return True

    def _apply_update(self, item: dict, data: dict, modified_at: str) -> None:
        if not any(key.startswith("$") for key in data):
            data = {"$set": data}
        for key, value in (data.get("$set") or {}).items():
            if key not in ("Id", "CreatedAt", "ModifiedAt"):
                item[key] = copy.deepcopy(value)
        for key in data.get("$unset") or {}:
            item.pop(key, None)
        for key, amount in (data.get("$inc") or {}).items():
            item[key] = item.get(key, 0) + amount
        item["ModifiedAt"] = modified_at

    def _create(self, content_type: str, data: dict) -> dict:
        item = copy.deepcopy(data)
        if is_users_type(content_type) or is_files_type(content_type) or not item.get("Id"):
            item["Id"] = uuid.uuid4().hex
        if item["Id"] in self.collections.get(content_type, {}):
            raise ReplicaError("Duplicate Id", ErrorCode.INVALID_REQUEST)
        item["CreatedAt"] = item["ModifiedAt"] = self.timestamp()
        self.collections.setdefault(content_type, {})[item["Id"]] = item
        return item

    async def send(self, request: Request) -> dict:
        self.requests.append(request)
        if self.before_request is not None:
            self.before_request(request)

        parts = request.endpoint.split("/")
        content_type = parts[0]
        error = self.failures.get((request.method, content_type))
        if error is not None:
            raise error

        collection = self.collections.setdefault(content_type, {})
        filter_expr = request.header_json(Headers.FILTER)

        if request.method == "GET":
            if len(parts) == 2 and parts[1] == "_count":
                return {"result": sum(1 for i in collection.values() if self._matches(i, filter_expr))}
            if len(parts) == 2:
                item = collection.get(parts[1])
                if item is None:
                    raise ReplicaError.from_code(ErrorCode.ITEM_NOT_FOUND)
                return {"result": copy.deepcopy(item)}
            items = [copy.deepcopy(i) for i in collection.values() if self._matches(i, filter_expr)]
            return {"result": items, "count": len(items)}

        if request.method == "POST":
            if isinstance(request.data, list):
                created = [self._create(content_type, d) for d in request.data]
                return {"result": [{"Id": c["Id"], "CreatedAt": c["CreatedAt"]} for c in created]}
            created = self._create(content_type, request.data)
            return {"result": {"Id": created["Id"], "CreatedAt": created["CreatedAt"]}}

        if request.method == "PUT":
            if len(parts) == 2:
                targets = [collection[parts[1]]] if parts[1] in collection else []
            else:
                targets = [i for i in collection.values() if self._matches(i, filter_expr)]
            modified_at = self.timestamp()
            for item in targets:
                self._apply_update(item, request.data or {}, modified_at)
            return {"result": len(targets), "ModifiedAt": modified_at}

        if request.method == "DELETE":
            if len(parts) == 2:
                removed = [parts[1]] if parts[1] in collection else []
            else:
                removed = [i["Id"] for i in collection.values() if self._matches(i, filter_expr)]
            for item_id in removed:
                del collection[item_id]
            return {"result": len(removed)}

        raise ReplicaError(f"Unsupported request {request.method} {request.endpoint}")

    async def upload(self, request: Request, path: Path, fields: dict) -> dict:
        self.uploads.append((request, path, dict(fields)))
        parts = request.endpoint.split("/")
        content_type = parts[0]

        if request.method == "PUT":
            item = self.collections[content_type][parts[1]]
            item["ModifiedAt"] = self.timestamp()
        else:
            item = self._create(content_type, {k: v for k, v in fields.items() if k != "Id"})
        item["Uri"] = f"mem://{item['Id']}"
        self.file_contents[item["Uri"]] = path.read_bytes()
        return {"result": copy.deepcopy(item)}

    async def download(self, url: str) -> bytes:
        if url not in self.file_contents:
            raise ReplicaError.from_code(ErrorCode.ITEM_NOT_FOUND)
        return self.file_contents[url]


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += minutes * 60


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dict_store():
    """Create an in-memory store."""
    from replica.storage import DictStore

    return DictStore()


@pytest.fixture
def make_client(server, clock, dict_store, temp_dir):
    """Factory for clients backed by the fake server and an in-memory store."""
    from replica import ClientSettings, ReplicaClient
    from replica.config import (
        CachingSettings,
        ConflictSettings,
        FilesSettings,
        OfflineStorageSettings,
        StorageSettings,
    )

    def _make(
        strategy: str = "clientWins",
        implementation=None,
        offline_enabled: bool = True,
        caching: CachingSettings | bool = False,
        **offline_options,
    ) -> ReplicaClient:
        settings = ClientSettings(
            api_key="test-key",
            offline_storage=OfflineStorageSettings(
                enabled=offline_enabled,
                conflicts=ConflictSettings(strategy=strategy, implementation=implementation),
                storage=StorageSettings(provider="memory"),
                files=FilesSettings(storage_path=str(temp_dir / "files")),
                **offline_options,
            ),
            caching=caching,
        )
        return ReplicaClient(settings, transport=server, store=dict_store, clock=clock)

    return _make


@pytest.fixture
def client(make_client):
    """Offline-enabled client with the default (client wins) strategy."""
    return make_client()
