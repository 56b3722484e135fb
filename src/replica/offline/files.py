"""
Offline file content.

File metadata items live in the ``Files`` collection like any other item.
Their binary content is kept on disk next to the store, and an index from
file Id to local path is persisted through a bookkeeping store.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from replica.constants import FILE_UPLOAD_DELIMITER, ID_FIELD, MAX_CONCURRENT_DOWNLOADS
from replica.errors import ErrorCode, ReplicaError
from replica.storage.base import BaseStore

if TYPE_CHECKING:
    from replica.transport.base import BaseTransport

logger = logging.getLogger(__name__)

LOCATIONS_KEY = "locations"


class OfflineFiles:
    """Local copies of file content, indexed by file Id."""

    def __init__(
        self,
        store: BaseStore,
        storage_path: str | Path,
        max_concurrent_downloads: int = MAX_CONCURRENT_DOWNLOADS,
    ):
        self.store = store
        self.storage_path = Path(storage_path).expanduser()
        self._semaphore = asyncio.Semaphore(max_concurrent_downloads)
        self._locations: dict[str, str] | None = None

    async def _index(self) -> dict[str, str]:
        if self._locations is None:
            blob = await self.store.get_data(LOCATIONS_KEY)
            self._locations = json.loads(blob) if blob else {}
        return self._locations

    async def _save_index(self) -> None:
        await self.store.save_data(LOCATIONS_KEY, json.dumps(await self._index()))

    async def get_location(self, file_id: str) -> str | None:
        """Local path of the file content, if it is available offline."""
        location = (await self._index()).get(file_id)
        if location and not Path(location).exists():
            return None
        return location

    async def set_location(self, file_id: str, location: str | Path) -> None:
        (await self._index())[file_id] = str(location)
        await self._save_index()

    async def save_file(self, file_id: str, filename: str, content: bytes) -> Path:
        """Write ``content`` to disk and index it under ``file_id``."""
        self.storage_path.mkdir(parents=True, exist_ok=True)
        path = self.storage_path / f"{file_id}{FILE_UPLOAD_DELIMITER}{Path(filename).name}"
        path.write_bytes(content)
        await self.set_location(file_id, path)
        return path

    async def download(self, file_item: dict[str, Any], transport: BaseTransport) -> Path:
        """Fetch the content of a file item and keep it offline."""
        uri = file_item.get("Uri")
        if not uri:
            raise ReplicaError.from_code(ErrorCode.MISSING_OR_INVALID_FILE_CONTENT)

        async with self._semaphore:
            logger.debug(f"Downloading file {file_item.get(ID_FIELD)}")
            content = await transport.download(uri)
        return await self.save_file(
            file_item[ID_FIELD], file_item.get("Filename") or "content", content
        )

    async def download_all(self, file_items: list[dict[str, Any]], transport: BaseTransport) -> list[Path]:
        """Download many files, at most ``max_concurrent_downloads`` at a time."""
        return list(await asyncio.gather(*(self.download(item, transport) for item in file_items)))

    async def read(self, file_id: str) -> bytes:
        location = await self.get_location(file_id)
        if location is None:
            raise ReplicaError.from_code(ErrorCode.ITEM_NOT_FOUND)
        return Path(location).read_bytes()

    async def purge(self, file_id: str) -> None:
        """Delete the local content of a file."""
        index = await self._index()
        location = index.pop(file_id, None)
        if location:
            Path(location).unlink(missing_ok=True)
        await self._save_index()

    async def purge_all(self) -> None:
        index = await self._index()
        for location in index.values():
            Path(location).unlink(missing_ok=True)
        index.clear()
        await self.store.purge(LOCATIONS_KEY)
