"""
In-memory dictionary store.

Fast, ephemeral storage used for tests and for clients that do not need
data to survive a restart.
"""

from __future__ import annotations

from replica.storage.base import BaseStore


class DictStore(BaseStore):
    """
    In-memory dictionary-based storage.

    Features:
    - O(1) access by content type
    - No persistence (ephemeral)
    - Read counters for diagnostics
    """

    def __init__(self, initial: dict[str, str] | None = None):
        self._blobs: dict[str, str] = dict(initial or {})
        self.read_count = 0
        self.write_count = 0

    async def get_all_data(self) -> dict[str, str]:
        self.read_count += 1
        return dict(self._blobs)

    async def save_data(self, content_type: str, data: str) -> None:
        self.write_count += 1
        self._blobs[content_type] = data

    async def purge(self, content_type: str) -> None:
        self._blobs.pop(content_type, None)

    async def purge_all(self) -> None:
        self._blobs.clear()
