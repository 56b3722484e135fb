"""
Base interface for local store backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseStore(ABC):
    """
    Abstract key/value store holding one serialized blob per content type.

    All storage implementations must implement these methods. Blobs are
    opaque strings (JSON, possibly encrypted); the store never inspects them.
    """

    async def initialize(self) -> None:
        """Prepare the backend (create directories, tables, etc.)."""

    async def close(self) -> None:
        """Release resources held by the backend."""

    @abstractmethod
    async def get_all_data(self) -> dict[str, str]:
        """Return every stored blob keyed by content type."""
        pass

    @abstractmethod
    async def save_data(self, content_type: str, data: str) -> None:
        """Replace the blob stored for a content type."""
        pass

    @abstractmethod
    async def purge(self, content_type: str) -> None:
        """Remove the blob for a content type. Missing content types are ignored."""
        pass

    @abstractmethod
    async def purge_all(self) -> None:
        """Remove every blob."""
        pass

    async def get_data(self, content_type: str) -> str | None:
        """Blob for a single content type. Default implementation loads everything."""
        return (await self.get_all_data()).get(content_type)
