"""
Base interface for transports.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from replica.transport.request import Request


class BaseTransport(ABC):
    """
    Sends built requests to the backend.

    Responses are normalized dictionaries with lowercase keys:
    ``{"result": ..., "count": ...}`` for reads, ``{"result": n, "ModifiedAt": ...}``
    for updates. Failures raise ``ReplicaError`` carrying the server code.
    """

    async def close(self) -> None:
        """Release connections held by the transport."""

    @abstractmethod
    async def send(self, request: Request) -> dict[str, Any]:
        pass

    @abstractmethod
    async def upload(self, request: Request, path: Path, fields: dict[str, Any]) -> dict[str, Any]:
        """Multipart upload of file content with its metadata fields."""
        pass

    @abstractmethod
    async def download(self, url: str) -> bytes:
        pass
