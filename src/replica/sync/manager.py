"""
Background synchronization.

Runs ``client.sync()`` periodically while the client is online, and right
away when the client comes back online.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from replica.errors import ErrorCode, ReplicaError
from replica.schema.sync import SyncResultInfo

if TYPE_CHECKING:
    from replica.client import ReplicaClient

logger = logging.getLogger(__name__)


class SyncManager:
    """
    Manages sync scheduling and background sync.

    Features:
    - Periodic background sync
    - Immediate sync when connectivity returns
    - Skips a tick while a sync is already running
    """

    def __init__(
        self,
        client: ReplicaClient,
        auto_sync: bool | None = None,
        interval_seconds: float | None = None,
    ):
        offline = client.settings.offline_storage
        self.client = client
        self.auto_sync = offline.auto_sync if auto_sync is None else auto_sync
        self.interval_seconds = offline.sync_interval_seconds if interval_seconds is None else interval_seconds

        self._running = False
        self._sync_task: asyncio.Task | None = None
        self.last_result: SyncResultInfo | None = None
        self.last_error: BaseException | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start background sync."""
        if self._running:
            return

        self._running = True
        self._sync_task = asyncio.create_task(self._sync_loop())

    async def stop(self) -> None:
        """Stop background sync."""
        self._running = False
        if self._sync_task:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None

    async def _sync_loop(self) -> None:
        """Background sync loop."""
        while self._running:
            if self._should_sync():
                await self._run_sync()
            await asyncio.sleep(self.interval_seconds)

    async def _run_sync(self) -> SyncResultInfo | None:
        try:
            self.last_result = await self.client.sync()
            self.last_error = None
        except ReplicaError as e:
            if e.code == ErrorCode.SYNC_IN_PROGRESS:
                return None
            # The failure is also reported through the syncEnd event
            self.last_error = e
            logger.warning(f"Background sync failed: {e.message}")
            return None
        except Exception as e:
            self.last_error = e
            logger.exception(f"Background sync failed: {e}")
            return None
        return self.last_result

    def _should_sync(self) -> bool:
        """Check if sync conditions are met."""
        return (
            self.auto_sync
            and self.client.offline_storage_enabled
            and self.client.is_online()
            and not self.client.is_synchronizing()
        )

    async def set_online(self, online: bool) -> SyncResultInfo | None:
        """Change connectivity. Coming back online syncs immediately when auto sync is on."""
        self.client.set_offline(not online)
        if online and self._should_sync():
            return await self._run_sync()
        return None

    async def force_sync(self) -> SyncResultInfo:
        """Force immediate sync."""
        self.last_result = await self.client.sync()
        return self.last_result

    def get_status(self) -> dict[str, Any]:
        """Get sync manager status."""
        return {
            "running": self._running,
            "auto_sync": self.auto_sync,
            "interval_seconds": self.interval_seconds,
            "online": self.client.is_online(),
            "synchronizing": self.client.is_synchronizing(),
            "last_error": _error_info(self.last_error),
        }


def _error_info(error: BaseException | None) -> dict[str, Any] | None:
    if error is None:
        return None
    if isinstance(error, ReplicaError):
        return error.to_dict()
    return {"name": type(error).__name__, "message": str(error), "code": None}
