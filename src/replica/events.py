"""
Event bus for synchronization progress.

Observers register with ``on`` and receive ``syncStart``, ``itemProcessed``
and ``syncEnd`` notifications. Listeners may be plain functions or
coroutine functions.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SyncEvent(str, Enum):
    """Events published by the sync engine."""

    SYNC_START = "syncStart"
    SYNC_END = "syncEnd"
    ITEM_PROCESSED = "itemProcessed"


Listener = Callable[..., Any]


class EventEmitter:
    """Minimal observer registry."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: SyncEvent | str, listener: Listener) -> Listener:
        self._listeners.setdefault(SyncEvent(event).value, []).append(listener)
        return listener

    def off(self, event: SyncEvent | str, listener: Listener | None = None) -> None:
        """Remove one listener, or every listener of ``event``."""
        name = SyncEvent(event).value
        if listener is None:
            self._listeners.pop(name, None)
            return
        listeners = self._listeners.get(name, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: SyncEvent | str) -> int:
        return len(self._listeners.get(SyncEvent(event).value, []))

    async def emit(self, event: SyncEvent | str, *args: Any) -> None:
        """Notify listeners in registration order.

        A failing listener is logged and does not prevent the others from
        being notified or abort the operation that emitted the event.
        """
        for listener in list(self._listeners.get(SyncEvent(event).value, [])):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Listener for {SyncEvent(event).value} failed")
