"""Tests for the sync event bus."""

import logging

import pytest

from replica.events import EventEmitter, SyncEvent


class TestEventEmitter:
    """Tests for listener registration and notification."""

    @pytest.mark.asyncio
    async def test_listeners_in_registration_order(self):
        emitter = EventEmitter()
        calls = []

        emitter.on(SyncEvent.SYNC_END, lambda result: calls.append(("first", result)))

        async def second(result):
            calls.append(("second", result))

        emitter.on("syncEnd", second)
        await emitter.emit(SyncEvent.SYNC_END, "done")

        assert calls == [("first", "done"), ("second", "done")]

    @pytest.mark.asyncio
    async def test_off(self):
        emitter = EventEmitter()
        calls = []
        listener = emitter.on(SyncEvent.SYNC_START, lambda: calls.append("a"))
        emitter.on(SyncEvent.SYNC_START, lambda: calls.append("b"))

        emitter.off(SyncEvent.SYNC_START, listener)
        await emitter.emit(SyncEvent.SYNC_START)
        assert calls == ["b"]

        emitter.off(SyncEvent.SYNC_START)
        assert emitter.listener_count(SyncEvent.SYNC_START) == 0

    @pytest.mark.asyncio
    async def test_failing_listener_is_logged(self, caplog):
        emitter = EventEmitter()
        calls = []

        def broken(info):
            raise RuntimeError("listener bug")

        emitter.on(SyncEvent.ITEM_PROCESSED, broken)
        emitter.on(SyncEvent.ITEM_PROCESSED, calls.append)

        with caplog.at_level(logging.ERROR, logger="replica.events"):
            await emitter.emit(SyncEvent.ITEM_PROCESSED, "info")

        assert calls == ["info"]
        assert "itemProcessed" in caplog.text

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            EventEmitter().on("syncPaused", print)
