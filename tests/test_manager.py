"""Tests for background synchronization."""

import asyncio

import pytest

from replica.errors import ErrorCode
from replica.sync.manager import SyncManager


async def _offline_change(client, item_id="t1"):
    client.set_offline(True)
    await client.data("Tasks").create({"Id": item_id})


class TestSyncManager:
    """Tests for the sync scheduler."""

    @pytest.mark.asyncio
    async def test_coming_online_syncs(self, client, server):
        await _offline_change(client)
        manager = SyncManager(client)

        result = await manager.set_online(True)

        assert result.synced_to_server == 1
        assert manager.last_result is result
        assert server.get("Tasks", "t1") is not None

    @pytest.mark.asyncio
    async def test_going_offline_does_not_sync(self, client, server):
        manager = SyncManager(client)

        assert await manager.set_online(False) is None
        assert not client.is_online()
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_without_auto_sync(self, client, server):
        await _offline_change(client)
        manager = SyncManager(client, auto_sync=False)

        assert await manager.set_online(True) is None
        assert server.requests == []

        result = await manager.force_sync()
        assert result.synced_to_server == 1

    @pytest.mark.asyncio
    async def test_background_loop(self, client, server):
        await _offline_change(client)
        client.set_offline(False)
        manager = SyncManager(client, interval_seconds=0.01)

        await manager.start()
        assert manager.running
        for _ in range(100):
            if manager.last_result is not None:
                break
            await asyncio.sleep(0.01)
        await manager.stop()

        assert not manager.running
        assert server.get("Tasks", "t1") is not None
        assert manager.get_status()["running"] is False

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, make_client, server):
        from replica.errors import ReplicaError

        client = make_client(max_sync_passes=1)
        await _offline_change(client)
        server.fail("POST", "Tasks", ReplicaError.from_code(ErrorCode.GENERAL))
        manager = SyncManager(client)

        result = await manager.set_online(True)

        # Per-item failures do not fail the run
        assert result.failed_items["Tasks"][0].item_id == "t1"
        assert manager.last_error is None

    @pytest.mark.asyncio
    async def test_pass_failure_is_recorded(self, make_client, server):
        client = make_client("custom")
        server.seed("Tasks", [{"Id": "t1"}])
        await client.data("Tasks").get()
        client.set_offline(True)
        server.touch("Tasks", "t1", Title="changed")
        await client.data("Tasks").use_offline(True).update_single({"Id": "t1", "Title": "local"})
        manager = SyncManager(client)

        assert await manager.set_online(True) is None

        status = manager.get_status()
        assert status["online"]
        assert status["last_error"]["name"] == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_skips_while_synchronizing(self, client):
        manager = SyncManager(client)
        client.sync_engine._is_synchronizing = True

        assert await manager.set_online(True) is None
        assert manager.last_error is None

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_errors(self, client, monkeypatch):
        calls = []

        async def broken_sync():
            calls.append(1)
            raise KeyError("Id")

        monkeypatch.setattr(client, "sync", broken_sync)
        manager = SyncManager(client, interval_seconds=0.01)

        await manager.start()
        for _ in range(100):
            if len(calls) >= 3:
                break
            await asyncio.sleep(0.01)
        await manager.stop()

        assert len(calls) >= 3
        assert isinstance(manager.last_error, KeyError)
        assert manager.get_status()["last_error"]["name"] == "KeyError"
