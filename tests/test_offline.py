"""Tests for the offline query processor and offline file content."""

import pytest

from replica.constants import OFFLINE_STATE_MARKER
from replica.errors import ErrorCode, ReplicaError
from replica.schema.query import DataQuery, Operation


@pytest.fixture
def processor(dict_store):
    from replica.offline import OfflineQueryProcessor

    return OfflineQueryProcessor(dict_store)


async def _raw_items(processor, content_type="Tasks"):
    """Stored items, state markers included, keyed by Id."""
    collections = await processor.get_all_collections()
    return {item["Id"]: item for item in collections.get(content_type, [])}


class TestOfflineCreate:
    """Tests for creating items offline."""

    @pytest.mark.asyncio
    async def test_create_generates_id_and_marks_item(self, processor):
        response = await processor.process_query(
            DataQuery("Tasks", Operation.CREATE, data={"Title": "Milk"})
        )

        created = response["result"]
        assert created["Id"]
        assert created["CreatedAt"]

        stored = (await _raw_items(processor))[created["Id"]]
        assert stored[OFFLINE_STATE_MARKER] == "create"
        assert stored["ModifiedAt"] == stored["CreatedAt"]

    @pytest.mark.asyncio
    async def test_batch_create_returns_list(self, processor):
        response = await processor.process_query(
            DataQuery("Tasks", Operation.CREATE, data=[{"Title": "a"}, {"Title": "b"}])
        )
        assert len(response["result"]) == 2
        assert len(await _raw_items(processor)) == 2

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, processor):
        await processor.process_query(DataQuery("Tasks", Operation.CREATE, data={"Id": "t1"}))

        with pytest.raises(ReplicaError) as exc_info:
            await processor.process_query(DataQuery("Tasks", Operation.CREATE, data={"Id": "t1"}))
        assert exc_info.value.code == ErrorCode.GENERAL_DATABASE_ERROR

    @pytest.mark.asyncio
    async def test_sync_create_is_an_upsert_without_marker(self, processor):
        """Server copies written by sync replace local items and are clean."""
        await processor.process_query(DataQuery("Tasks", Operation.CREATE, data={"Id": "t1", "Title": "old"}))
        await processor.process_query(
            DataQuery("Tasks", Operation.CREATE, data={"Id": "t1", "Title": "new"}, is_sync=True)
        )

        stored = (await _raw_items(processor))["t1"]
        assert stored["Title"] == "new"
        assert OFFLINE_STATE_MARKER not in stored

    @pytest.mark.asyncio
    async def test_recreating_deleted_item_marks_update(self, processor):
        await processor.process_query(
            DataQuery("Tasks", Operation.CREATE, data={"Id": "t1", "Title": "x"}, is_sync=True)
        )
        await processor.process_query(DataQuery("Tasks", Operation.DESTROY_SINGLE, item_id="t1"))
        await processor.process_query(DataQuery("Tasks", Operation.CREATE, data={"Id": "t1", "Title": "y"}))

        assert (await _raw_items(processor))["t1"][OFFLINE_STATE_MARKER] == "update"


class TestOfflineReads:
    """Tests for reading items offline."""

    @pytest.fixture
    async def seeded(self, processor):
        items = [
            {"Id": "1", "Title": "Milk", "Price": 3, "ModifiedAt": "2024-01-01T00:00:00.000Z"},
            {"Id": "2", "Title": "Bread", "Price": 2, "ModifiedAt": "2024-01-01T00:00:00.000Z"},
            {"Id": "3", "Title": "Soap", "Price": 5, "ModifiedAt": "2024-01-01T00:00:00.000Z"},
        ]
        await processor.process_query(DataQuery("Tasks", Operation.CREATE, data=items, is_sync=True))
        return processor

    @pytest.mark.asyncio
    async def test_read_with_filter_sort_and_paging(self, seeded):
        query = DataQuery(
            "Tasks",
            Operation.READ,
            filter={"Price": {"$gte": 2}},
            headers={"X-Replica-Sort": '{"Price": -1}', "X-Replica-Take": "2"},
        )
        response = await seeded.process_query(query)

        assert [item["Id"] for item in response["result"]] == ["3", "1"]
        assert response["count"] == 3

    @pytest.mark.asyncio
    async def test_read_by_id_and_not_found(self, seeded):
        response = await seeded.process_query(DataQuery("Tasks", Operation.READ_BY_ID, item_id="2"))
        assert response["result"]["Title"] == "Bread"

        with pytest.raises(ReplicaError) as exc_info:
            await seeded.process_query(DataQuery("Tasks", Operation.READ_BY_ID, item_id="missing"))
        assert exc_info.value.code == ErrorCode.ITEM_NOT_FOUND

    @pytest.mark.asyncio
    async def test_deleted_items_are_hidden(self, seeded):
        await seeded.process_query(DataQuery("Tasks", Operation.DESTROY_SINGLE, item_id="1"))

        response = await seeded.process_query(DataQuery("Tasks", Operation.COUNT))
        assert response["result"] == 2

        with pytest.raises(ReplicaError):
            await seeded.process_query(DataQuery("Tasks", Operation.READ_BY_ID, item_id="1"))

    @pytest.mark.asyncio
    async def test_results_never_expose_marker(self, seeded):
        await seeded.process_query(DataQuery("Tasks", Operation.UPDATE, item_id="1", data={"Price": 4}))

        response = await seeded.process_query(DataQuery("Tasks", Operation.READ))
        assert all(OFFLINE_STATE_MARKER not in item for item in response["result"])

    @pytest.mark.asyncio
    async def test_empty_collection(self, processor):
        response = await processor.process_query(DataQuery("Unknown", Operation.READ))
        assert response == {"result": [], "count": 0}


class TestOfflineUpdates:
    """Tests for updating items offline."""

    @pytest.fixture
    async def seeded(self, processor):
        await processor.process_query(DataQuery(
            "Tasks",
            Operation.CREATE,
            data={"Id": "1", "Title": "Milk", "Count": 1, "ModifiedAt": "2024-01-01T00:00:00.000Z"},
            is_sync=True,
        ))
        return processor

    @pytest.mark.asyncio
    async def test_update_keeps_server_modified_at(self, seeded):
        """Offline edits keep the last known server ModifiedAt."""
        response = await seeded.process_query(
            DataQuery("Tasks", Operation.UPDATE, item_id="1", data={"Title": "Oat milk"})
        )
        assert response["result"] == 1

        stored = (await _raw_items(seeded))["1"]
        assert stored["Title"] == "Oat milk"
        assert stored["ModifiedAt"] == "2024-01-01T00:00:00.000Z"
        assert stored[OFFLINE_STATE_MARKER] == "update"

    @pytest.mark.asyncio
    async def test_update_operators(self, seeded):
        await seeded.process_query(DataQuery(
            "Tasks",
            Operation.RAW_UPDATE,
            filter={"Title": "Milk"},
            data={"$inc": {"Count": 2}, "$unset": {"Title": ""}, "$set": {"Id": "ignored", "Done": True}},
        ))

        stored = (await _raw_items(seeded))["1"]
        assert stored["Count"] == 3
        assert stored["Done"] is True
        assert "Title" not in stored

    @pytest.mark.asyncio
    async def test_update_of_created_item_stays_created(self, processor):
        response = await processor.process_query(DataQuery("Tasks", Operation.CREATE, data={"Title": "a"}))
        item_id = response["result"]["Id"]

        await processor.process_query(DataQuery("Tasks", Operation.UPDATE, item_id=item_id, data={"Title": "b"}))
        assert (await _raw_items(processor))[item_id][OFFLINE_STATE_MARKER] == "create"

    @pytest.mark.asyncio
    async def test_sync_update_clears_marker(self, seeded):
        await seeded.process_query(DataQuery("Tasks", Operation.UPDATE, item_id="1", data={"Title": "x"}))
        await seeded.process_query(DataQuery(
            "Tasks", Operation.UPDATE, item_id="1",
            data={"ModifiedAt": "2024-02-01T00:00:00.000Z"}, is_sync=True,
        ))

        stored = (await _raw_items(seeded))["1"]
        assert OFFLINE_STATE_MARKER not in stored
        assert stored["ModifiedAt"] == "2024-02-01T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_unsupported_update_operator(self, seeded):
        with pytest.raises(ReplicaError) as exc_info:
            await seeded.process_query(
                DataQuery("Tasks", Operation.RAW_UPDATE, item_id="1", data={"$push": {"Tags": "x"}})
            )
        assert exc_info.value.code == ErrorCode.OPERATION_NOT_SUPPORTED_OFFLINE


class TestOfflineDeletes:
    """Tests for deleting items offline."""

    @pytest.mark.asyncio
    async def test_delete_of_synced_item_is_marked(self, processor):
        await processor.process_query(DataQuery("Tasks", Operation.CREATE, data={"Id": "1"}, is_sync=True))

        response = await processor.process_query(DataQuery("Tasks", Operation.DESTROY_SINGLE, item_id="1"))
        assert response["result"] == 1
        assert (await _raw_items(processor))["1"][OFFLINE_STATE_MARKER] == "delete"

    @pytest.mark.asyncio
    async def test_delete_of_local_only_item_removes_it(self, processor):
        await processor.process_query(DataQuery("Tasks", Operation.CREATE, data={"Id": "1"}))
        await processor.process_query(DataQuery("Tasks", Operation.DESTROY_SINGLE, item_id="1"))

        assert await _raw_items(processor) == {}

    @pytest.mark.asyncio
    async def test_delete_missing_item(self, processor):
        with pytest.raises(ReplicaError) as exc_info:
            await processor.process_query(DataQuery("Tasks", Operation.DESTROY_SINGLE, item_id="nope"))
        assert exc_info.value.code == ErrorCode.ITEM_NOT_FOUND

        # Sync deletes of missing items are no-ops
        response = await processor.process_query(
            DataQuery("Tasks", Operation.DESTROY_SINGLE, item_id="nope", is_sync=True)
        )
        assert response["result"] == 0

    @pytest.mark.asyncio
    async def test_delete_by_filter(self, processor):
        await processor.process_query(DataQuery(
            "Tasks", Operation.CREATE, data=[{"Id": "1", "Done": True}, {"Id": "2", "Done": False}], is_sync=True,
        ))
        response = await processor.process_query(DataQuery("Tasks", Operation.DESTROY, filter={"Done": True}))

        assert response["result"] == 1
        dirty = await processor.get_dirty_items()
        assert [item["Id"] for item in dirty["Tasks"]] == ["1"]


class TestCapabilities:
    """Tests for offline capability checks."""

    def test_unsupported_queries(self, processor):
        assert processor.is_query_unsupported_offline(DataQuery("Tasks", Operation.SET_ACL, item_id="1"))
        assert processor.is_query_unsupported_offline(
            DataQuery("Tasks", Operation.READ, headers={"X-Replica-Power-Fields": "[]"})
        )
        assert processor.is_query_unsupported_offline(
            DataQuery("Tasks", Operation.READ, filter={"Loc": {"$near": [0, 0]}})
        )
        assert not processor.is_query_unsupported_offline(
            DataQuery("Tasks", Operation.READ, filter={"Price": {"$lt": 3}})
        )

    def test_server_generated_ids(self, processor):
        assert processor.should_autogenerate_id("Tasks")
        assert not processor.should_autogenerate_id("Users")
        assert not processor.should_autogenerate_id("system.files")

    @pytest.mark.asyncio
    async def test_purge(self, processor):
        await processor.process_query(DataQuery("Tasks", Operation.CREATE, data={"Title": "a"}))
        await processor.process_query(DataQuery("Notes", Operation.CREATE, data={"Title": "b"}))

        await processor.purge("Tasks")
        assert set(await processor.get_all_collections()) == {"Notes"}

        await processor.purge_all()
        assert await processor.get_all_collections() == {}


class TestOfflineFiles:
    """Tests for offline file content."""

    @pytest.mark.asyncio
    async def test_save_read_and_purge(self, temp_dir, dict_store):
        from replica.offline import OfflineFiles

        files = OfflineFiles(dict_store, temp_dir)
        path = await files.save_file("f1", "notes.txt", b"hello")

        assert path.name == "f1_notes.txt"
        assert await files.get_location("f1") == str(path)
        assert await files.read("f1") == b"hello"

        await files.purge("f1")
        assert not path.exists()
        assert await files.get_location("f1") is None

    @pytest.mark.asyncio
    async def test_missing_content_has_no_location(self, temp_dir, dict_store):
        from replica.offline import OfflineFiles

        files = OfflineFiles(dict_store, temp_dir)
        path = await files.save_file("f1", "a.bin", b"x")
        path.unlink()

        assert await files.get_location("f1") is None

    @pytest.mark.asyncio
    async def test_download_all(self, temp_dir, dict_store, server):
        from replica.offline import OfflineFiles

        server.file_contents = {"mem://a": b"A", "mem://b": b"B"}
        files = OfflineFiles(dict_store, temp_dir, max_concurrent_downloads=1)

        paths = await files.download_all(
            [{"Id": "a", "Uri": "mem://a", "Filename": "a.txt"}, {"Id": "b", "Uri": "mem://b"}],
            server,
        )

        assert [p.read_bytes() for p in paths] == [b"A", b"B"]
        assert await files.read("b") == b"B"

    @pytest.mark.asyncio
    async def test_download_requires_uri(self, temp_dir, dict_store, server):
        from replica.offline import OfflineFiles

        files = OfflineFiles(dict_store, temp_dir)
        with pytest.raises(ReplicaError) as exc_info:
            await files.download({"Id": "a"}, server)
        assert exc_info.value.code == ErrorCode.MISSING_OR_INVALID_FILE_CONTENT
