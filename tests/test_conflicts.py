"""Tests for conflict resolution strategies."""

import pytest

from replica.config import ConflictSettings
from replica.errors import ConfigurationError
from replica.schema.sync import ConflictRecord, ContentTypeConflicts, ResolutionType
from replica.sync.conflicts import ConflictResolver


def _conflicts():
    return [
        ContentTypeConflicts(
            "Tasks",
            [
                ConflictRecord({"Id": "1", "Title": "client"}, {"Id": "1", "Title": "server"}),
                ConflictRecord(None, {"Id": "2"}),
            ],
        ),
        ContentTypeConflicts("Notes", []),
    ]


class TestConflictRecord:
    """Tests for conflict records."""

    def test_requires_one_side(self):
        with pytest.raises(ConfigurationError):
            ConflictRecord(None, None)

    def test_resolve_accepts_strings(self):
        record = ConflictRecord({"Id": "1"}, None)
        record.resolve("keepClient")
        assert record.result.resolution_type == ResolutionType.KEEP_CLIENT


class TestConflictResolver:
    """Tests for applying a strategy to a pass's conflicts."""

    @pytest.mark.asyncio
    async def test_server_wins(self):
        conflicts = _conflicts()
        await ConflictResolver(ConflictSettings(strategy="serverWins")).apply(conflicts)

        resolutions = [r.result.resolution_type for r in conflicts[0].conflicting_items]
        assert resolutions == [ResolutionType.KEEP_SERVER, ResolutionType.KEEP_SERVER]

    @pytest.mark.asyncio
    async def test_custom_is_called_once_with_every_type(self):
        calls = []

        def implementation(conflicts, proceed):
            calls.append([c.content_type_name for c in conflicts])
            conflicts[0].conflicting_items[0].resolve(ResolutionType.CUSTOM, {"Title": "merged"})
            proceed()

        conflicts = _conflicts()
        await ConflictResolver(ConflictSettings(strategy="custom", implementation=implementation)).apply(conflicts)

        assert calls == [["Tasks", "Notes"]]
        first = conflicts[0].conflicting_items[0].result
        assert (first.resolution_type, first.item) == (ResolutionType.CUSTOM, {"Title": "merged"})
        assert conflicts[0].conflicting_items[1].result.resolution_type is None

    @pytest.mark.asyncio
    async def test_custom_coroutine(self):
        async def implementation(conflicts, proceed):
            for record in conflicts[0].conflicting_items:
                record.resolve(ResolutionType.SKIP)
            proceed()

        conflicts = _conflicts()
        await ConflictResolver(ConflictSettings(strategy="custom", implementation=implementation)).apply(conflicts)

        assert all(r.result.resolution_type == ResolutionType.SKIP for r in conflicts[0].conflicting_items)

    @pytest.mark.asyncio
    async def test_custom_without_implementation(self):
        with pytest.raises(ConfigurationError):
            await ConflictResolver(ConflictSettings(strategy="custom")).apply(_conflicts())

    @pytest.mark.asyncio
    async def test_client_wins_never_resolves(self):
        with pytest.raises(ConfigurationError):
            await ConflictResolver(ConflictSettings(strategy="clientWins")).apply(_conflicts())

    @pytest.mark.asyncio
    async def test_no_conflicts_is_a_no_op(self):
        """The implementation is not called when nothing conflicts."""

        def implementation(conflicts, proceed):
            raise AssertionError("not expected")

        resolver = ConflictResolver(ConflictSettings(strategy="custom", implementation=implementation))
        await resolver.apply([ContentTypeConflicts("Tasks", [])])

    def test_invalid_strategy_name(self):
        with pytest.raises(ValueError):
            ConflictSettings(strategy="lastWriteWins")
