"""
Conflict resolution strategies.

A strategy decides a ``ResolutionType`` for every ``ConflictRecord`` found
during a sync pass. The sync engine then turns each decision into local and
server operations.

Custom strategies are callables taking ``(conflicts, proceed)``. They set a
resolution on each record, for example::

    def resolve(conflicts, proceed):
        for content_type in conflicts:
            for record in content_type.conflicting_items:
                record.resolve(ResolutionType.KEEP_CLIENT)
        proceed()

``proceed`` may be called later from another task, and the callable may be a
coroutine function.
"""

from __future__ import annotations

import asyncio
import inspect
import logging

from replica.config import ConflictSettings
from replica.errors import ConfigurationError
from replica.schema.sync import (
    ConflictResolutionStrategy,
    ContentTypeConflicts,
    ResolutionType,
)

logger = logging.getLogger(__name__)


class ConflictResolver:
    """Applies the configured strategy to the conflicts of one sync pass."""

    def __init__(self, settings: ConflictSettings):
        self.settings = settings

    @property
    def strategy(self) -> ConflictResolutionStrategy:
        return self.settings.strategy

    async def apply(self, conflicts: list[ContentTypeConflicts]) -> None:
        """Assign a resolution to every conflicting item."""
        pending = [c for c in conflicts if c.conflicting_items]
        if not pending:
            return

        for content_type in pending:
            for record in content_type.conflicting_items:
                record.validate()

        total = sum(len(c.conflicting_items) for c in pending)
        logger.info(f"Resolving {total} conflict(s) with strategy {self.strategy.value}")

        if self.strategy == ConflictResolutionStrategy.SERVER_WINS:
            for content_type in pending:
                for record in content_type.conflicting_items:
                    record.resolve(ResolutionType.KEEP_SERVER)
        elif self.strategy == ConflictResolutionStrategy.CUSTOM:
            await self._run_custom(conflicts)
        else:
            # Client wins pushes local changes without looking for conflicts
            raise ConfigurationError(f"Invalid resolution strategy provided: {self.strategy.value}")

    async def _run_custom(self, conflicts: list[ContentTypeConflicts]) -> None:
        implementation = self.settings.implementation
        if implementation is None:
            raise ConfigurationError(
                "Implementation of the conflict resolution strategy must be provided when set to custom"
            )

        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()

        def proceed(*_args: object) -> None:
            if not done.done():
                done.set_result(None)

        result = implementation(conflicts, proceed)
        if inspect.isawaitable(result):
            await result
        await done
