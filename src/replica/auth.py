"""
Authentication collaborators.

The client only needs to know whether authentication is under way, to wait
for it, and to ask for a fresh token after a token error. The wire protocol
for obtaining tokens belongs to the application.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from replica.errors import ErrorCode, ReplicaError

logger = logging.getLogger(__name__)

TokenRefresher = Callable[[], Awaitable[str]]


class Authentication:
    """Anonymous access. Never authenticating, no headers."""

    def is_authentication_in_progress(self) -> bool:
        return False

    def is_authenticating(self) -> bool:
        return False

    async def wait_for_authentication(self) -> None:
        return None

    async def ensure_authentication(self) -> None:
        raise ReplicaError.from_code(ErrorCode.INVALID_TOKEN)

    def auth_headers(self) -> dict[str, str]:
        return {}


class TokenAuthentication(Authentication):
    """
    Bearer-style token authentication with optional refresh.

    ``refresh`` is an async callable returning a new access token. Concurrent
    callers of ``ensure_authentication`` share one refresh.
    """

    def __init__(
        self,
        token: str | None = None,
        token_type: str = "Bearer",
        refresh: TokenRefresher | None = None,
    ):
        self.token = token
        self.token_type = token_type
        self._refresh = refresh
        self._refreshing: asyncio.Task | None = None

    def is_authentication_in_progress(self) -> bool:
        return self._refreshing is not None and not self._refreshing.done()

    def is_authenticating(self) -> bool:
        return self.is_authentication_in_progress()

    async def wait_for_authentication(self) -> None:
        if self.is_authentication_in_progress():
            await asyncio.shield(self._refreshing)

    async def _do_refresh(self) -> None:
        self.token = await self._refresh()
        logger.debug("Access token refreshed")

    async def ensure_authentication(self) -> None:
        if self._refresh is None:
            raise ReplicaError.from_code(ErrorCode.INVALID_TOKEN)
        if not self.is_authentication_in_progress():
            self._refreshing = asyncio.create_task(self._do_refresh())
        await asyncio.shield(self._refreshing)

    def auth_headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"{self.token_type} {self.token}"}
