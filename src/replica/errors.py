"""
Error types raised by the SDK.

Every error carries a numeric ``code``. Codes below 1000 mirror the backend's
own error codes so that server failures and local failures can be handled
the same way by callers.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Numeric error codes."""

    GENERAL = 0
    GENERAL_DATABASE_ERROR = 107
    INVALID_TOKEN = 301
    EXPIRED_TOKEN = 302
    INVALID_REQUEST = 601
    INVALID_EXPAND_EXPRESSION = 618
    MISSING_CONTENT_TYPE = 701
    MISSING_OR_INVALID_FILE_CONTENT = 702
    CUSTOM_FILE_SYNC_NOT_SUPPORTED = 703
    CANNOT_DOWNLOAD_OFFLINE = 704
    CANNOT_FORCE_CACHE_WHEN_DISABLED = 705
    ITEM_NOT_FOUND = 801
    SYNC_CONFLICT = 10001
    SYNC_ERROR = 10002
    SYNC_IN_PROGRESS = 10003
    NON_CONVERGENT_SYNC = 10005
    OPERATION_NOT_SUPPORTED_OFFLINE = 20000


MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.GENERAL_DATABASE_ERROR: "General database error.",
    ErrorCode.INVALID_TOKEN: "Invalid access token.",
    ErrorCode.EXPIRED_TOKEN: "Expired access token.",
    ErrorCode.INVALID_REQUEST: "Invalid request.",
    ErrorCode.INVALID_EXPAND_EXPRESSION: "Invalid expand expression.",
    ErrorCode.MISSING_CONTENT_TYPE: "ContentType not specified.",
    ErrorCode.MISSING_OR_INVALID_FILE_CONTENT: "Missing or invalid file content.",
    ErrorCode.CUSTOM_FILE_SYNC_NOT_SUPPORTED: "Custom ConflictResolution for files is not allowed.",
    ErrorCode.CANNOT_DOWNLOAD_OFFLINE: "Cannot download a file while offline.",
    ErrorCode.CANNOT_FORCE_CACHE_WHEN_DISABLED: "Cannot use forceCache while the caching is disabled.",
    ErrorCode.ITEM_NOT_FOUND: "Item not found.",
    ErrorCode.SYNC_CONFLICT: "A conflict occurred while syncing data.",
    ErrorCode.SYNC_ERROR: "Synchronization failed for item.",
    ErrorCode.SYNC_IN_PROGRESS: "Cannot perform operation while synchronization is in progress.",
    ErrorCode.NON_CONVERGENT_SYNC: (
        "Conflicts did not converge within the allowed number of sync passes."
    ),
}

TOKEN_ERROR_CODES = frozenset({ErrorCode.INVALID_TOKEN, ErrorCode.EXPIRED_TOKEN})


class ReplicaError(Exception):
    """Base error for every failure surfaced by the SDK."""

    def __init__(self, message: str | None = None, code: int = ErrorCode.GENERAL):
        if message is None:
            message = MESSAGES.get(code, "Unknown error.")
        super().__init__(message)
        self.message = message
        self.code = int(code)

    @classmethod
    def from_code(cls, code: ErrorCode, message: str | None = None) -> ReplicaError:
        """Create an error with the default message for ``code``."""
        return cls(message or MESSAGES.get(code), code)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for event payloads and logs."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code}, message={self.message!r})"


class ConfigurationError(ReplicaError):
    """Raised for invalid or incomplete SDK configuration. Always fatal."""


class SyncItemError(ReplicaError):
    """
    Replay failure for one item (or one batched create).

    Collected into ``SyncResultInfo.failed_items``; never escapes ``sync()``.
    """

    def __init__(
        self,
        *,
        item_state: str,
        content_type: str,
        storage: str,
        error: BaseException | None,
        item_id: str | None = None,
        items: list[dict[str, Any]] | None = None,
    ):
        code = error.code if isinstance(error, ReplicaError) else ErrorCode.SYNC_ERROR
        message = error.message if isinstance(error, ReplicaError) else str(error or "")
        super().__init__(message or MESSAGES[ErrorCode.SYNC_ERROR], code)
        self.item_state = item_state
        self.content_type = content_type
        self.storage = storage
        self.error = error
        self.item_id = item_id
        self.items = items

    @property
    def is_conflict(self) -> bool:
        return self.code == ErrorCode.SYNC_CONFLICT


def offline_not_supported(detail: str) -> ReplicaError:
    """Build the error raised for queries the offline store cannot execute."""
    return ReplicaError(
        f"The current query is not supported in offline storage: {detail}",
        ErrorCode.OPERATION_NOT_SUPPORTED_OFFLINE,
    )
