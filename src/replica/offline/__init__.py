"""Offline execution of data queries against the local store."""

from replica.offline.files import OfflineFiles
from replica.offline.filtering import (
    SUPPORTED_OPERATORS,
    apply_query,
    matches_filter,
    unsupported_operators,
)
from replica.offline.processor import OfflineQueryProcessor

__all__ = [
    "OfflineFiles",
    "OfflineQueryProcessor",
    "SUPPORTED_OPERATORS",
    "apply_query",
    "matches_filter",
    "unsupported_operators",
]
