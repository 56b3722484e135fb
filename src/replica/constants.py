"""
Constants shared across the SDK core.
"""

from __future__ import annotations

ID_FIELD = "Id"
CREATED_AT_FIELD = "CreatedAt"
MODIFIED_AT_FIELD = "ModifiedAt"

# Field names starting with a double underscore are rejected by the server,
# so the marker can never collide with user data.
OFFLINE_STATE_MARKER = "__replica_offline_state"

# Server items fetched per request while collecting sync state
SYNC_BATCH_SIZE = 10

# Upper bound on sync passes triggered by conflicts found during replay
DEFAULT_MAX_SYNC_PASSES = 10

DEFAULT_SYNC_INTERVAL_SECONDS = 60 * 10

DEFAULT_CACHE_MAX_AGE_MINUTES = 60

DEFAULT_STORAGE_PATH = "~/.replica/store"
DEFAULT_FILES_STORAGE_PATH = "~/.replica/files"
OFFLINE_STORE_KEY = "__replica_offline"
CACHE_STORE_KEY = "__replica_cache"
FILES_LOCATION_KEY = "__replica_file_locations"

MAX_CONCURRENT_DOWNLOADS = 3

FILES_TYPE_NAME = "Files"
FILES_TYPE_NAME_LEGACY = "system.files"
USERS_TYPE_NAME = "Users"
USERS_TYPE_NAME_LEGACY = "system.users"

FILE_UPLOAD_KEY = "fileUpload"
FILE_UPLOAD_DELIMITER = "_"


class Headers:
    """Request headers understood by the backend."""

    FILTER = "X-Replica-Filter"
    SELECT = "X-Replica-Fields"
    SORT = "X-Replica-Sort"
    SKIP = "X-Replica-Skip"
    TAKE = "X-Replica-Take"
    EXPAND = "X-Replica-Expand"
    SINGLE_FIELD = "X-Replica-Single-Field"
    INCLUDE_COUNT = "X-Replica-Include-Count"
    POWER_FIELDS = "X-Replica-Power-Fields"
    SDK = "X-Replica-Sdk"
    SYNC = "X-Replica-Sync"


def is_files_type(content_type: str) -> bool:
    """Check whether a content type holds file metadata."""
    return content_type.lower() in (FILES_TYPE_NAME.lower(), FILES_TYPE_NAME_LEGACY)


def is_users_type(content_type: str) -> bool:
    """Check whether a content type holds user accounts."""
    return content_type.lower() in (USERS_TYPE_NAME.lower(), USERS_TYPE_NAME_LEGACY)
