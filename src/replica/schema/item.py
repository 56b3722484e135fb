"""
Helpers for items - plain ``dict`` records keyed by field name.

Timestamps travel as ISO 8601 strings. They are compared by instant, not by
text, because the server and the local store may format the same instant
differently.
"""

from __future__ import annotations

import copy
import re
from datetime import datetime, timezone
from typing import Any

from replica.constants import ID_FIELD, MODIFIED_AT_FIELD, OFFLINE_STATE_MARKER

Item = dict[str, Any]

_ISO_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$")


def utc_now_iso() -> str:
    """Current UTC time in the format the server uses."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp (or pass through a datetime). Returns None otherwise."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not _ISO_PATTERN.match(value):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def same_timestamp(left: Any, right: Any) -> bool:
    """Compare two timestamps by instant. Missing values are never equal."""
    if left is None or right is None:
        return False
    left_dt, right_dt = parse_timestamp(left), parse_timestamp(right)
    if left_dt is not None and right_dt is not None:
        return left_dt == right_dt
    return left == right


def item_id(item: Item) -> str | None:
    return item.get(ID_FIELD)


def item_state(item: Item) -> str | None:
    """The pending-mutation state of a locally stored item, if any."""
    return item.get(OFFLINE_STATE_MARKER)


def is_dirty(item: Item) -> bool:
    return bool(item.get(OFFLINE_STATE_MARKER))


def strip_state(item: Item) -> Item:
    """Copy of ``item`` without the local state marker."""
    clean = copy.deepcopy(item)
    clean.pop(OFFLINE_STATE_MARKER, None)
    return clean


def modified_at(item: Item | None) -> Any:
    return item.get(MODIFIED_AT_FIELD) if item else None
