from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Sequence, Union


# PUBLIC_INTERFACE
def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# PUBLIC_INTERFACE
def new_id() -> str:
    """Return a fresh 32-char lowercase hex entity id."""
    return uuid.uuid4().hex


def dedupe(values: Iterable[str]) -> List[str]:
    """Drop repeated values, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for v in values:
        seen.setdefault(v, None)
    return list(seen)


# PUBLIC_INTERFACE
def pagination_envelope(
    items: Union[Sequence[Any], Iterable[Any]],
    total: int,
    page: int,
    limit: int,
) -> Dict[str, Any]:
    """
    Build a standard pagination envelope for list endpoints.

    Args:
        items: The list/iterable of items for the current page.
        total: Total number of items that match the query (ignoring pagination).
        page: 1-based page number used for the query.
        limit: Page size used for the query.

    Returns:
        Dict with keys: items, pagination{current, total_pages, count, total_count}.
    """
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    limit = max(int(limit), 1)
    return {
        "items": materialized,
        "pagination": {
            "current": int(page),
            "total_pages": math.ceil(int(total) / limit),
            "count": len(materialized),
            "total_count": int(total),
        },
    }
