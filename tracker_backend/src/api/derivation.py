"""
Derived-field computation for tasks and articles.

Every function here is pure: it receives the previous snapshot (None on
create), the next snapshot and the current time, and returns a new dict.
Services call these right before persisting.
"""
from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any, Mapping, Optional

from .models import ArticleEntity, TaskEntity

WORDS_PER_MINUTE = 200

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RUN = re.compile(r"\s+")
_HYPHEN_RUN = re.compile(r"-+")


# PUBLIC_INTERFACE
def slugify(title: Optional[str]) -> str:
    """
    Derive a URL slug from a title.

    lowercase -> drop chars outside [a-z0-9 whitespace -] -> whitespace runs
    become one hyphen -> hyphen runs collapse -> trim hyphens.

    Returns '' when the title has no ASCII letters or digits.
    """
    if not title:
        return ""
    s = _NON_SLUG_CHARS.sub("", title.lower())
    s = _WHITESPACE_RUN.sub("-", s)
    s = _HYPHEN_RUN.sub("-", s)
    return s.strip("-")


def fallback_slug(entity_id: str) -> str:
    """Slug used when nothing can be derived from the title."""
    return f"untitled-{entity_id[:8]}"


# PUBLIC_INTERFACE
def word_count(content: Optional[str]) -> int:
    return len(content.split()) if content else 0


# PUBLIC_INTERFACE
def estimate_read_time(content: Optional[str]) -> int:
    """Minutes to read `content` at 200 words per minute, never less than 1."""
    return max(1, math.ceil(word_count(content) / WORDS_PER_MINUTE))


def _changed(previous: Optional[Mapping[str, Any]], current: Mapping[str, Any], field: str) -> bool:
    if previous is None:
        return current.get(field) is not None
    return previous.get(field) != current.get(field)


# PUBLIC_INTERFACE
def derive_task_fields(previous: Optional[TaskEntity], current: TaskEntity, now: datetime) -> TaskEntity:
    """
    Maintain completed_at from status transitions.

    Entering 'completed' stamps `now`; leaving it clears the stamp. A save
    that does not touch status leaves completed_at alone.
    """
    derived: TaskEntity = current.copy()  # type: ignore[assignment]
    if not _changed(previous, current, "status"):
        if previous is not None:
            derived["completed_at"] = previous.get("completed_at")
        return derived

    if derived["status"] == "completed":
        derived["completed_at"] = now
    else:
        derived["completed_at"] = None
    return derived


# PUBLIC_INTERFACE
def derive_article_fields(
    previous: Optional[ArticleEntity], current: ArticleEntity, now: datetime
) -> ArticleEntity:
    """
    Fill in slug, published_at and read_time, in that order.

    - slug: derived from title only when empty; falls back to
      'untitled-<id prefix>' if the title yields nothing.
    - published_at: stamped when status moves to 'published', cleared when
      it moves anywhere else, untouched otherwise.
    - read_time: recomputed when content changes.
    """
    derived: ArticleEntity = current.copy()  # type: ignore[assignment]

    if not derived.get("slug"):
        derived["slug"] = slugify(derived.get("title")) or fallback_slug(derived["id"])

    if _changed(previous, current, "status"):
        if derived["status"] == "published":
            derived["published_at"] = now
        else:
            derived["published_at"] = None
    elif previous is not None:
        derived["published_at"] = previous.get("published_at")

    if _changed(previous, current, "content"):
        derived["read_time"] = estimate_read_time(derived.get("content"))
    elif previous is not None:
        derived["read_time"] = previous.get("read_time", 1)
    else:
        derived["read_time"] = 1

    return derived
