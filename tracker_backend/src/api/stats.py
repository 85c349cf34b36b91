"""
Per-owner aggregate counts for tasks and articles.

Pure functions over already-scoped entity lists; every known status and
priority is reported, with 0 for empty groups.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping

from .filters import matches_all, overdue_conditions
from .models import ARTICLE_STATUSES, TASK_PRIORITIES, TASK_STATUSES

TOP_CATEGORIES = 10


def _zeroed(keys: Iterable[str], counts: Mapping[str, int]) -> Dict[str, int]:
    return {k: int(counts.get(k, 0)) for k in keys}


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# PUBLIC_INTERFACE
def task_overview(tasks: Iterable[Mapping[str, Any]], now: datetime) -> Dict[str, Any]:
    """
    Summarize tasks.

    completed_this_week is a rolling 7x24h window ending at `now`, not a
    calendar week.
    """
    rows = list(tasks)
    by_status = Counter(t["status"] for t in rows)
    by_priority = Counter(t["priority"] for t in rows)
    overdue = overdue_conditions(now)
    week_ago = now - timedelta(days=7)
    return {
        "total": len(rows),
        "status": _zeroed(TASK_STATUSES, by_status),
        "priority": _zeroed(TASK_PRIORITIES, by_priority),
        "overdue": sum(1 for t in rows if matches_all(t, overdue)),
        "completed_this_week": sum(
            1
            for t in rows
            if t["status"] == "completed" and t.get("completed_at") is not None and week_ago <= t["completed_at"] <= now
        ),
    }


def top_categories(articles: Iterable[Mapping[str, Any]], limit: int = TOP_CATEGORIES) -> List[Dict[str, Any]]:
    """Most used categories, count descending then name ascending."""
    counts = Counter(a["category"] for a in articles if a.get("category"))
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{"category": name, "count": count} for name, count in ranked[:limit]]


# PUBLIC_INTERFACE
def article_overview(articles: Iterable[Mapping[str, Any]], now: datetime) -> Dict[str, Any]:
    """
    Summarize articles.

    published_this_month counts from day 1 of the current calendar month,
    not a rolling 30 days.
    """
    rows = list(articles)
    month_start = start_of_month(now)
    return {
        "total": len(rows),
        "status": _zeroed(ARTICLE_STATUSES, Counter(a["status"] for a in rows)),
        "categories": top_categories(rows),
        "total_views": sum(int(a.get("views") or 0) for a in rows),
        "published_this_month": sum(
            1
            for a in rows
            if a["status"] == "published" and a.get("published_at") is not None and a["published_at"] >= month_start
        ),
    }


# PUBLIC_INTERFACE
def categories_and_tags(articles: Iterable[Mapping[str, Any]]) -> Dict[str, List[str]]:
    rows = list(articles)
    return {
        "categories": sorted({a["category"] for a in rows if a.get("category")}),
        "tags": sorted({tag for a in rows for tag in a.get("tags") or []}),
    }
