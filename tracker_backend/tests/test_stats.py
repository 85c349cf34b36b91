from datetime import datetime, timedelta, timezone

from src.api.stats import article_overview, categories_and_tags, start_of_month, task_overview, top_categories

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def task(status="pending", priority="medium", due_in_days=1, completed_at=None):
    return {
        "status": status,
        "priority": priority,
        "due_date": NOW + timedelta(days=due_in_days),
        "completed_at": completed_at,
    }


def article(status="draft", category=None, views=0, published_at=None, tags=()):
    return {
        "status": status,
        "category": category,
        "views": views,
        "published_at": published_at,
        "tags": list(tags),
    }


def test_empty_task_overview_reports_every_bucket():
    stats = task_overview([], NOW)
    assert stats == {
        "total": 0,
        "status": {"pending": 0, "in-progress": 0, "completed": 0, "cancelled": 0},
        "priority": {"low": 0, "medium": 0, "high": 0, "urgent": 0},
        "overdue": 0,
        "completed_this_week": 0,
    }


def test_task_overview_counts():
    rows = [
        task(due_in_days=-1),
        task(status="cancelled", due_in_days=-1),
        task(status="completed", due_in_days=-5, completed_at=NOW - timedelta(days=6, hours=23)),
        task(status="completed", completed_at=NOW - timedelta(days=7, seconds=1)),
        task(priority="urgent"),
    ]
    stats = task_overview(rows, NOW)
    assert stats["total"] == 5
    assert stats["status"]["completed"] == 2
    assert stats["priority"]["urgent"] == 1
    assert stats["overdue"] == 1
    assert stats["completed_this_week"] == 1


def test_top_categories_ties_break_by_name_and_cap_at_ten():
    rows = [article(category=f"c{i:02d}") for i in range(12)] + [article(category="c11")]
    ranked = top_categories(rows)
    assert len(ranked) == 10
    assert ranked[0] == {"category": "c11", "count": 2}
    assert [r["category"] for r in ranked[1:3]] == ["c00", "c01"]


def test_article_overview_month_window():
    rows = [
        article(status="published", views=3, published_at=datetime(2025, 3, 1, tzinfo=timezone.utc)),
        article(status="published", views=4, published_at=datetime(2025, 2, 28, 23, 59, tzinfo=timezone.utc)),
        article(views=5),
    ]
    stats = article_overview(rows, NOW)
    assert stats["total_views"] == 12
    assert stats["published_this_month"] == 1
    assert stats["status"] == {"draft": 1, "published": 2, "archived": 0}


def test_start_of_month():
    assert start_of_month(NOW) == datetime(2025, 3, 1, tzinfo=timezone.utc)


def test_categories_and_tags_are_sorted_and_distinct():
    rows = [article(category="b", tags=["y", "x"]), article(category="a", tags=["x"]), article()]
    assert categories_and_tags(rows) == {"categories": ["a", "b"], "tags": ["x", "y"]}
