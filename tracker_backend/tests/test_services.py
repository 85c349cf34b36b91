from datetime import timedelta

import pytest

from src.api.errors import ConflictError, InternalError, NotFoundError, ValidationError
from src.api.filters import TaskQuery
from src.api.repositories import InMemoryRepository
from src.api.schemas import (
    ArticleCreate,
    ArticleUpdate,
    SectionCreate,
    SectionUpdate,
    TaskCreate,
    TaskUpdate,
)
from src.api.services import ArticleService, SectionService, TaskService

OWNER = "alice"
OTHER_OWNER = "bob"


@pytest.fixture
def sections(repo, clock):
    return SectionService(repo, clock)


@pytest.fixture
def tasks(repo, clock):
    return TaskService(repo, clock)


@pytest.fixture
def articles(repo, clock):
    return ArticleService(repo, clock)


def new_section(service, name="Personal", owner=OWNER):
    return service.create(owner, SectionCreate(name=name))


def new_task(service, section_id, clock, name="Buy milk", owner=OWNER, **fields):
    fields.setdefault("due_date", clock() + timedelta(days=1))
    return service.create(owner, TaskCreate(name=name, section=section_id, **fields))


def new_article(service, title="Hello", owner=OWNER, **fields):
    return service.create(owner, ArticleCreate(title=title, **fields))


class TestSections:
    def test_create_applies_defaults(self, sections):
        section = new_section(sections)
        assert section["color"] == "#3b82f6"
        assert section["icon"] == "folder"
        assert section["archived"] is False
        assert len(section["id"]) == 32

    def test_active_name_is_unique_until_archived(self, sections):
        first = new_section(sections, "Work")
        with pytest.raises(ConflictError):
            new_section(sections, "Work")

        sections.archive(OWNER, first["id"], True)
        second = new_section(sections, "Work")
        assert second["id"] != first["id"]

        # Unarchiving the first would create two active "Work" sections.
        with pytest.raises(ConflictError):
            sections.archive(OWNER, first["id"], False)

    def test_same_name_allowed_for_other_owner(self, sections):
        new_section(sections, "Work")
        assert new_section(sections, "Work", owner=OTHER_OWNER)["name"] == "Work"

    def test_rename_into_existing_name_conflicts(self, sections):
        new_section(sections, "Work")
        home = new_section(sections, "Home")
        with pytest.raises(ConflictError) as exc:
            sections.update(OWNER, home["id"], SectionUpdate(name="Work"))
        assert exc.value.detail["field"] == "name"

    def test_list_splits_active_and_archived(self, sections):
        a = new_section(sections, "A")
        new_section(sections, "B")
        sections.archive(OWNER, a["id"])
        assert [s["name"] for s in sections.list(OWNER)] == ["B"]
        assert [s["name"] for s in sections.list(OWNER, archived=True)] == ["A"]

    def test_delete_blocked_by_tasks_until_moved(self, sections, tasks, clock):
        work = new_section(sections, "Work")
        home = new_section(sections, "Home")
        t1 = new_task(tasks, work["id"], clock, name="one")
        t2 = new_task(tasks, work["id"], clock, name="two")

        with pytest.raises(ConflictError) as exc:
            sections.delete(OWNER, work["id"])
        assert exc.value.detail == {"tasks_count": 2}
        assert sections.get(OWNER, work["id"])["tasks_count"] == 2

        for t in (t1, t2):
            tasks.update(OWNER, t["id"], TaskUpdate(section=home["id"]))
        sections.delete(OWNER, work["id"])
        with pytest.raises(NotFoundError):
            sections.get(OWNER, work["id"])

    def test_other_owner_cannot_see_section(self, sections):
        section = new_section(sections)
        with pytest.raises(NotFoundError):
            sections.get(OTHER_OWNER, section["id"])
        with pytest.raises(NotFoundError):
            sections.delete(OTHER_OWNER, section["id"])


class TestTasks:
    def test_requires_active_owned_section(self, sections, tasks, clock):
        archived = new_section(sections, "Old")
        sections.archive(OWNER, archived["id"])
        with pytest.raises(ValidationError):
            new_task(tasks, archived["id"], clock)

        foreign = new_section(sections, "Theirs", owner=OTHER_OWNER)
        with pytest.raises(ValidationError):
            new_task(tasks, foreign["id"], clock)

    def test_completed_at_follows_status(self, sections, tasks, clock):
        section = new_section(sections)
        task = new_task(tasks, section["id"], clock)
        assert task["completed_at"] is None

        clock.advance(hours=1)
        done = tasks.update(OWNER, task["id"], TaskUpdate(status="completed"))
        assert done["completed_at"] == clock()

        clock.advance(hours=1)
        renamed = tasks.update(OWNER, task["id"], TaskUpdate(name="Buy oat milk"))
        assert renamed["completed_at"] == done["completed_at"]

        reopened = tasks.update(OWNER, task["id"], TaskUpdate(status="pending"))
        assert reopened["completed_at"] is None

    def test_linked_articles_must_exist(self, sections, tasks, articles, clock):
        section = new_section(sections)
        article = new_article(articles)
        task = new_task(tasks, section["id"], clock, linked_articles=[article["id"], article["id"]])
        assert task["linked_articles"] == [article["id"]]

        with pytest.raises(ValidationError) as exc:
            new_task(tasks, section["id"], clock, linked_articles=[article["id"], "f" * 32])
        assert exc.value.detail["requested"] == 2
        assert exc.value.detail["found"] == 1

    def test_list_second_page(self, sections, tasks, clock):
        section = new_section(sections)
        for i in range(25):
            new_task(tasks, section["id"], clock, name=f"Task {i}")
            clock.advance(seconds=1)
        items, total = tasks.list(OWNER, TaskQuery(page=2, limit=10))
        assert total == 25
        assert len(items) == 10
        assert items[0]["name"] == "Task 14"

    def test_list_is_owner_scoped(self, sections, tasks, clock):
        mine = new_section(sections)
        theirs = new_section(sections, owner=OTHER_OWNER)
        new_task(tasks, mine["id"], clock)
        new_task(tasks, theirs["id"], clock, owner=OTHER_OWNER)
        items, total = tasks.list(OWNER)
        assert total == 1
        assert items[0]["section"] == mine["id"]

    def test_search_and_tags(self, sections, tasks, clock):
        section = new_section(sections)
        new_task(tasks, section["id"], clock, name="Buy MILK", tags=["errands"])
        new_task(tasks, section["id"], clock, name="Write report", notes="milk the data", tags=["work"])
        new_task(tasks, section["id"], clock, name="Gym", tags=["health"])

        _, total = tasks.list(OWNER, TaskQuery(search="milk"))
        assert total == 2
        items, _ = tasks.list(OWNER, TaskQuery(tags=("work", "health"), sort_by="name", sort_order="asc"))
        assert [t["name"] for t in items] == ["Gym", "Write report"]

    def test_bulk_update_is_all_or_nothing(self, sections, tasks, clock):
        section = new_section(sections)
        t1 = new_task(tasks, section["id"], clock, name="one")
        t2 = new_task(tasks, section["id"], clock, name="two")
        foreign_section = new_section(sections, owner=OTHER_OWNER)
        foreign = new_task(tasks, foreign_section["id"], clock, owner=OTHER_OWNER)

        with pytest.raises(NotFoundError):
            tasks.bulk_update(OWNER, [t1["id"], foreign["id"]], TaskUpdate(status="completed"))
        assert tasks.get(OWNER, t1["id"])["status"] == "pending"

        modified = tasks.bulk_update(OWNER, [t1["id"], t2["id"], t1["id"]], TaskUpdate(status="completed"))
        assert modified == 2
        assert tasks.get(OWNER, t2["id"])["completed_at"] == clock()

        # Already completed: nothing changes.
        assert tasks.bulk_update(OWNER, [t1["id"]], TaskUpdate(status="completed")) == 0

    def test_stats_overdue_flips_with_time(self, sections, tasks, clock):
        section = new_section(sections)
        assert section["color"] == "#3b82f6"
        new_task(tasks, section["id"], clock)

        stats = tasks.stats(OWNER)
        assert stats["total"] == 1
        assert stats["status"]["pending"] == 1
        assert stats["overdue"] == 0

        clock.advance(days=2)
        assert tasks.stats(OWNER)["overdue"] == 1

    def test_completed_this_week_is_rolling(self, sections, tasks, clock):
        section = new_section(sections)
        task = new_task(tasks, section["id"], clock)
        tasks.update(OWNER, task["id"], TaskUpdate(status="completed"))
        assert tasks.stats(OWNER)["completed_this_week"] == 1
        clock.advance(days=8)
        assert tasks.stats(OWNER)["completed_this_week"] == 0

    def test_stats_for_one_section(self, sections, tasks, clock):
        a = new_section(sections, "A")
        b = new_section(sections, "B")
        new_task(tasks, a["id"], clock, priority="high")
        new_task(tasks, b["id"], clock)
        stats = tasks.stats(OWNER, a["id"])
        assert stats["total"] == 1
        assert stats["priority"] == {"low": 0, "medium": 0, "high": 1, "urgent": 0}
        assert stats["section"] == {"id": a["id"], "name": "A", "color": "#3b82f6", "icon": "folder"}
        assert "section" not in tasks.stats(OWNER)

    def test_stats_for_unknown_or_foreign_section(self, sections, tasks, clock):
        foreign = new_section(sections, "Theirs", owner=OTHER_OWNER)
        new_task(tasks, foreign["id"], clock, owner=OTHER_OWNER)
        with pytest.raises(NotFoundError):
            tasks.stats(OWNER, foreign["id"])
        with pytest.raises(NotFoundError):
            tasks.stats(OWNER, "0" * 32)

    def test_stats_for_archived_section(self, sections, tasks, clock):
        section = new_section(sections)
        new_task(tasks, section["id"], clock)
        sections.archive(OWNER, section["id"])
        assert tasks.stats(OWNER, section["id"])["total"] == 1

    def test_responses_carry_reference_summaries(self, sections, tasks, articles, clock):
        section = new_section(sections, "Errands")
        first = new_article(articles, "First")
        second = new_article(articles, "Second", content="x", status="published")
        task = new_task(tasks, section["id"], clock, linked_articles=[second["id"], first["id"]])

        assert task["section_summary"] == {
            "id": section["id"], "name": "Errands", "color": "#3b82f6", "icon": "folder"
        }
        assert [a["slug"] for a in task["linked_article_summaries"]] == ["second", "first"]
        assert task["linked_article_summaries"][0] == {
            "id": second["id"], "title": "Second", "slug": "second", "status": "published"
        }

        items, _ = tasks.list(OWNER)
        assert items[0]["section_summary"]["name"] == "Errands"

    def test_deleted_article_drops_out_of_summaries(self, sections, tasks, articles, clock):
        section = new_section(sections)
        kept = new_article(articles, "Kept")
        gone = new_article(articles, "Gone")
        task = new_task(tasks, section["id"], clock, linked_articles=[gone["id"], kept["id"]])

        articles.delete(OWNER, gone["id"])
        fetched = tasks.get(OWNER, task["id"])
        # The stale id stays on the task; only the summary disappears.
        assert fetched["linked_articles"] == [gone["id"], kept["id"]]
        assert [a["id"] for a in fetched["linked_article_summaries"]] == [kept["id"]]

    def test_summaries_are_not_stored(self, repo, sections, tasks, clock):
        section = new_section(sections)
        task = new_task(tasks, section["id"], clock)
        tasks.update(OWNER, task["id"], TaskUpdate(name="Renamed"))
        stored = repo.get("tasks", OWNER, task["id"])
        assert "section_summary" not in stored
        assert "linked_article_summaries" not in stored


class TestArticles:
    def test_slug_derived_and_unique(self, articles):
        article = new_article(articles, "My First Post!!")
        assert article["slug"] == "my-first-post"
        with pytest.raises(ConflictError):
            new_article(articles, "My first post")
        assert new_article(articles, "My first post", owner=OTHER_OWNER)["slug"] == "my-first-post"

    def test_lookup_by_id_or_slug_and_count_views(self, articles):
        article = new_article(articles, "Lookup Me")
        assert articles.get(OWNER, "lookup-me")["id"] == article["id"]
        assert articles.get(OWNER, article["id"], increment_views=True)["views"] == 1
        assert articles.get(OWNER, "lookup-me", increment_views=True)["views"] == 2
        with pytest.raises(NotFoundError):
            articles.get(OTHER_OWNER, "lookup-me")

    def test_publishing_requires_content(self, articles):
        with pytest.raises(ValidationError):
            new_article(articles, "Empty", status="published")
        draft = new_article(articles, "Empty")
        with pytest.raises(ValidationError):
            articles.update(OWNER, draft["id"], ArticleUpdate(status="published"))

    def test_publish_and_read_time(self, articles, clock):
        article = new_article(articles, "Long read", content=" ".join(["word"] * 401))
        assert article["read_time"] == 3
        assert article["published_at"] is None
        clock.advance(minutes=5)
        published = articles.update(OWNER, article["id"], ArticleUpdate(status="published"))
        assert published["published_at"] == clock()

    def test_empty_slug_on_update_rederives(self, articles):
        article = new_article(articles, "First", slug="custom-slug")
        renamed = articles.update(OWNER, article["id"], ArticleUpdate(title="Second Title", slug=""))
        assert renamed["slug"] == "second-title"

    def test_reject_self_reference(self, articles):
        article = new_article(articles)
        with pytest.raises(ValidationError):
            articles.update(OWNER, article["id"], ArticleUpdate(referenced_articles=[article["id"]]))

    def test_referenced_article_summaries(self, articles):
        a = new_article(articles, "A")
        b = new_article(articles, "B", referenced_articles=[a["id"]])
        assert b["referenced_article_summaries"] == [
            {"id": a["id"], "title": "A", "slug": "a", "status": "draft"}
        ]
        assert articles.get(OWNER, "b")["referenced_article_summaries"][0]["id"] == a["id"]
        items, _ = articles.list(OWNER)
        by_slug = {i["slug"]: i for i in items}
        assert by_slug["a"]["referenced_article_summaries"] == []
        assert by_slug["b"]["referenced_article_summaries"][0]["slug"] == "a"

    def test_cycles_are_allowed(self, articles):
        a = new_article(articles, "A")
        b = new_article(articles, "B", referenced_articles=[a["id"]])
        updated = articles.update(OWNER, a["id"], ArticleUpdate(referenced_articles=[b["id"]]))
        assert updated["referenced_articles"] == [b["id"]]

    def test_delete_pulls_references_within_owner(self, articles):
        target = new_article(articles, "Target")
        b = new_article(articles, "B", referenced_articles=[target["id"]])
        c = new_article(articles, "C", referenced_articles=[target["id"]])
        untouched = new_article(articles, "D")
        foreign = new_article(articles, "Foreign", owner=OTHER_OWNER)

        assert articles.delete(OWNER, target["id"]) == 2
        assert articles.get(OWNER, b["id"])["referenced_articles"] == []
        assert articles.get(OWNER, c["id"])["referenced_articles"] == []
        assert articles.get(OWNER, untouched["id"])["referenced_articles"] == []
        assert articles.get(OTHER_OWNER, foreign["id"])["title"] == "Foreign"
        with pytest.raises(NotFoundError):
            articles.get(OWNER, target["id"])

    def test_delete_missing_article(self, articles):
        with pytest.raises(NotFoundError):
            articles.delete(OWNER, "0" * 32)

    def test_stats_and_meta(self, articles, clock):
        new_article(articles, "One", category="dev", tags=["py", "web"], content="x", status="published")
        new_article(articles, "Two", category="dev", tags=["py"])
        new_article(articles, "Three", category="life", tags=["home"])
        stats = articles.stats(OWNER)
        assert stats["total"] == 3
        assert stats["status"] == {"draft": 2, "published": 1, "archived": 0}
        assert stats["categories"] == [{"category": "dev", "count": 2}, {"category": "life", "count": 1}]
        assert stats["published_this_month"] == 1

        clock.advance(days=30)
        assert articles.stats(OWNER)["published_this_month"] == 0

        meta = articles.categories_and_tags(OWNER)
        assert meta == {"categories": ["dev", "life"], "tags": ["home", "py", "web"]}


class _FailingReplaceRepository(InMemoryRepository):
    """Fails the n-th replace call to exercise rollback."""

    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on
        self.replaces = 0

    def replace(self, kind, entity):
        self.replaces += 1
        if self.replaces == self.fail_on:
            raise InternalError("disk full")
        return super().replace(kind, entity)


def test_failed_cascade_rolls_back_in_memory(clock):
    repo = _FailingReplaceRepository(fail_on=2)
    service = ArticleService(repo, clock)
    target = new_article(service, "Target")
    b = new_article(service, "B", referenced_articles=[target["id"]])
    c = new_article(service, "C", referenced_articles=[target["id"]])

    with pytest.raises(InternalError):
        service.delete(OWNER, target["id"])

    assert service.get(OWNER, target["id"])["title"] == "Target"
    assert service.get(OWNER, b["id"])["referenced_articles"] == [target["id"]]
    assert service.get(OWNER, c["id"])["referenced_articles"] == [target["id"]]
