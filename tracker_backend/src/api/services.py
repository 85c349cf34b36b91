"""
Owner-scoped operations on sections, tasks and articles.

Each write runs inside one `repo.atomic()` unit: reference checks, derived
fields and the uniqueness pre-check happen there, and the backend enforces
uniqueness again when the row is written.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .derivation import derive_article_fields, derive_task_fields
from .errors import NotFoundError, ValidationError
from .filters import ArticleQuery, Eq, In, Sort, TaskQuery
from .integrity import ReferentialIntegrity
from .models import (
    ARTICLE_SUMMARY_FIELDS,
    ARTICLES,
    DEFAULT_SECTION_COLOR,
    DEFAULT_SECTION_ICON,
    ID_PATTERN,
    SECTION_SUMMARY_FIELDS,
    SECTIONS,
    TASKS,
    ArticleEntity,
    SectionEntity,
    TaskEntity,
)
from .repositories import Entity, Repository
from .schemas import ArticleCreate, ArticleUpdate, SectionCreate, SectionUpdate, TaskCreate, TaskUpdate
from .stats import article_overview, categories_and_tags, task_overview
from .utils import as_utc, dedupe, new_id, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class _Service:
    def __init__(self, repo: Repository, clock: Clock = utcnow) -> None:
        self._repo = repo
        self._clock = clock
        self._integrity = ReferentialIntegrity(repo)

    def _now(self) -> datetime:
        return as_utc(self._clock())

    def _summaries(
        self, kind: str, owner_id: str, ids: Iterable[str], fields: Sequence[str]
    ) -> Dict[str, Dict[str, Any]]:
        """
        Resolve referenced ids to small summaries with a single lookup.

        Ids the owner no longer holds are simply absent from the result.
        """
        wanted = dedupe(ids)
        if not wanted:
            return {}
        rows = self._repo.find(kind, owner_id, [In("id", tuple(wanted))])
        return {row["id"]: {f: row.get(f) for f in fields} for row in rows}


# PUBLIC_INTERFACE
class SectionService(_Service):
    """CRUD and archiving for sections."""

    def create(self, owner_id: str, data: SectionCreate) -> SectionEntity:
        now = self._now()
        entity: SectionEntity = {
            "id": new_id(),
            "owner_id": owner_id,
            "name": data.name,
            "description": data.description,
            "color": data.color or DEFAULT_SECTION_COLOR,
            "icon": data.icon or DEFAULT_SECTION_ICON,
            "archived": False,
            "created_at": now,
            "updated_at": now,
        }
        with self._repo.atomic():
            self._integrity.check_unique(SECTIONS, entity)  # type: ignore[arg-type]
            created = self._repo.insert(SECTIONS, entity)  # type: ignore[arg-type]
        logger.info("Created section %s for owner %s", entity["id"], owner_id)
        return created  # type: ignore[return-value]

    def _get_or_404(self, owner_id: str, section_id: str) -> Entity:
        section = self._repo.get(SECTIONS, owner_id, section_id)
        if section is None:
            raise NotFoundError("Section not found")
        return section

    def get(self, owner_id: str, section_id: str) -> Dict[str, Any]:
        """Return the section together with the number of tasks filed under it."""
        with self._repo.atomic(readonly=True):
            section = self._get_or_404(owner_id, section_id)
            section["tasks_count"] = self._repo.count(TASKS, owner_id, [Eq("section", section_id)])
        return section

    def list(self, owner_id: str, archived: bool = False) -> List[SectionEntity]:
        return self._repo.find(  # type: ignore[return-value]
            SECTIONS, owner_id, [Eq("archived", archived)], sort=Sort("created_at", descending=True)
        )

    def update(self, owner_id: str, section_id: str, data: SectionUpdate) -> SectionEntity:
        changes = data.model_dump(exclude_unset=True)
        with self._repo.atomic():
            existing = self._get_or_404(owner_id, section_id)
            updated = {**existing, **changes, "updated_at": self._now()}
            if updated["name"] != existing["name"]:
                self._integrity.check_unique(SECTIONS, updated)
            saved = self._repo.replace(SECTIONS, updated)
        return saved  # type: ignore[return-value]

    def archive(self, owner_id: str, section_id: str, archive: bool = True) -> SectionEntity:
        """Archive or unarchive. Unarchiving fails if an active section already uses the name."""
        with self._repo.atomic():
            existing = self._get_or_404(owner_id, section_id)
            updated = {**existing, "archived": archive, "updated_at": self._now()}
            if not archive and existing["archived"]:
                self._integrity.check_unique(SECTIONS, updated)
            saved = self._repo.replace(SECTIONS, updated)
        logger.info("%s section %s", "Archived" if archive else "Unarchived", section_id)
        return saved  # type: ignore[return-value]

    def delete(self, owner_id: str, section_id: str) -> None:
        with self._repo.atomic():
            self._get_or_404(owner_id, section_id)
            self._integrity.ensure_section_deletable(owner_id, section_id)
            self._repo.delete(SECTIONS, owner_id, section_id)
        logger.info("Deleted section %s", section_id)


# PUBLIC_INTERFACE
class TaskService(_Service):
    """CRUD, listing, bulk updates and statistics for tasks."""

    def create(self, owner_id: str, data: TaskCreate) -> TaskEntity:
        now = self._now()
        with self._repo.atomic():
            self._integrity.require_active_section(owner_id, data.section)
            linked = self._integrity.require_articles(owner_id, data.linked_articles or [], "linked_articles")
            entity: TaskEntity = {
                "id": new_id(),
                "owner_id": owner_id,
                "name": data.name,
                "description": data.description,
                "due_date": data.due_date,
                "notes": data.notes,
                "priority": data.priority,
                "status": data.status,
                "section": data.section,
                "tags": data.tags or [],
                "linked_articles": linked,
                "estimated_time": data.estimated_time,
                "actual_time": data.actual_time,
                "completed_at": None,
                "created_at": now,
                "updated_at": now,
            }
            created = self._repo.insert(TASKS, derive_task_fields(None, entity, now))  # type: ignore[arg-type]
            populated = self._populate(owner_id, [created])[0]
        logger.info("Created task %s in section %s", entity["id"], data.section)
        return populated  # type: ignore[return-value]

    def _populate(self, owner_id: str, tasks: List[Entity]) -> List[Entity]:
        """Attach section and linked-article summaries to response copies of `tasks`."""
        sections = self._summaries(SECTIONS, owner_id, (t["section"] for t in tasks), SECTION_SUMMARY_FIELDS)
        articles = self._summaries(
            ARTICLES, owner_id, (a for t in tasks for a in t["linked_articles"]), ARTICLE_SUMMARY_FIELDS
        )
        return [
            {
                **t,
                "section_summary": sections.get(t["section"]),
                "linked_article_summaries": [articles[a] for a in t["linked_articles"] if a in articles],
            }
            for t in tasks
        ]

    def _get_or_404(self, owner_id: str, task_id: str) -> Entity:
        task = self._repo.get(TASKS, owner_id, task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    def get(self, owner_id: str, task_id: str) -> TaskEntity:
        with self._repo.atomic(readonly=True):
            return self._populate(owner_id, [self._get_or_404(owner_id, task_id)])[0]  # type: ignore[return-value]

    def list(self, owner_id: str, query: Optional[TaskQuery] = None) -> Tuple[List[TaskEntity], int]:
        """Return one page of matching tasks and the total match count."""
        q = query or TaskQuery()
        conditions = q.conditions(self._now())
        window = q.window()
        with self._repo.atomic(readonly=True):
            items = self._repo.find(TASKS, owner_id, conditions, q.sort(), window.offset, window.limit)
            total = self._repo.count(TASKS, owner_id, conditions)
            items = self._populate(owner_id, items)
        return items, total  # type: ignore[return-value]

    def _check_references(self, owner_id: str, changes: Dict[str, Any]) -> None:
        if "section" in changes:
            self._integrity.require_active_section(owner_id, changes["section"])
        if "linked_articles" in changes:
            changes["linked_articles"] = self._integrity.require_articles(
                owner_id, changes["linked_articles"], "linked_articles"
            )

    def _merge(self, existing: Entity, changes: Dict[str, Any], now: datetime) -> Entity:
        merged = {**existing, **changes}
        derived = dict(derive_task_fields(existing, merged, now))  # type: ignore[arg-type]
        derived["updated_at"] = now
        return derived

    def update(self, owner_id: str, task_id: str, data: TaskUpdate) -> TaskEntity:
        changes = data.model_dump(exclude_unset=True)
        now = self._now()
        with self._repo.atomic():
            existing = self._get_or_404(owner_id, task_id)
            self._check_references(owner_id, changes)
            saved = self._repo.replace(TASKS, self._merge(existing, changes, now))
            populated = self._populate(owner_id, [saved])[0]
        return populated  # type: ignore[return-value]

    def delete(self, owner_id: str, task_id: str) -> None:
        if not self._repo.delete(TASKS, owner_id, task_id):
            raise NotFoundError("Task not found")
        logger.info("Deleted task %s", task_id)

    def bulk_update(self, owner_id: str, task_ids: List[str], data: TaskUpdate) -> int:
        """
        Apply one partial update to several tasks, all or nothing.

        Every requested id must belong to the owner. Returns the number of
        tasks whose stored fields actually changed.
        """
        ids = dedupe(task_ids)
        if not ids:
            raise ValidationError("Task IDs array is required", {"field": "task_ids"})
        changes = data.model_dump(exclude_unset=True)
        now = self._now()
        modified = 0
        with self._repo.atomic():
            tasks = self._repo.find(TASKS, owner_id, [In("id", tuple(ids))])
            if len(tasks) != len(ids):
                raise NotFoundError("One or more tasks not found", {"requested": len(ids), "found": len(tasks)})
            self._check_references(owner_id, changes)
            for task in tasks:
                merged = self._merge(task, changes, now)
                if {k: v for k, v in merged.items() if k != "updated_at"} == {
                    k: v for k, v in task.items() if k != "updated_at"
                }:
                    continue
                self._repo.replace(TASKS, merged)
                modified += 1
        logger.info("Bulk update touched %d of %d task(s)", modified, len(ids))
        return modified

    def stats(self, owner_id: str, section: Optional[str] = None) -> Dict[str, Any]:
        """
        Task overview, optionally limited to one section.

        A section filter must name one of the owner's sections (archived ones
        included); its summary is echoed back under "section".
        """
        with self._repo.atomic(readonly=True):
            if not section:
                return task_overview(self._repo.find(TASKS, owner_id), self._now())
            found = self._repo.get(SECTIONS, owner_id, section)
            if found is None:
                raise NotFoundError("Section not found", {"section": section})
            overview = task_overview(self._repo.find(TASKS, owner_id, [Eq("section", section)]), self._now())
        overview["section"] = {f: found[f] for f in SECTION_SUMMARY_FIELDS}
        return overview


# PUBLIC_INTERFACE
class ArticleService(_Service):
    """CRUD, lookup by id or slug, cascading delete and statistics for articles."""

    @staticmethod
    def _require_publishable(entity: Entity) -> None:
        if entity["status"] != "published":
            return
        if not (entity.get("title") or "").strip():
            raise ValidationError("Article title is required", {"field": "title"})
        if not (entity.get("content") or "").strip():
            raise ValidationError("Article content is required", {"field": "content"})

    def create(self, owner_id: str, data: ArticleCreate) -> ArticleEntity:
        now = self._now()
        entity_id = new_id()
        with self._repo.atomic():
            refs = self._integrity.require_articles(owner_id, data.referenced_articles or [], "referenced_articles")
            entity: ArticleEntity = {
                "id": entity_id,
                "owner_id": owner_id,
                "title": data.title,
                "slug": data.slug or "",
                "content": data.content,
                "excerpt": data.excerpt,
                "cover_image": data.cover_image or "",
                "images": [img.model_dump() for img in data.images or []],  # type: ignore[misc]
                "tags": data.tags or [],
                "category": data.category,
                "status": data.status,
                "referenced_articles": refs,
                "published_at": None,
                "read_time": 1,
                "views": 0,
                "created_at": now,
                "updated_at": now,
            }
            self._require_publishable(entity)  # type: ignore[arg-type]
            derived = derive_article_fields(None, entity, now)
            self._integrity.check_unique(ARTICLES, derived)  # type: ignore[arg-type]
            created = self._repo.insert(ARTICLES, derived)  # type: ignore[arg-type]
            populated = self._populate(owner_id, [created])[0]
        logger.info("Created article %s (%s) for owner %s", entity_id, created["slug"], owner_id)
        return populated  # type: ignore[return-value]

    def _populate(self, owner_id: str, articles: List[Entity]) -> List[Entity]:
        refs = self._summaries(
            ARTICLES, owner_id, (r for a in articles for r in a["referenced_articles"]), ARTICLE_SUMMARY_FIELDS
        )
        return [
            {**a, "referenced_article_summaries": [refs[r] for r in a["referenced_articles"] if r in refs]}
            for a in articles
        ]

    def _resolve(self, owner_id: str, identifier: str) -> Entity:
        # Hex ids go to id lookup, anything else is a slug.
        if ID_PATTERN.match(identifier):
            article = self._repo.get(ARTICLES, owner_id, identifier)
        else:
            article = self._repo.find_one(ARTICLES, owner_id, [Eq("slug", identifier)])
        if article is None:
            raise NotFoundError("Article not found")
        return article

    def get(self, owner_id: str, identifier: str, increment_views: bool = False) -> ArticleEntity:
        """Look an article up by id or slug, optionally counting a view."""
        with self._repo.atomic(readonly=not increment_views):
            article = self._resolve(owner_id, identifier)
            if increment_views:
                article = self._repo.replace(ARTICLES, {**article, "views": int(article["views"]) + 1})
            populated = self._populate(owner_id, [article])[0]
        return populated  # type: ignore[return-value]

    def list(self, owner_id: str, query: Optional[ArticleQuery] = None) -> Tuple[List[ArticleEntity], int]:
        q = query or ArticleQuery()
        conditions = q.conditions()
        window = q.window()
        with self._repo.atomic(readonly=True):
            items = self._repo.find(ARTICLES, owner_id, conditions, q.sort(), window.offset, window.limit)
            total = self._repo.count(ARTICLES, owner_id, conditions)
            items = self._populate(owner_id, items)
        return items, total  # type: ignore[return-value]

    def update(self, owner_id: str, article_id: str, data: ArticleUpdate) -> ArticleEntity:
        changes = data.model_dump(exclude_unset=True)
        if "slug" in changes:
            changes["slug"] = changes["slug"] or ""
        if "cover_image" in changes:
            changes["cover_image"] = changes["cover_image"] or ""
        now = self._now()
        with self._repo.atomic():
            existing = self._repo.get(ARTICLES, owner_id, article_id)
            if existing is None:
                raise NotFoundError("Article not found")
            if "referenced_articles" in changes:
                self._integrity.reject_self_reference(article_id, changes["referenced_articles"])
                changes["referenced_articles"] = self._integrity.require_articles(
                    owner_id, changes["referenced_articles"], "referenced_articles"
                )
            merged = {**existing, **changes}
            self._require_publishable(merged)
            derived = dict(derive_article_fields(existing, merged, now))  # type: ignore[arg-type]
            derived["updated_at"] = now
            if derived["slug"] != existing["slug"]:
                self._integrity.check_unique(ARTICLES, derived)
            saved = self._repo.replace(ARTICLES, derived)
            populated = self._populate(owner_id, [saved])[0]
        return populated  # type: ignore[return-value]

    def delete(self, owner_id: str, article_id: str) -> int:
        """Delete an article and pull it from other articles' references."""
        return self._integrity.delete_article(owner_id, article_id)

    def stats(self, owner_id: str) -> Dict[str, Any]:
        return article_overview(self._repo.find(ARTICLES, owner_id), self._now())

    def categories_and_tags(self, owner_id: str) -> Dict[str, List[str]]:
        return categories_and_tags(self._repo.find(ARTICLES, owner_id))
