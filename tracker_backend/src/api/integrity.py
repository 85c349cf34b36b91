"""
Cross-entity reference rules.

Only this module and the services read persisted state to decide whether a
write is allowed; everything here raises ValidationError, NotFoundError or
ConflictError.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .errors import ConflictError, NotFoundError, ValidationError
from .filters import Eq, HasAny, In
from .models import ARTICLES, SECTIONS, TASKS, SectionEntity
from .repositories import Entity, Repository
from .utils import dedupe

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class ReferentialIntegrity:
    """
    Validates owner-scoped references and performs cascading cleanup.

    All methods take the owner explicitly and must run inside the caller's
    `repo.atomic()` unit when they are part of a larger write.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def require_active_section(self, owner_id: str, section_id: str) -> SectionEntity:
        """The section must exist, belong to the owner and not be archived."""
        section = self._repo.get(SECTIONS, owner_id, section_id)
        if section is None or section["archived"]:
            raise ValidationError("Section not found or archived", {"field": "section", "value": section_id})
        return section  # type: ignore[return-value]

    def require_articles(self, owner_id: str, article_ids: Sequence[str], field: str) -> List[str]:
        """
        Every id must resolve to an article of the same owner.

        Returns the de-duplicated list; fails the whole call if any id is missing.
        """
        unique_ids = dedupe(article_ids)
        if not unique_ids:
            return []
        found = self._repo.count(ARTICLES, owner_id, [In("id", tuple(unique_ids))])
        if found < len(unique_ids):
            raise ValidationError(
                f"One or more {field.replace('_', ' ')} not found",
                {"field": field, "requested": len(unique_ids), "found": found},
            )
        return unique_ids

    @staticmethod
    def reject_self_reference(article_id: str, referenced: Sequence[str]) -> None:
        if article_id in referenced:
            raise ValidationError(
                "An article cannot reference itself", {"field": "referenced_articles", "value": article_id}
            )

    def ensure_section_deletable(self, owner_id: str, section_id: str) -> None:
        """Refuse while any task still points at the section."""
        tasks_count = self._repo.count(TASKS, owner_id, [Eq("section", section_id)])
        if tasks_count > 0:
            logger.warning("Section %s delete blocked by %d task(s)", section_id, tasks_count)
            raise ConflictError(
                "Cannot delete section with existing tasks. Please move or delete tasks first.",
                {"tasks_count": tasks_count},
            )

    def find_referencing_articles(self, owner_id: str, article_id: str) -> List[Entity]:
        return self._repo.find(ARTICLES, owner_id, [HasAny("referenced_articles", (article_id,))])

    def pull_article_reference(self, article: Entity, article_id: str) -> Entity:
        cleaned = dict(article)
        cleaned["referenced_articles"] = [r for r in article["referenced_articles"] if r != article_id]
        return self._repo.replace(ARTICLES, cleaned)

    def delete_article(self, owner_id: str, article_id: str) -> int:
        """
        Delete an article after pulling its id from every other article of
        the same owner.

        Phase one finds the referencing articles, phase two pulls the id from
        each and saves it, then the target row is removed. The whole sequence
        runs in one atomic unit: any failure rolls every pull back.

        Returns the number of articles that were cleaned.
        """
        with self._repo.atomic():
            if self._repo.get(ARTICLES, owner_id, article_id) is None:
                raise NotFoundError("Article not found")
            referencing = [a for a in self.find_referencing_articles(owner_id, article_id) if a["id"] != article_id]
            for article in referencing:
                self.pull_article_reference(article, article_id)
            if not self._repo.delete(ARTICLES, owner_id, article_id):
                raise NotFoundError("Article not found")
        logger.info("Deleted article %s, cleaned %d reference(s)", article_id, len(referencing))
        return len(referencing)

    def check_unique(self, kind: str, entity: Entity) -> None:
        conflict: Optional[ConflictError] = self._repo.exists_duplicate(kind, entity)
        if conflict is not None:
            logger.warning("Duplicate %s rejected for owner %s: %s", kind, entity["owner_id"], conflict.detail)
            raise conflict
