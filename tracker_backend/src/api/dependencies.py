from __future__ import annotations

from fastapi import Depends

from .repositories import Repository, get_repository
from .services import ArticleService, Clock, SectionService, TaskService
from .utils import utcnow


# PUBLIC_INTERFACE
def get_clock() -> Clock:
    """Clock used for derived timestamps and 'now'-relative filters; overridden in tests."""
    return utcnow


def get_section_service(
    repo: Repository = Depends(get_repository), clock: Clock = Depends(get_clock)
) -> SectionService:
    return SectionService(repo, clock)


def get_task_service(repo: Repository = Depends(get_repository), clock: Clock = Depends(get_clock)) -> TaskService:
    return TaskService(repo, clock)


def get_article_service(
    repo: Repository = Depends(get_repository), clock: Clock = Depends(get_clock)
) -> ArticleService:
    return ArticleService(repo, clock)
