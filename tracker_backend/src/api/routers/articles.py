from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth import get_owner_id
from ..dependencies import get_article_service
from ..filters import ArticleQuery
from ..schemas import (
    ArticleCreate,
    ArticleOut,
    ArticlePage,
    ArticleStats,
    ArticleSummaryOut,
    ArticleUpdate,
    CategoriesAndTags,
)
from ..services import ArticleService
from ..settings import get_settings
from ..utils import pagination_envelope

router = APIRouter(
    prefix="/api/v1/articles",
    tags=["articles"],
)

_settings = get_settings()


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=ArticlePage,
    summary="List Articles",
    description=(
        "List articles without their content.\n\n"
        "Query parameters:\n"
        "- status: single value or comma-separated list\n"
        "- category: exact category\n"
        "- tags: repeatable; matches articles carrying any of them\n"
        "- q: case-insensitive search over title, content and excerpt\n"
        "- sort_by / sort_order: default created_at desc\n"
        "- page / limit: 1-based page, page size"
    ),
    responses={400: {"description": "Invalid query parameters"}},
)
def list_articles(
    status_: Optional[str] = Query(None, alias="status", description="Comma-separated statuses"),
    category: Optional[str] = Query(None),
    tags: Optional[List[str]] = Query(None, description="Tags (any-of)"),
    q: Optional[str] = Query(None, description="Search text"),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    page: int = Query(1, ge=1),
    limit: int = Query(_settings.default_page_limit, ge=1, le=_settings.max_page_limit),
    owner_id: str = Depends(get_owner_id),
    service: ArticleService = Depends(get_article_service),
) -> ArticlePage:
    query = ArticleQuery(
        status=status_,
        category=category,
        tags=tuple(tags or ()),
        search=q.strip() if q else None,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    items, total = service.list(owner_id, query)
    envelope = pagination_envelope(
        items=[ArticleSummaryOut(**a) for a in items], total=total, page=page, limit=limit
    )
    return ArticlePage(**envelope)


# PUBLIC_INTERFACE
@router.get(
    "/stats/overview",
    response_model=ArticleStats,
    summary="Article Statistics",
    description="Counts by status, top categories, total views and articles published this calendar month.",
)
def article_stats(
    owner_id: str = Depends(get_owner_id),
    service: ArticleService = Depends(get_article_service),
) -> ArticleStats:
    return ArticleStats(**service.stats(owner_id))


# PUBLIC_INTERFACE
@router.get(
    "/meta/categories-tags",
    response_model=CategoriesAndTags,
    summary="Categories and Tags",
    description="Sorted distinct categories and tags across the caller's articles.",
)
def categories_tags(
    owner_id: str = Depends(get_owner_id),
    service: ArticleService = Depends(get_article_service),
) -> CategoriesAndTags:
    return CategoriesAndTags(**service.categories_and_tags(owner_id))


# PUBLIC_INTERFACE
@router.get(
    "/{identifier}",
    response_model=ArticleOut,
    summary="Get Article",
    description="Get an article by id or by slug. increment_views=true counts a view.",
    responses={404: {"description": "Article not found"}},
)
def get_article(
    identifier: str,
    increment_views: bool = Query(False),
    owner_id: str = Depends(get_owner_id),
    service: ArticleService = Depends(get_article_service),
) -> ArticleOut:
    return ArticleOut(**service.get(owner_id, identifier, increment_views=increment_views))


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=ArticleOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Article",
    responses={409: {"description": "Slug already in use"}},
)
def create_article(
    payload: ArticleCreate,
    owner_id: str = Depends(get_owner_id),
    service: ArticleService = Depends(get_article_service),
) -> ArticleOut:
    return ArticleOut(**service.create(owner_id, payload))


# PUBLIC_INTERFACE
@router.patch(
    "/{article_id}",
    response_model=ArticleOut,
    summary="Update Article",
    description="Partially update an article. Sending an empty slug derives it again from the title.",
    responses={404: {"description": "Article not found"}, 409: {"description": "Slug already in use"}},
)
def update_article(
    article_id: str,
    payload: ArticleUpdate,
    owner_id: str = Depends(get_owner_id),
    service: ArticleService = Depends(get_article_service),
) -> ArticleOut:
    return ArticleOut(**service.update(owner_id, article_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/{article_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Article",
    description="Delete an article after removing it from every other article's references.",
    responses={204: {"description": "Article deleted"}, 404: {"description": "Article not found"}},
)
def delete_article(
    article_id: str,
    owner_id: str = Depends(get_owner_id),
    service: ArticleService = Depends(get_article_service),
) -> None:
    service.delete(owner_id, article_id)
    return None
