from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth import get_owner_id
from ..dependencies import get_task_service
from ..filters import TaskQuery
from ..schemas import BulkTaskUpdate, BulkUpdateResult, TaskCreate, TaskOut, TaskPage, TaskStats, TaskUpdate
from ..services import TaskService
from ..settings import get_settings
from ..utils import pagination_envelope

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks"],
)

_settings = get_settings()


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=TaskPage,
    summary="List Tasks",
    description=(
        "List tasks with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- section: section id\n"
        "- status / priority: single value or comma-separated list (OR'd)\n"
        "- tags: repeatable; matches tasks carrying any of them\n"
        "- due_date: YYYY-MM-DD, tasks due that day (UTC)\n"
        "- overdue: due before now and not completed/cancelled\n"
        "- q: case-insensitive search over name, description and notes\n"
        "- sort_by / sort_order: default created_at desc\n"
        "- page / limit: 1-based page, page size"
    ),
    responses={400: {"description": "Invalid query parameters"}},
)
def list_tasks(
    section: Optional[str] = Query(None, description="Filter by section id"),
    status_: Optional[str] = Query(None, alias="status", description="Comma-separated statuses"),
    priority: Optional[str] = Query(None, description="Comma-separated priorities"),
    tags: Optional[List[str]] = Query(None, description="Tags (any-of)"),
    due_date: Optional[date] = Query(None, description="Tasks due on this day"),
    overdue: bool = Query(False, description="Only overdue tasks"),
    q: Optional[str] = Query(None, description="Search text"),
    sort_by: str = Query("created_at", description="Sort field"),
    sort_order: str = Query("desc", description="'asc' or 'desc'"),
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(_settings.default_page_limit, ge=1, le=_settings.max_page_limit, description="Page size"),
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
) -> TaskPage:
    query = TaskQuery(
        section=section,
        status=status_,
        priority=priority,
        tags=tuple(tags or ()),
        due_date=due_date,
        overdue=overdue,
        search=q.strip() if q else None,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    items, total = service.list(owner_id, query)
    envelope = pagination_envelope(items=[TaskOut(**t) for t in items], total=total, page=page, limit=limit)
    return TaskPage(**envelope)


# PUBLIC_INTERFACE
@router.get(
    "/stats/overview",
    response_model=TaskStats,
    summary="Task Statistics",
    description="Counts by status and priority, overdue count and tasks completed in the last 7 days.",
    responses={404: {"description": "Section not found"}},
)
def task_stats(
    section: Optional[str] = Query(None, description="Limit the statistics to one section"),
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
) -> TaskStats:
    return TaskStats(**service.stats(owner_id, section))


# PUBLIC_INTERFACE
@router.patch(
    "/bulk",
    response_model=BulkUpdateResult,
    summary="Bulk Update Tasks",
    description="Apply one partial update to every listed task. Fails as a whole if any id is not the caller's.",
    responses={404: {"description": "One or more tasks not found"}},
)
def bulk_update_tasks(
    payload: BulkTaskUpdate,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
) -> BulkUpdateResult:
    modified = service.bulk_update(owner_id, payload.task_ids, payload.updates)
    return BulkUpdateResult(modified_count=modified)


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=TaskOut,
    summary="Get Task",
    responses={404: {"description": "Task not found"}},
)
def get_task(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
) -> TaskOut:
    return TaskOut(**service.get(owner_id, task_id))


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    responses={400: {"description": "Section not found or archived, or unknown linked articles"}},
)
def create_task(
    payload: TaskCreate,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
) -> TaskOut:
    return TaskOut(**service.create(owner_id, payload))


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}",
    response_model=TaskOut,
    summary="Update Task",
    description="Partially update fields of a task.",
    responses={404: {"description": "Task not found"}},
)
def update_task(
    task_id: str,
    payload: TaskUpdate,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
) -> TaskOut:
    return TaskOut(**service.update(owner_id, task_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Task",
    responses={204: {"description": "Task deleted"}, 404: {"description": "Task not found"}},
)
def delete_task(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
) -> None:
    service.delete(owner_id, task_id)
    return None
