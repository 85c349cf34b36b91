from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional, TypedDict

SECTIONS = "sections"
TASKS = "tasks"
ARTICLES = "articles"
COLLECTIONS = (SECTIONS, TASKS, ARTICLES)

TASK_PRIORITIES = ("low", "medium", "high", "urgent")
TASK_STATUSES = ("pending", "in-progress", "completed", "cancelled")
# Statuses that never count as overdue.
TASK_CLOSED_STATUSES = ("completed", "cancelled")
ARTICLE_STATUSES = ("draft", "published", "archived")

DEFAULT_SECTION_COLOR = "#3b82f6"
DEFAULT_SECTION_ICON = "folder"

ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
HEX_COLOR_PATTERN = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")

# Fields copied into responses when another entity references one of these.
SECTION_SUMMARY_FIELDS = ("id", "name", "color", "icon")
ARTICLE_SUMMARY_FIELDS = ("id", "title", "slug", "status")


# PUBLIC_INTERFACE
class SectionEntity(TypedDict):
    """
    A collection of tasks.

    Fields:
    - id: 32-char hex identifier
    - owner_id: owning user, immutable
    - name: 1..100 chars, unique per owner among non-archived sections
    - description: optional, up to 500 chars
    - color: hex color, defaults to blue
    - icon: icon tag, defaults to 'folder'
    - archived: soft-disable flag
    - created_at / updated_at: UTC timestamps
    """

    id: str
    owner_id: str
    name: str
    description: Optional[str]
    color: str
    icon: str
    archived: bool
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    A unit of work filed under a section.

    completed_at is derived: present exactly when status == 'completed'.
    """

    id: str
    owner_id: str
    name: str
    description: Optional[str]
    due_date: datetime
    notes: Optional[str]
    priority: str
    status: str
    section: str
    tags: List[str]
    linked_articles: List[str]
    estimated_time: Optional[int]
    actual_time: Optional[int]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class ImageEntity(TypedDict):
    url: str
    alt: Optional[str]
    caption: Optional[str]


# PUBLIC_INTERFACE
class ArticleEntity(TypedDict):
    """
    A note or document.

    Derived fields: slug (when absent), published_at, read_time.
    """

    id: str
    owner_id: str
    title: Optional[str]
    slug: str
    content: Optional[str]
    excerpt: Optional[str]
    cover_image: str
    images: List[ImageEntity]
    tags: List[str]
    category: Optional[str]
    status: str
    referenced_articles: List[str]
    published_at: Optional[datetime]
    read_time: int
    views: int
    created_at: datetime
    updated_at: datetime
