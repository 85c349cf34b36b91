from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from .models import HEX_COLOR_PATTERN, ID_PATTERN, SLUG_PATTERN
from .utils import as_utc, dedupe

TaskPriority = Literal["low", "medium", "high", "urgent"]
TaskStatus = Literal["pending", "in-progress", "completed", "cancelled"]
ArticleStatus = Literal["draft", "published", "archived"]

# Shared type for incoming due_date which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize due_date input into an aware UTC datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - Naive datetimes are read as UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return as_utc(value)

    if isinstance(value, date):
        return as_utc(datetime(value.year, value.month, value.day))

    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(s))
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return as_utc(datetime(d.year, d.month, d.day))
            except ValueError as e:
                raise ValueError(
                    "Invalid due_date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    raise ValueError("Invalid type for due_date; expected date, datetime, or ISO8601 string.")


def _trim(v: Optional[str]) -> Optional[str]:
    return v.strip() if isinstance(v, str) else v


def _check_id(v: str, label: str) -> str:
    if not isinstance(v, str) or not ID_PATTERN.match(v):
        raise ValueError(f"Please provide a valid {label} ID")
    return v


def _clean_tags(v: Optional[List[str]]) -> Optional[List[str]]:
    if v is None:
        return v
    cleaned = [t.strip() for t in v if t and t.strip()]
    too_long = [t for t in cleaned if len(t) > 50]
    if too_long:
        raise ValueError("Each tag must be at most 50 characters")
    return dedupe(cleaned)


def _clean_ids(v: Optional[List[str]], label: str) -> Optional[List[str]]:
    if v is None:
        return v
    return dedupe(_check_id(i, label) for i in v)


def _reject_null(v: object, name: str) -> object:
    if v is None:
        raise ValueError(f"{name} cannot be null")
    return v


# ---------------------------------------------------------------- sections


# PUBLIC_INTERFACE
class SectionCreate(BaseModel):
    """
    Schema for creating a new Section.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"name": "Personal", "description": "Errands and chores", "color": "#3b82f6", "icon": "home"}
        }
    )

    name: str = Field(..., description="Section name, unique among active sections", min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, description="Hex color, e.g. #3b82f6")
    icon: Optional[str] = Field(default=None, max_length=50)

    @field_validator("name", "description", "icon", mode="before")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return _trim(v)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not HEX_COLOR_PATTERN.match(v):
            raise ValueError("Please enter a valid hex color")
        return v


# PUBLIC_INTERFACE
class SectionUpdate(SectionCreate):
    """
    Schema for updating a Section. All fields are optional; only provided fields are updated.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)  # type: ignore[assignment]

    @field_validator("name", "color", "icon")
    @classmethod
    def not_null(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        return _reject_null(v, info.field_name)  # type: ignore[return-value]


class SectionArchive(BaseModel):
    archive: bool = Field(default=True, description="True to archive, False to unarchive")


# PUBLIC_INTERFACE
class SectionOut(BaseModel):
    """Schema returned by the API for a Section."""

    id: str
    name: str
    description: Optional[str] = None
    color: str
    icon: str
    archived: bool
    created_at: datetime
    updated_at: datetime


class SectionDetailOut(SectionOut):
    tasks_count: int = Field(..., description="Number of tasks filed under the section")


class SectionList(BaseModel):
    sections: List[SectionOut]
    count: int


class SectionSummaryOut(BaseModel):
    """The referenced section as embedded in task responses."""

    id: str
    name: str
    color: str
    icon: str


class ArticleRefOut(BaseModel):
    """A referenced article as embedded in task and article responses."""

    id: str
    title: Optional[str] = None
    slug: str
    status: ArticleStatus


# ------------------------------------------------------------------- tasks


class _TaskFields(BaseModel):
    description: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=2000)
    tags: Optional[List[str]] = Field(default=None, description="Set-like list of tags (<=50 chars each)")
    linked_articles: Optional[List[str]] = Field(default=None, description="Ids of linked articles")
    estimated_time: Optional[int] = Field(default=None, ge=0, description="Minutes")
    actual_time: Optional[int] = Field(default=None, ge=0, description="Minutes")

    @field_validator("description", "notes", mode="before")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return _trim(v)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_tags(v)

    @field_validator("linked_articles")
    @classmethod
    def clean_linked(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_ids(v, "linked article")


# PUBLIC_INTERFACE
class TaskCreate(_TaskFields):
    """
    Schema for creating a new Task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Buy milk",
                "due_date": "2025-02-01",
                "section": "0f8c2b6e4a1d4e5f9a7b3c2d1e0f9a8b",
                "priority": "high",
                "tags": ["errands"],
            }
        }
    )

    name: str = Field(..., min_length=1, max_length=200)
    due_date: datetime = Field(
        ..., description="Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00 UTC"
    )
    section: str = Field(..., description="Id of an active section owned by the caller")
    priority: TaskPriority = "medium"
    status: TaskStatus = "pending"

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return _trim(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    @field_validator("section")
    @classmethod
    def validate_section(cls, v: str) -> str:
        return _check_id(v, "section")


# PUBLIC_INTERFACE
class TaskUpdate(_TaskFields):
    """
    Schema for updating an existing Task.
    All fields are optional; only provided fields will be updated.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    due_date: Optional[datetime] = None
    section: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return _trim(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    @field_validator("section")
    @classmethod
    def validate_section(cls, v: Optional[str]) -> Optional[str]:
        return _check_id(v, "section") if v is not None else v

    @field_validator("name", "due_date", "section", "priority", "status", "tags", "linked_articles")
    @classmethod
    def not_null(cls, v: object, info: ValidationInfo) -> object:
        return _reject_null(v, info.field_name)


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """Schema returned by the API for a Task."""

    id: str
    name: str
    description: Optional[str] = None
    due_date: datetime
    notes: Optional[str] = None
    priority: TaskPriority
    status: TaskStatus
    section: str
    tags: List[str]
    linked_articles: List[str]
    estimated_time: Optional[int] = None
    actual_time: Optional[int] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    section_summary: Optional[SectionSummaryOut] = Field(
        default=None, description="Name, color and icon of the section; null if it no longer resolves"
    )
    linked_article_summaries: List[ArticleRefOut] = Field(
        default_factory=list, description="Linked articles that still exist, in linked_articles order"
    )


class BulkTaskUpdate(BaseModel):
    """Apply one partial update to several tasks."""

    task_ids: List[str] = Field(..., min_length=1)
    updates: TaskUpdate

    @field_validator("task_ids")
    @classmethod
    def validate_ids(cls, v: List[str]) -> List[str]:
        return _clean_ids(v, "task") or []


class BulkUpdateResult(BaseModel):
    modified_count: int


class TaskStats(BaseModel):
    total: int
    status: Dict[str, int]
    priority: Dict[str, int]
    overdue: int
    completed_this_week: int
    section: Optional[SectionSummaryOut] = Field(default=None, description="Set when filtered to one section")


# ---------------------------------------------------------------- articles


class ImageIn(BaseModel):
    url: str = Field(..., min_length=1)
    alt: Optional[str] = None
    caption: Optional[str] = None


class _ArticleFields(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    slug: Optional[str] = Field(default=None, description="Lowercase letters, numbers and hyphens")
    content: Optional[str] = None
    excerpt: Optional[str] = Field(default=None, max_length=500)
    cover_image: Optional[str] = Field(default=None, description="http(s) URL")
    images: Optional[List[ImageIn]] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = Field(default=None, max_length=100)
    referenced_articles: Optional[List[str]] = None

    @field_validator("title", "excerpt", "category", mode="before")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return _trim(v)

    @field_validator("slug", mode="before")
    @classmethod
    def validate_slug(cls, v: object) -> object:
        # Non-strings fall through to the str type check.
        if not isinstance(v, str):
            return v
        v = v.strip().lower()
        if v and not SLUG_PATTERN.match(v):
            raise ValueError("Slug must contain only lowercase letters, numbers, and hyphens")
        return v

    @field_validator("cover_image")
    @classmethod
    def validate_cover_image(cls, v: Optional[str]) -> Optional[str]:
        if v:
            try:
                _URL_ADAPTER.validate_python(v)
            except PydanticValidationError as e:
                raise ValueError("Cover image must be a valid URL") from e
        return v

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_tags(v)

    @field_validator("referenced_articles")
    @classmethod
    def clean_refs(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_ids(v, "referenced article")


# PUBLIC_INTERFACE
class ArticleCreate(_ArticleFields):
    """
    Schema for creating a new Article.

    title and content are only required when status is 'published'. When no
    slug is given one is derived from the title.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "My First Post!!",
                "content": "Hello world",
                "status": "published",
                "tags": ["intro"],
                "category": "journal",
            }
        }
    )

    status: ArticleStatus = "draft"


# PUBLIC_INTERFACE
class ArticleUpdate(_ArticleFields):
    """
    Schema for updating an Article. Only provided fields are updated; an
    explicit empty slug asks for it to be derived again from the title.
    """

    status: Optional[ArticleStatus] = None

    @field_validator("status", "images", "tags", "referenced_articles")
    @classmethod
    def not_null(cls, v: object, info: ValidationInfo) -> object:
        return _reject_null(v, info.field_name)


class ImageOut(BaseModel):
    url: str
    alt: Optional[str] = None
    caption: Optional[str] = None


# PUBLIC_INTERFACE
class ArticleSummaryOut(BaseModel):
    """Article as returned by list calls: everything but the content."""

    id: str
    title: Optional[str] = None
    slug: str
    excerpt: Optional[str] = None
    cover_image: str = ""
    images: List[ImageOut] = Field(default_factory=list)
    tags: List[str]
    category: Optional[str] = None
    status: ArticleStatus
    referenced_articles: List[str]
    published_at: Optional[datetime] = None
    read_time: int
    views: int
    created_at: datetime
    updated_at: datetime
    referenced_article_summaries: List[ArticleRefOut] = Field(default_factory=list)


# PUBLIC_INTERFACE
class ArticleOut(ArticleSummaryOut):
    """Schema returned by the API for a single Article."""

    content: Optional[str] = None


class CategoryCount(BaseModel):
    category: str
    count: int


class ArticleStats(BaseModel):
    total: int
    status: Dict[str, int]
    categories: List[CategoryCount]
    total_views: int
    published_this_month: int


class CategoriesAndTags(BaseModel):
    categories: List[str]
    tags: List[str]


# -------------------------------------------------------------- pagination


class Pagination(BaseModel):
    current: int = Field(..., description="1-based page number")
    total_pages: int
    count: int = Field(..., description="Items on this page")
    total_count: int = Field(..., description="Items matching the query across all pages")


class TaskPage(BaseModel):
    items: List[TaskOut]
    pagination: Pagination


class ArticlePage(BaseModel):
    items: List[ArticleSummaryOut]
    pagination: Pagination
