"""
Composable filter conditions, sorting and pagination for tasks and articles.

A condition can be evaluated against an entity dict (memory backend) or
compiled to a parameterised SQL fragment (SQLite backend), so both backends
return the same rows in the same order.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ValidationError
from .models import ARTICLE_STATUSES, TASK_CLOSED_STATUSES, TASK_PRIORITIES, TASK_STATUSES

TASK_SORT_FIELDS = {"created_at", "updated_at", "due_date", "name", "priority", "status", "completed_at"}
ARTICLE_SORT_FIELDS = {
    "created_at", "updated_at", "title", "slug", "status", "published_at", "views", "read_time",
}
TASK_SEARCH_FIELDS = ("name", "description", "notes")
ARTICLE_SEARCH_FIELDS = ("title", "content", "excerpt")
# SQL name of the Python casefold function registered on SQLite connections.
CASEFOLD_SQL_FUNCTION = "py_casefold"


def sql_value(value: Any) -> Any:
    """Convert a python value into the form stored in SQLite columns."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def _placeholders(n: int) -> str:
    return ", ".join("?" for _ in range(n))


class Condition(ABC):
    """A single predicate over one entity."""

    @abstractmethod
    def matches(self, entity: Mapping[str, Any]) -> bool:
        """Evaluate against an entity dict."""

    @abstractmethod
    def to_sql(self) -> Tuple[str, List[Any]]:
        """Return a WHERE fragment and its parameters."""


@dataclass(frozen=True)
class Eq(Condition):
    field: str
    value: Any

    def matches(self, entity: Mapping[str, Any]) -> bool:
        return entity.get(self.field) == self.value

    def to_sql(self) -> Tuple[str, List[Any]]:
        return f"{self.field} = ?", [sql_value(self.value)]


@dataclass(frozen=True)
class Ne(Condition):
    field: str
    value: Any

    def matches(self, entity: Mapping[str, Any]) -> bool:
        return entity.get(self.field) != self.value

    def to_sql(self) -> Tuple[str, List[Any]]:
        return f"{self.field} != ?", [sql_value(self.value)]


@dataclass(frozen=True)
class In(Condition):
    field: str
    values: Tuple[Any, ...]

    def matches(self, entity: Mapping[str, Any]) -> bool:
        return entity.get(self.field) in self.values

    def to_sql(self) -> Tuple[str, List[Any]]:
        if not self.values:
            return "0 = 1", []
        return f"{self.field} IN ({_placeholders(len(self.values))})", [sql_value(v) for v in self.values]


@dataclass(frozen=True)
class NotIn(Condition):
    field: str
    values: Tuple[Any, ...]

    def matches(self, entity: Mapping[str, Any]) -> bool:
        return entity.get(self.field) not in self.values

    def to_sql(self) -> Tuple[str, List[Any]]:
        if not self.values:
            return "1 = 1", []
        return f"{self.field} NOT IN ({_placeholders(len(self.values))})", [sql_value(v) for v in self.values]


@dataclass(frozen=True)
class Range(Condition):
    """Half-open range: gte <= value < lt. Missing values never match."""

    field: str
    gte: Optional[datetime] = None
    lt: Optional[datetime] = None

    def matches(self, entity: Mapping[str, Any]) -> bool:
        value = entity.get(self.field)
        if value is None:
            return False
        if self.gte is not None and value < self.gte:
            return False
        if self.lt is not None and value >= self.lt:
            return False
        return True

    def to_sql(self) -> Tuple[str, List[Any]]:
        parts = [f"{self.field} IS NOT NULL"]
        params: List[Any] = []
        if self.gte is not None:
            parts.append(f"{self.field} >= ?")
            params.append(sql_value(self.gte))
        if self.lt is not None:
            parts.append(f"{self.field} < ?")
            params.append(sql_value(self.lt))
        return "(" + " AND ".join(parts) + ")", params


@dataclass(frozen=True)
class HasAny(Condition):
    """List-valued field contains at least one of `values`."""

    field: str
    values: Tuple[str, ...]

    def matches(self, entity: Mapping[str, Any]) -> bool:
        present = entity.get(self.field) or []
        return any(v in present for v in self.values)

    def to_sql(self) -> Tuple[str, List[Any]]:
        if not self.values:
            return "0 = 1", []
        return (
            f"EXISTS (SELECT 1 FROM json_each({self.field}) WHERE json_each.value IN "
            f"({_placeholders(len(self.values))}))",
            list(self.values),
        )


def casefold(value: Optional[str]) -> str:
    """Unicode-aware case folding; None folds to ''."""
    return value.casefold() if value else ""


@dataclass(frozen=True)
class Search(Condition):
    """
    Case-insensitive substring match over any of `fields`.

    SQLite's lower() only folds ASCII, so the SQL form calls the
    CASEFOLD_SQL_FUNCTION every SQLite connection registers.
    """

    fields: Tuple[str, ...]
    text: str

    def matches(self, entity: Mapping[str, Any]) -> bool:
        needle = casefold(self.text)
        return any(needle in casefold(entity.get(f)) for f in self.fields)

    def to_sql(self) -> Tuple[str, List[Any]]:
        needle = casefold(self.text)
        parts = [f"instr({CASEFOLD_SQL_FUNCTION}({f}), ?) > 0" for f in self.fields]
        return "(" + " OR ".join(parts) + ")", [needle] * len(self.fields)


@dataclass(frozen=True)
class Sort:
    """Sort key plus direction; ties always break on id in the same direction."""

    field: str = "created_at"
    descending: bool = True

    def key(self, entity: Mapping[str, Any]) -> Tuple[Any, ...]:
        value = entity.get(self.field)
        # None sorts first ascending, matching SQLite's NULL ordering.
        if value is None:
            return (0, "", entity["id"])
        return (1, value, entity["id"])

    def to_sql(self) -> str:
        direction = "DESC" if self.descending else "ASC"
        return f"ORDER BY {self.field} {direction}, id {direction}"


def matches_all(entity: Mapping[str, Any], conditions: Iterable[Condition]) -> bool:
    return all(c.matches(entity) for c in conditions)


def where_sql(conditions: Sequence[Condition]) -> Tuple[str, List[Any]]:
    """AND the compiled conditions together."""
    clauses: List[str] = []
    params: List[Any] = []
    for c in conditions:
        sql, p = c.to_sql()
        clauses.append(sql)
        params.extend(p)
    return (" AND ".join(clauses) if clauses else "1 = 1"), params


def split_values(raw: Optional[str], allowed: Sequence[str], label: str) -> Tuple[str, ...]:
    """
    Parse a comma-delimited filter value and reject anything outside `allowed`.
    """
    if raw is None:
        return ()
    values = tuple(v.strip() for v in raw.split(",") if v.strip())
    unknown = [v for v in values if v not in allowed]
    if unknown:
        raise ValidationError(
            f"Invalid {label} filter value(s): {', '.join(unknown)}",
            {"field": label, "allowed": list(allowed)},
        )
    return values


def build_sort(sort_by: Optional[str], sort_order: Optional[str], allowed: Iterable[str]) -> Sort:
    """Unknown fields fall back to created_at; the direction must be asc or desc."""
    order = (sort_order or "desc").strip().lower()
    if order not in {"asc", "desc"}:
        raise ValidationError("sort_order must be 'asc' or 'desc'", {"field": "sort_order"})
    field_name = (sort_by or "created_at").strip()
    if field_name not in allowed:
        field_name = "created_at"
    return Sort(field=field_name, descending=order == "desc")


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def overdue_conditions(now: datetime) -> List[Condition]:
    return [Range("due_date", lt=now), NotIn("status", TASK_CLOSED_STATUSES)]


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 20

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValidationError("page must be >= 1", {"field": "page"})
        if self.limit < 1:
            raise ValidationError("limit must be >= 1", {"field": "limit"})

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class TaskQuery:
    """
    Query parameters for listing tasks.

    status and priority accept comma-delimited lists which are OR'd; every
    other filter is AND'd.
    """

    section: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    tags: Tuple[str, ...] = ()
    due_date: Optional[date] = None
    overdue: bool = False
    search: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20

    def conditions(self, now: datetime) -> List[Condition]:
        conds: List[Condition] = []
        if self.section:
            conds.append(Eq("section", self.section))
        statuses = split_values(self.status, TASK_STATUSES, "status")
        if statuses:
            conds.append(In("status", statuses))
        priorities = split_values(self.priority, TASK_PRIORITIES, "priority")
        if priorities:
            conds.append(In("priority", priorities))
        if self.tags:
            conds.append(HasAny("tags", tuple(self.tags)))
        if self.due_date is not None:
            start, end = day_bounds(self.due_date)
            conds.append(Range("due_date", gte=start, lt=end))
        if self.overdue:
            conds.extend(overdue_conditions(now))
        if self.search and self.search.strip():
            conds.append(Search(TASK_SEARCH_FIELDS, self.search.strip()))
        return conds

    def sort(self) -> Sort:
        return build_sort(self.sort_by, self.sort_order, TASK_SORT_FIELDS)

    def window(self) -> PageRequest:
        return PageRequest(self.page, self.limit)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ArticleQuery:
    """Query parameters for listing articles."""

    status: Optional[str] = None
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    search: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20

    def conditions(self) -> List[Condition]:
        conds: List[Condition] = []
        statuses = split_values(self.status, ARTICLE_STATUSES, "status")
        if statuses:
            conds.append(In("status", statuses))
        if self.category:
            conds.append(Eq("category", self.category))
        if self.tags:
            conds.append(HasAny("tags", tuple(self.tags)))
        if self.search and self.search.strip():
            conds.append(Search(ARTICLE_SEARCH_FIELDS, self.search.strip()))
        return conds

    def sort(self) -> Sort:
        return build_sort(self.sort_by, self.sort_order, ARTICLE_SORT_FIELDS)

    def window(self) -> PageRequest:
        return PageRequest(self.page, self.limit)


def select(
    items: Iterable[Mapping[str, Any]],
    conditions: Sequence[Condition] = (),
    sort: Optional[Sort] = None,
    offset: int = 0,
    limit: Optional[int] = None,
) -> List[Mapping[str, Any]]:
    """Filter, sort and slice entity dicts in memory."""
    rows = [e for e in items if matches_all(e, conditions)]
    if sort is not None:
        rows.sort(key=sort.key, reverse=sort.descending)
    start = max(offset, 0)
    end = None if limit is None else start + max(limit, 0)
    return rows[start:end]
