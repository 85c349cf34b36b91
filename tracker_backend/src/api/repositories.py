from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from threading import RLock
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import ConflictError, InternalError
from .filters import Condition, Eq, Ne, Sort, matches_all, select
from .models import ARTICLES, COLLECTIONS, SECTIONS
from .settings import get_settings

logger = logging.getLogger(__name__)

Entity = Dict[str, Any]


@dataclass(frozen=True)
class UniqueRule:
    """
    A per-owner uniqueness constraint.

    active_only restricts the rule to rows whose `archived` flag is false.
    """

    field: str
    active_only: bool = False

    def applies_to(self, entity: Entity) -> bool:
        return not (self.active_only and entity.get("archived"))

    def message(self, kind: str) -> str:
        noun = "Section" if kind == SECTIONS else "Article"
        return f"{noun} with this {self.field} already exists"


UNIQUE_RULES: Dict[str, Tuple[UniqueRule, ...]] = {
    SECTIONS: (UniqueRule("name", active_only=True),),
    ARTICLES: (UniqueRule("slug"),),
}


def unique_conflict(kind: str, rule: UniqueRule, value: Any) -> ConflictError:
    return ConflictError(rule.message(kind), {"field": rule.field, "value": value})


# PUBLIC_INTERFACE
class Repository(ABC):
    """
    Abstract storage contract shared by every backend.

    Every call names the collection kind and the owner explicitly; nothing
    crosses owners. `atomic()` groups calls into one all-or-nothing unit
    and is re-entrant. A `readonly` unit promises not to write, so backends
    may run it without taking the write lock.
    """

    @abstractmethod
    def atomic(self, readonly: bool = False) -> Any:
        """Context manager wrapping several calls in one unit of work."""

    @abstractmethod
    def get(self, kind: str, owner_id: str, entity_id: str) -> Optional[Entity]:
        """Return the entity by id if the owner holds it, else None."""

    @abstractmethod
    def find(
        self,
        kind: str,
        owner_id: str,
        conditions: Sequence[Condition] = (),
        sort: Optional[Sort] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Entity]:
        """Return the owner's entities matching all conditions, sorted and sliced."""

    @abstractmethod
    def count(self, kind: str, owner_id: str, conditions: Sequence[Condition] = ()) -> int:
        """Count the owner's entities matching all conditions, ignoring any window."""

    @abstractmethod
    def insert(self, kind: str, entity: Entity) -> Entity:
        """Store a new entity. Raises ConflictError on a uniqueness violation."""

    @abstractmethod
    def replace(self, kind: str, entity: Entity) -> Entity:
        """Overwrite a stored entity. Raises ConflictError on a uniqueness violation."""

    @abstractmethod
    def delete(self, kind: str, owner_id: str, entity_id: str) -> bool:
        """Delete by id. Return True if deleted, False if the owner has no such entity."""

    def find_one(self, kind: str, owner_id: str, conditions: Sequence[Condition]) -> Optional[Entity]:
        rows = self.find(kind, owner_id, conditions, limit=1)
        return rows[0] if rows else None

    def exists_duplicate(self, kind: str, entity: Entity) -> Optional[ConflictError]:
        """
        Look for another row that would violate a uniqueness rule.

        Used as the early check; backends still enforce the rule on write.
        """
        for rule in UNIQUE_RULES.get(kind, ()):
            if not rule.applies_to(entity):
                continue
            conditions: List[Condition] = [Eq(rule.field, entity[rule.field]), Ne("id", entity["id"])]
            if rule.active_only:
                conditions.append(Eq("archived", False))
            if self.count(kind, entity["owner_id"], conditions):
                return unique_conflict(kind, rule, entity[rule.field])
        return None


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.

    One RLock guards all collections. Uniqueness is checked under the lock
    at write time, and atomic() snapshots the collection maps so a failing
    unit leaves nothing behind.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, Dict[str, Entity]] = {kind: {} for kind in COLLECTIONS}
        self._depth = 0

    @contextmanager
    def atomic(self, readonly: bool = False) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0 and not readonly
            snapshot = {kind: dict(rows) for kind, rows in self._items.items()} if outermost else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    self._items = snapshot
                    logger.debug("Rolled back in-memory unit of work")
                raise
            finally:
                self._depth -= 1

    def _collection(self, kind: str) -> Dict[str, Entity]:
        try:
            return self._items[kind]
        except KeyError as exc:
            raise InternalError(f"Unknown collection {kind!r}") from exc

    def _owned(self, kind: str, owner_id: str) -> List[Entity]:
        return [e for e in self._collection(kind).values() if e["owner_id"] == owner_id]

    def _check_unique(self, kind: str, entity: Entity) -> None:
        for rule in UNIQUE_RULES.get(kind, ()):
            if not rule.applies_to(entity):
                continue
            for other in self._owned(kind, entity["owner_id"]):
                if other["id"] == entity["id"] or not rule.applies_to(other):
                    continue
                if other[rule.field] == entity[rule.field]:
                    raise unique_conflict(kind, rule, entity[rule.field])

    def get(self, kind: str, owner_id: str, entity_id: str) -> Optional[Entity]:
        with self._lock:
            item = self._collection(kind).get(entity_id)
            if item is None or item["owner_id"] != owner_id:
                return None
            return copy.deepcopy(item)

    def find(
        self,
        kind: str,
        owner_id: str,
        conditions: Sequence[Condition] = (),
        sort: Optional[Sort] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Entity]:
        with self._lock:
            rows = select(self._owned(kind, owner_id), conditions, sort, offset, limit)
            # Return copies to avoid external mutation
            return [copy.deepcopy(dict(r)) for r in rows]

    def count(self, kind: str, owner_id: str, conditions: Sequence[Condition] = ()) -> int:
        with self._lock:
            return sum(1 for e in self._owned(kind, owner_id) if matches_all(e, conditions))

    def insert(self, kind: str, entity: Entity) -> Entity:
        with self._lock:
            items = self._collection(kind)
            if entity["id"] in items:
                raise ConflictError("Duplicate id", {"field": "id"})
            self._check_unique(kind, entity)
            items[entity["id"]] = copy.deepcopy(entity)
            return copy.deepcopy(entity)

    def replace(self, kind: str, entity: Entity) -> Entity:
        with self._lock:
            items = self._collection(kind)
            existing = items.get(entity["id"])
            if existing is None or existing["owner_id"] != entity["owner_id"]:
                raise InternalError(f"Cannot replace missing {kind} row {entity['id']}")
            self._check_unique(kind, entity)
            items[entity["id"]] = copy.deepcopy(entity)
            return copy.deepcopy(entity)

    def delete(self, kind: str, owner_id: str, entity_id: str) -> bool:
        with self._lock:
            items = self._collection(kind)
            existing = items.get(entity_id)
            if existing is None or existing["owner_id"] != owner_id:
                return False
            del items[entity_id]
            return True


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> Repository:
    """
    Return the process-wide repository configured in settings.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository (stdlib sqlite3)
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        logger.info("Using SQLite repository at %s", settings.sqlite_db_path)
        return SQLiteRepository(settings.sqlite_db_path)
    logger.info("Using in-memory repository")
    return InMemoryRepository()
