from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import ConflictError, InternalError
from .filters import CASEFOLD_SQL_FUNCTION, Condition, Sort, casefold, sql_value, where_sql
from .models import ARTICLES, SECTIONS, TASKS
from .repositories import UNIQUE_RULES, Entity, Repository, unique_conflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Table:
    name: str
    columns: Tuple[str, ...]
    ddl: str
    indexes: Tuple[str, ...] = ()
    json_columns: frozenset = frozenset()
    datetime_columns: frozenset = frozenset({"created_at", "updated_at"})
    bool_columns: frozenset = frozenset()


_TABLES: Dict[str, _Table] = {
    SECTIONS: _Table(
        name=SECTIONS,
        columns=("id", "owner_id", "name", "description", "color", "icon", "archived",
                 "created_at", "updated_at"),
        ddl="""
            CREATE TABLE IF NOT EXISTS sections (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NULL,
                color TEXT NOT NULL,
                icon TEXT NOT NULL,
                archived INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        indexes=(
            "CREATE INDEX IF NOT EXISTS idx_sections_owner_archived ON sections(owner_id, archived)",
            # Partial unique index: archived sections do not block name reuse.
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_sections_owner_name_active "
            "ON sections(owner_id, name) WHERE archived = 0",
        ),
        bool_columns=frozenset({"archived"}),
    ),
    TASKS: _Table(
        name=TASKS,
        columns=("id", "owner_id", "name", "description", "due_date", "notes", "priority", "status",
                 "section", "tags", "linked_articles", "estimated_time", "actual_time", "completed_at",
                 "created_at", "updated_at"),
        ddl="""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NULL,
                due_date TEXT NOT NULL,
                notes TEXT NULL,
                priority TEXT NOT NULL DEFAULT 'medium',
                status TEXT NOT NULL DEFAULT 'pending',
                section TEXT NOT NULL,
                tags TEXT NOT NULL DEFAULT '[]',
                linked_articles TEXT NOT NULL DEFAULT '[]',
                estimated_time INTEGER NULL,
                actual_time INTEGER NULL,
                completed_at TEXT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        indexes=(
            "CREATE INDEX IF NOT EXISTS idx_tasks_owner_section_status ON tasks(owner_id, section, status)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_owner_due_date ON tasks(owner_id, due_date)",
            "CREATE INDEX IF NOT EXISTS idx_tasks_owner_priority ON tasks(owner_id, priority)",
        ),
        json_columns=frozenset({"tags", "linked_articles"}),
        datetime_columns=frozenset({"due_date", "completed_at", "created_at", "updated_at"}),
    ),
    ARTICLES: _Table(
        name=ARTICLES,
        columns=("id", "owner_id", "title", "slug", "content", "excerpt", "cover_image", "images",
                 "tags", "category", "status", "referenced_articles", "published_at", "read_time",
                 "views", "created_at", "updated_at"),
        ddl="""
            CREATE TABLE IF NOT EXISTS articles (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                title TEXT NULL,
                slug TEXT NOT NULL,
                content TEXT NULL,
                excerpt TEXT NULL,
                cover_image TEXT NOT NULL DEFAULT '',
                images TEXT NOT NULL DEFAULT '[]',
                tags TEXT NOT NULL DEFAULT '[]',
                category TEXT NULL,
                status TEXT NOT NULL DEFAULT 'draft',
                referenced_articles TEXT NOT NULL DEFAULT '[]',
                published_at TEXT NULL,
                read_time INTEGER NOT NULL DEFAULT 1,
                views INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        indexes=(
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_articles_owner_slug ON articles(owner_id, slug)",
            "CREATE INDEX IF NOT EXISTS idx_articles_owner_status ON articles(owner_id, status)",
            "CREATE INDEX IF NOT EXISTS idx_articles_owner_category ON articles(owner_id, category)",
        ),
        json_columns=frozenset({"images", "tags", "referenced_articles"}),
        datetime_columns=frozenset({"published_at", "created_at", "updated_at"}),
    ),
}


class SQLiteRepository(Repository):
    """
    SQLite repository implementing the Repository interface.

    Uniqueness is enforced by unique indexes, so a duplicate that slips past
    the early check still fails at commit. atomic() holds one connection per
    thread inside BEGIN IMMEDIATE ... COMMIT; read-only units use a deferred
    BEGIN so they never queue behind a writer.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        # Search compiles to this so non-ASCII text folds like it does in memory.
        conn.create_function(CASEFOLD_SQL_FUNCTION, 1, casefold, deterministic=True)
        return conn

    def _init_db(self) -> None:
        with self.atomic():
            conn = self._local.conn
            for table in _TABLES.values():
                conn.execute(table.ddl)
                for index_sql in table.indexes:
                    conn.execute(index_sql)

    @contextmanager
    def atomic(self, readonly: bool = False) -> Iterator[None]:
        # A nested unit joins the outer transaction; a deferred one upgrades
        # itself on its first write.
        if getattr(self._local, "conn", None) is not None:
            yield
            return

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            logger.exception("Could not open SQLite database %s", self._db_path)
            raise InternalError("Storage failure") from exc

        self._local.conn = conn
        try:
            conn.execute("BEGIN" if readonly else "BEGIN IMMEDIATE")
            yield
            conn.execute("COMMIT")
        except BaseException as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            # Integrity errors are translated into conflicts by insert/replace.
            if isinstance(exc, sqlite3.Error) and not isinstance(exc, sqlite3.IntegrityError):
                logger.exception("SQLite unit of work failed")
                raise InternalError("Storage failure") from exc
            raise
        finally:
            self._local.conn = None
            conn.close()

    @contextmanager
    def _conn(self, readonly: bool = False) -> Iterator[sqlite3.Connection]:
        with self.atomic(readonly):
            yield self._local.conn

    @staticmethod
    def _table(kind: str) -> _Table:
        try:
            return _TABLES[kind]
        except KeyError as exc:
            raise InternalError(f"Unknown collection {kind!r}") from exc

    @staticmethod
    def _to_row(table: _Table, entity: Entity) -> List[Any]:
        values: List[Any] = []
        for col in table.columns:
            value = entity.get(col)
            if col in table.json_columns:
                values.append(json.dumps(value or [], ensure_ascii=False))
            else:
                values.append(sql_value(value))
        return values

    @staticmethod
    def _row_to_entity(table: _Table, row: sqlite3.Row) -> Entity:
        entity: Entity = {}
        for col in table.columns:
            value = row[col]
            if col in table.json_columns:
                value = json.loads(value) if value else []
            elif col in table.datetime_columns:
                value = datetime.fromisoformat(value) if value is not None else None
            elif col in table.bool_columns:
                value = bool(value)
            entity[col] = value
        return entity

    def _translate_integrity(self, kind: str, entity: Entity, exc: sqlite3.IntegrityError) -> ConflictError:
        text = str(exc)
        for rule in UNIQUE_RULES.get(kind, ()):
            if f"{kind}.{rule.field}" in text:
                logger.warning("Unique index rejected %s.%s=%r", kind, rule.field, entity.get(rule.field))
                return unique_conflict(kind, rule, entity.get(rule.field))
        return ConflictError("Duplicate record", {"reason": text})

    def get(self, kind: str, owner_id: str, entity_id: str) -> Optional[Entity]:
        table = self._table(kind)
        with self._conn(readonly=True) as conn:
            row = conn.execute(
                f"SELECT * FROM {table.name} WHERE id = ? AND owner_id = ?", (entity_id, owner_id)
            ).fetchone()
            return self._row_to_entity(table, row) if row else None

    def find(
        self,
        kind: str,
        owner_id: str,
        conditions: Sequence[Condition] = (),
        sort: Optional[Sort] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Entity]:
        table = self._table(kind)
        where, params = where_sql(conditions)
        order_sql = sort.to_sql() if sort is not None else ""
        with self._conn(readonly=True) as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {table.name}
                WHERE owner_id = ? AND {where}
                {order_sql}
                LIMIT ? OFFSET ?
                """,
                [owner_id, *params, -1 if limit is None else max(limit, 0), max(offset, 0)],
            ).fetchall()
            return [self._row_to_entity(table, r) for r in rows]

    def count(self, kind: str, owner_id: str, conditions: Sequence[Condition] = ()) -> int:
        table = self._table(kind)
        where, params = where_sql(conditions)
        with self._conn(readonly=True) as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM {table.name} WHERE owner_id = ? AND {where}",
                [owner_id, *params],
            ).fetchone()
            return int(row["cnt"]) if row else 0

    def insert(self, kind: str, entity: Entity) -> Entity:
        table = self._table(kind)
        cols = ", ".join(table.columns)
        marks = ", ".join("?" for _ in table.columns)
        try:
            with self._conn() as conn:
                conn.execute(f"INSERT INTO {table.name} ({cols}) VALUES ({marks})", self._to_row(table, entity))
        except sqlite3.IntegrityError as exc:
            raise self._translate_integrity(kind, entity, exc) from exc
        return dict(entity)

    def replace(self, kind: str, entity: Entity) -> Entity:
        table = self._table(kind)
        mutable = [c for c in table.columns if c not in ("id", "owner_id")]
        assignments = ", ".join(f"{c} = ?" for c in mutable)
        row = dict(zip(table.columns, self._to_row(table, entity)))
        try:
            with self._conn() as conn:
                cur = conn.execute(
                    f"UPDATE {table.name} SET {assignments} WHERE id = ? AND owner_id = ?",
                    [*(row[c] for c in mutable), entity["id"], entity["owner_id"]],
                )
                if cur.rowcount == 0:
                    raise InternalError(f"Cannot replace missing {kind} row {entity['id']}")
        except sqlite3.IntegrityError as exc:
            raise self._translate_integrity(kind, entity, exc) from exc
        return dict(entity)

    def delete(self, kind: str, owner_id: str, entity_id: str) -> bool:
        table = self._table(kind)
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {table.name} WHERE id = ? AND owner_id = ?", (entity_id, owner_id))
            return cur.rowcount > 0
