"""
SQLite adapter.

SQLite has no schemas inside one database file, and views may not reference
objects in attached databases, so ``<schema>.<identifier>`` is flattened
into a single identifier ``<schema>__<identifier>``.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, List, Optional, Sequence

from transform_copilot.core.errors import AdapterError, DatabaseError
from transform_copilot.core.manifest.models import Relation

from .base import AdapterResponse, Column, WarehouseAdapter

_log = logging.getLogger("transform.adapters.sqlite")


class SqliteAdapter(WarehouseAdapter):
    name = "sqlite"
    supports_rename_swap = False
    supported_strategies = {"append", "delete+insert"}
    default_strategy = "delete+insert"

    type_map = {"integer": "integer", "real": "real", "text": "text", "timestamp": "timestamp"}

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def open(self) -> None:
        if self._conn is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
        except sqlite3.Error as exc:
            raise AdapterError(f"Cannot open sqlite database {self.path}: {exc}") from exc
        _log.debug("opened sqlite database path=%s", self.path)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        return self._conn

    @staticmethod
    def flat_name(relation: Relation) -> str:
        return f"{relation.schema}__{relation.identifier}"

    def render_relation(self, relation: Relation) -> str:
        return self.quote(self.flat_name(relation))

    def render_identifier(self, relation: Relation) -> str:
        return self.render_relation(relation)

    def create_schema_sql(self, relation: Relation) -> Optional[str]:
        return None

    def execute(self, sql: str, *, fetch: bool = False) -> AdapterResponse:
        with self._lock:
            try:
                cur = self.conn.execute(sql)
            except sqlite3.Error as exc:
                raise DatabaseError(f"{exc}\n-- while running:\n{sql.strip()}") from exc
            resp = AdapterResponse(rows_affected=cur.rowcount)
            if fetch:
                resp.columns = [d[0] for d in (cur.description or [])]
                resp.rows = [tuple(r) for r in cur.fetchall()]
            return resp

    def get_relation_type(self, relation: Relation) -> Optional[str]:
        with self._lock:
            row = self.conn.execute(
                "select type from sqlite_master where name = ? and type in ('table', 'view')",
                (self.flat_name(relation),),
            ).fetchone()
        return row[0] if row else None

    def get_columns(self, relation: Relation) -> List[Column]:
        with self._lock:
            rows = self.conn.execute(f"pragma table_info({self.render_relation(relation)})").fetchall()
        return [(r[1], (r[2] or "").lower()) for r in rows]

    def load_rows(self, relation: Relation, columns: Sequence[Column], rows: Sequence[Sequence[Any]]) -> int:
        rel = self.render_relation(relation)
        cols_ddl = ", ".join(f"{self.quote(n)} {t}" for n, t in columns)
        placeholders = ", ".join("?" for _ in columns)
        with self._lock:
            try:
                self.conn.execute(f"create table {rel} ({cols_ddl})")
                self.conn.executemany(f"insert into {rel} values ({placeholders})", [tuple(r) for r in rows])
            except sqlite3.Error as exc:
                raise DatabaseError(f"Cannot load rows into {rel}: {exc}") from exc
        return len(rows)
