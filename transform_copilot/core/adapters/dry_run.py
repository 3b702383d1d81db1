from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from transform_copilot.core.manifest.models import Relation

from .base import AdapterResponse, Column, WarehouseAdapter

_log = logging.getLogger("transform.adapters.dry_run")


_DIALECTS: Dict[str, Dict[str, Any]] = {
    "snowflake": {
        "quote_char": '"',
        "types": {"integer": "number(38,0)", "real": "float", "text": "varchar", "timestamp": "timestamp_ntz"},
    },
    "bigquery": {
        "quote_char": "`",
        "types": {"integer": "int64", "real": "float64", "text": "string", "timestamp": "timestamp"},
    },
    "redshift": {
        "quote_char": '"',
        "types": {"integer": "bigint", "real": "double precision", "text": "varchar(256)", "timestamp": "timestamp"},
    },
    "postgres": {
        "quote_char": '"',
        "types": {"integer": "bigint", "real": "double precision", "text": "text", "timestamp": "timestamp"},
    },
    "databricks": {
        "quote_char": "`",
        "types": {"integer": "bigint", "real": "double", "text": "string", "timestamp": "timestamp"},
    },
}


def known_dialects() -> List[str]:
    return sorted(_DIALECTS)


class DryRunAdapter(WarehouseAdapter):
    """
    Renders SQL in a warehouse dialect and records it instead of executing.
    Every relation is reported as absent, so incremental models and
    snapshots compile as first runs.
    """

    def __init__(self, dialect: str):
        spec = _DIALECTS[dialect]
        self.name = dialect
        self.quote_char = spec["quote_char"]
        self.type_map = dict(spec["types"])
        self.statements: List[str] = []
        self._lock = threading.Lock()

    def open(self) -> None:
        return None

    def close(self) -> None:
        return None

    def execute(self, sql: str, *, fetch: bool = False) -> AdapterResponse:
        with self._lock:
            self.statements.append(sql.strip())
        _log.debug("dry-run statement dialect=%s sql=%s", self.name, sql.strip()[:200])
        return AdapterResponse(rows_affected=0, rows=[(0,)] if fetch else [])

    def get_relation_type(self, relation: Relation) -> Optional[str]:
        return None

    def get_columns(self, relation: Relation) -> List[Column]:
        return []

    def load_rows(self, relation: Relation, columns: Sequence[Column], rows: Sequence[Sequence[Any]]) -> int:
        rel = self.render_relation(relation)
        cols_ddl = ", ".join(f"{self.quote(n)} {t}" for n, t in columns)
        self.execute(f"create table {rel} ({cols_ddl})")
        self.execute(f"-- insert {len(rows)} rows into {rel}")
        return len(rows)
