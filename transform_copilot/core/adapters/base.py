from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Set, Tuple

from transform_copilot.core.manifest.models import Relation


@dataclass
class AdapterResponse:
    rows_affected: int = -1
    columns: List[str] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)


Column = Tuple[str, str]


class WarehouseAdapter(ABC):
    name: str
    quote_char: str = '"'
    supports_rename_swap: bool = True
    supported_strategies: Set[str] = {"append", "delete+insert", "merge"}
    default_strategy: str = "merge"

    type_map = {"integer": "integer", "real": "float", "text": "varchar", "timestamp": "timestamp"}

    @abstractmethod
    def open(self) -> None:
        """Acquire the underlying connection."""

    @abstractmethod
    def close(self) -> None:
        """Release the connection; safe to call twice."""

    @abstractmethod
    def execute(self, sql: str, *, fetch: bool = False) -> AdapterResponse:
        """Run a single statement. Failures raise DatabaseError."""

    @abstractmethod
    def get_relation_type(self, relation: Relation) -> Optional[str]:
        """Return "table", "view" or None when the relation does not exist."""

    @abstractmethod
    def get_columns(self, relation: Relation) -> List[Column]:
        """Return (name, data_type) pairs in ordinal order."""

    @abstractmethod
    def load_rows(self, relation: Relation, columns: Sequence[Column], rows: Sequence[Sequence[Any]]) -> int:
        """Create ``relation`` with ``columns`` and bulk insert ``rows``."""

    def __enter__(self) -> "WarehouseAdapter":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def quote(self, identifier: str) -> str:
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def render_relation(self, relation: Relation) -> str:
        parts = [p for p in (relation.database, relation.schema, relation.identifier) if p]
        return ".".join(self.quote(p) for p in parts)

    def render_identifier(self, relation: Relation) -> str:
        """Unqualified name used by ALTER ... RENAME TO."""
        return self.quote(relation.identifier)

    def relation_exists(self, relation: Relation) -> bool:
        return self.get_relation_type(relation) is not None

    def current_timestamp(self) -> str:
        return "current_timestamp"

    def create_schema_sql(self, relation: Relation) -> Optional[str]:
        parts = [p for p in (relation.database, relation.schema) if p]
        return "create schema if not exists " + ".".join(self.quote(p) for p in parts)

    def column_type(self, logical: str) -> str:
        return self.type_map.get(logical, logical)

    def test_connection(self) -> None:
        self.execute("select 1", fetch=True)
