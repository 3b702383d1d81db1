from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from transform_copilot.core.project.models import NodeConfig
from transform_copilot.core.schema.models import ColumnDoc, FreshnessRule


ResourceType = Literal["model", "seed", "snapshot", "test", "source"]

REFABLE = ("model", "seed", "snapshot")


@dataclass(frozen=True)
class Relation:
    database: Optional[str]
    schema: str
    identifier: str

    def with_suffix(self, suffix: str) -> "Relation":
        return Relation(self.database, self.schema, self.identifier + suffix)

    def to_dict(self) -> Dict[str, Any]:
        return {"database": self.database, "schema": self.schema, "identifier": self.identifier}


@dataclass
class GenericTestMetadata:
    name: str
    kwargs: Dict[str, Any] = field(default_factory=dict)
    column_name: Optional[str] = None
    attached_node: Optional[str] = None


@dataclass
class Node:
    unique_id: str
    resource_type: ResourceType
    name: str
    package: str
    path: str
    fqn: List[str] = field(default_factory=list)
    raw_sql: str = ""
    config: NodeConfig = field(default_factory=NodeConfig)
    description: str = ""
    columns: Dict[str, ColumnDoc] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    refs: List[str] = field(default_factory=list)
    sources: List[Tuple[str, str]] = field(default_factory=list)
    relation: Optional[Relation] = None

    # tests
    test_metadata: Optional[GenericTestMetadata] = None

    # sources
    source_name: Optional[str] = None
    loaded_at_field: Optional[str] = None
    freshness: Optional[FreshnessRule] = None

    @property
    def tags(self) -> List[str]:
        return list(self.config.tags)

    @property
    def materialized(self) -> str:
        return self.config.materialized

    @property
    def is_ephemeral(self) -> bool:
        return self.resource_type == "model" and self.config.materialized == "ephemeral"

    @property
    def severity(self) -> str:
        return str(self.config.extra("severity", "error")).lower()

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "unique_id": self.unique_id,
            "resource_type": self.resource_type,
            "name": self.name,
            "package_name": self.package,
            "path": self.path,
            "fqn": self.fqn,
            "description": self.description,
            "config": self.config.model_dump(by_alias=True, exclude_none=True),
            "tags": self.tags,
            "depends_on": {"nodes": list(self.depends_on)},
            "refs": list(self.refs),
            "sources": [list(s) for s in self.sources],
            "columns": {k: c.model_dump(exclude={"tests"}) for k, c in self.columns.items()},
            "relation": self.relation.to_dict() if self.relation else None,
            "raw_code": self.raw_sql,
        }
        if self.test_metadata:
            out["test_metadata"] = {
                "name": self.test_metadata.name,
                "kwargs": self.test_metadata.kwargs,
                "column_name": self.test_metadata.column_name,
                "attached_node": self.test_metadata.attached_node,
            }
        if self.resource_type == "source":
            out["source_name"] = self.source_name
            out["loaded_at_field"] = self.loaded_at_field
            out["freshness"] = self.freshness.model_dump() if self.freshness else None
        return out


@dataclass
class Manifest:
    project_name: str
    nodes: Dict[str, Node] = field(default_factory=dict)
    sources: Dict[str, Node] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def get(self, unique_id: str) -> Node:
        if unique_id in self.nodes:
            return self.nodes[unique_id]
        return self.sources[unique_id]

    def all_nodes(self) -> Dict[str, Node]:
        return {**self.nodes, **self.sources}

    def find_refable(self, name: str) -> Optional[Node]:
        for kind in REFABLE:
            n = self.nodes.get(f"{kind}.{self.project_name}.{name}")
            if n is not None:
                return n
        return None

    def find_source(self, source_name: str, table_name: str) -> Optional[Node]:
        return self.sources.get(f"source.{self.project_name}.{source_name}.{table_name}")

    def of_type(self, resource_type: str) -> List[Node]:
        return [n for n in self.all_nodes().values() if n.resource_type == resource_type]

    def tests_for(self, unique_id: str) -> List[Node]:
        return [
            n
            for n in self.nodes.values()
            if n.resource_type == "test" and n.test_metadata and n.test_metadata.attached_node == unique_id
        ]
