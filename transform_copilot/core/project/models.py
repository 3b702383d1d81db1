from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


Materialization = Literal["table", "view", "incremental", "ephemeral", "seed", "snapshot", "test"]
IncrementalStrategy = Literal["append", "delete+insert", "merge"]
OnSchemaChange = Literal["ignore", "append_new_columns", "sync_all_columns", "fail"]

# Keys accepted without a leading "+" inside the nested models:/seeds:/snapshots: trees.
KNOWN_CONFIG_KEYS = {
    "materialized",
    "schema",
    "database",
    "alias",
    "tags",
    "enabled",
    "unique_key",
    "incremental_strategy",
    "on_schema_change",
    "full_refresh",
    "pre_hook",
    "post_hook",
    "strategy",
    "updated_at",
    "check_cols",
    "target_schema",
    "invalidate_hard_deletes",
    "severity",
    "column_types",
}


class NodeConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    materialized: Materialization = "view"
    schema_: Optional[str] = Field(default=None, alias="schema")
    database: Optional[str] = None
    alias: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    enabled: bool = True
    unique_key: Optional[Any] = None
    incremental_strategy: Optional[IncrementalStrategy] = None
    on_schema_change: OnSchemaChange = "ignore"
    full_refresh: Optional[bool] = None
    pre_hook: List[str] = Field(default_factory=list)
    post_hook: List[str] = Field(default_factory=list)

    @field_validator("tags", "pre_hook", "post_hook", mode="before")
    @classmethod
    def _listify(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    def unique_keys(self) -> List[str]:
        if self.unique_key is None:
            return []
        if isinstance(self.unique_key, str):
            return [k.strip() for k in self.unique_key.split(",") if k.strip()]
        return [str(k) for k in self.unique_key]

    def extra(self, key: str, default: Any = None) -> Any:
        return (self.model_extra or {}).get(key, default)


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    version: str = "1.0.0"
    profile: Optional[str] = None
    model_paths: List[str] = Field(default_factory=lambda: ["models"], alias="model-paths")
    seed_paths: List[str] = Field(default_factory=lambda: ["seeds"], alias="seed-paths")
    snapshot_paths: List[str] = Field(default_factory=lambda: ["snapshots"], alias="snapshot-paths")
    test_paths: List[str] = Field(default_factory=lambda: ["tests"], alias="test-paths")
    target_path: str = Field(default="target", alias="target-path")
    vars: Dict[str, Any] = Field(default_factory=dict)
    models: Dict[str, Any] = Field(default_factory=dict)
    seeds: Dict[str, Any] = Field(default_factory=dict)
    snapshots: Dict[str, Any] = Field(default_factory=dict)
