from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


Period = Literal["minute", "hour", "day"]

_PERIOD_SECONDS = {"minute": 60, "hour": 3600, "day": 86400}


class FreshnessThreshold(BaseModel):
    count: int
    period: Period

    def seconds(self) -> int:
        return self.count * _PERIOD_SECONDS[self.period]


class FreshnessRule(BaseModel):
    warn_after: Optional[FreshnessThreshold] = None
    error_after: Optional[FreshnessThreshold] = None
    filter: Optional[str] = None

    def is_active(self) -> bool:
        return self.warn_after is not None or self.error_after is not None


class GenericTestDef(BaseModel):
    """One generic test attached to a model, source table or column."""

    name: str
    kwargs: Dict[str, Any] = Field(default_factory=dict)
    severity: Literal["warn", "error"] = "error"


def parse_test_entry(entry: Any) -> GenericTestDef:
    """
    Accepts the two YAML shapes:

        - unique
        - accepted_values: {values: [a, b], config: {severity: warn}}
    """
    if isinstance(entry, str):
        return GenericTestDef(name=entry)
    if isinstance(entry, dict) and len(entry) == 1:
        name, body = next(iter(entry.items()))
        body = dict(body or {})
        cfg = body.pop("config", None) or {}
        severity = str(cfg.get("severity", body.pop("severity", "error"))).lower()
        return GenericTestDef(name=str(name), kwargs=body, severity=severity)
    raise ValueError(f"Unrecognized test definition: {entry!r}")


class _HasTests(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tests: List[GenericTestDef] = Field(default_factory=list, validation_alias=AliasChoices("tests", "data_tests"))

    @field_validator("tests", mode="before")
    @classmethod
    def _parse_tests(cls, v):
        return [t if isinstance(t, GenericTestDef) else parse_test_entry(t) for t in (v or [])]


class ColumnDoc(_HasTests):
    name: str
    description: str = ""
    data_type: Optional[str] = None


class _HasColumns(_HasTests):
    description: str = ""
    columns: List[ColumnDoc] = Field(default_factory=list)

    def column_map(self) -> Dict[str, ColumnDoc]:
        return {c.name: c for c in self.columns}


class ModelDoc(_HasColumns):
    name: str
    config: Dict[str, Any] = Field(default_factory=dict)


class SourceTable(_HasColumns):
    name: str
    identifier: Optional[str] = None
    loaded_at_field: Optional[str] = None
    # Absent means "inherit"; explicit null disables freshness for this table.
    freshness: Optional[FreshnessRule] = None
    freshness_set: bool = False


class SourceDef(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    description: str = ""
    database: Optional[str] = None
    schema_: Optional[str] = Field(default=None, alias="schema")
    loader: Optional[str] = None
    loaded_at_field: Optional[str] = None
    freshness: Optional[FreshnessRule] = None
    tables: List[SourceTable] = Field(default_factory=list)

    @field_validator("tables", mode="before")
    @classmethod
    def _mark_explicit_freshness(cls, v):
        out = []
        for t in v or []:
            if isinstance(t, dict):
                t = {**t, "freshness_set": "freshness" in t}
            out.append(t)
        return out

    @property
    def schema_name(self) -> str:
        return self.schema_ or self.name

    def table_freshness(self, table: SourceTable) -> Optional[FreshnessRule]:
        if table.freshness_set:
            return table.freshness
        return self.freshness

    def table_loaded_at(self, table: SourceTable) -> Optional[str]:
        return table.loaded_at_field or self.loaded_at_field


class SchemaFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: Optional[int] = None
    models: List[ModelDoc] = Field(default_factory=list)
    sources: List[SourceDef] = Field(default_factory=list)
    snapshots: List[ModelDoc] = Field(default_factory=list)
    seeds: List[ModelDoc] = Field(default_factory=list)
