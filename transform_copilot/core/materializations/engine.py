from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from transform_copilot.core.adapters.base import Column, WarehouseAdapter
from transform_copilot.core.errors import CompilationError
from transform_copilot.core.manifest.models import Node, Relation

from .incremental_engine import IncrementalEngine
from .snapshot_engine import META_COLUMNS, SnapshotEngine, SnapshotSpec

_log = logging.getLogger("transform.materialize")

TMP_SUFFIX = "__tmp"


@dataclass
class MaterializationResult:
    message: str
    rows_affected: int = -1
    statements: List[str] = field(default_factory=list)


class Materializer:
    """Turns compiled SQL into warehouse objects through an adapter."""

    def __init__(self, adapter: WarehouseAdapter):
        self.adapter = adapter

    # ------------------------------------------------------------------
    # primitives
    # ------------------------------------------------------------------
    def _exec(self, sql: str, statements: List[str]) -> int:
        statements.append(sql)
        return self.adapter.execute(sql).rows_affected

    def _drop(self, relation: Relation, statements: List[str]) -> None:
        kind = self.adapter.get_relation_type(relation)
        if kind is None:
            return
        self._exec(f"drop {kind} if exists {self.adapter.render_relation(relation)}", statements)

    def _ensure_schema(self, relation: Relation, statements: List[str]) -> None:
        sql = self.adapter.create_schema_sql(relation)
        if sql:
            self._exec(sql, statements)

    def _hooks(self, hooks: Sequence[str], statements: List[str]) -> None:
        for hook in hooks:
            if hook and hook.strip():
                self._exec(hook, statements)

    def _create_table_as(self, relation: Relation, sql: str, statements: List[str]) -> None:
        self._exec(f"create table {self.adapter.render_relation(relation)} as\n{sql}", statements)

    def _replace_table(self, relation: Relation, sql: str, statements: List[str]) -> None:
        if self.adapter.supports_rename_swap:
            tmp = relation.with_suffix(TMP_SUFFIX)
            self._drop(tmp, statements)
            self._create_table_as(tmp, sql, statements)
            self._drop(relation, statements)
            self._exec(
                f"alter table {self.adapter.render_relation(tmp)} rename to {self.adapter.render_identifier(relation)}",
                statements,
            )
        else:
            self._drop(relation, statements)
            self._create_table_as(relation, sql, statements)

    # ------------------------------------------------------------------
    # materializations
    # ------------------------------------------------------------------
    def materialize(
        self,
        node: Node,
        sql: str,
        *,
        full_refresh: bool = False,
        hooks_sql: Optional[Sequence[str]] = None,
        post_hooks_sql: Optional[Sequence[str]] = None,
    ) -> MaterializationResult:
        statements: List[str] = []
        relation = node.relation
        self._ensure_schema(relation, statements)
        self._hooks(hooks_sql if hooks_sql is not None else node.config.pre_hook, statements)

        kind = node.config.materialized
        if kind == "view":
            self._drop(relation, statements)
            self._exec(f"create view {self.adapter.render_relation(relation)} as\n{sql}", statements)
            result = MaterializationResult("CREATE VIEW")
        elif kind == "table":
            self._replace_table(relation, sql, statements)
            result = MaterializationResult("CREATE TABLE")
        elif kind == "incremental":
            result = self._incremental(node, sql, full_refresh, statements)
        else:
            raise CompilationError(f"Cannot materialize '{kind}'", node=node.unique_id)

        self._hooks(post_hooks_sql if post_hooks_sql is not None else node.config.post_hook, statements)
        result.statements = statements
        _log.debug("materialized %s as %s (%d statements)", node.unique_id, kind, len(statements))
        return result

    def _incremental(self, node: Node, sql: str, full_refresh: bool, statements: List[str]) -> MaterializationResult:
        relation = node.relation
        existing = self.adapter.get_relation_type(relation)
        if node.config.full_refresh is not None:
            full_refresh = bool(node.config.full_refresh)

        if existing is None or full_refresh or existing == "view":
            self._replace_table(relation, sql, statements)
            return MaterializationResult("CREATE TABLE")

        strategy = node.config.incremental_strategy or self.adapter.default_strategy
        if strategy not in self.adapter.supported_strategies:
            raise CompilationError(
                f"incremental_strategy '{strategy}' is not supported by the {self.adapter.name} adapter "
                f"(supported: {', '.join(sorted(self.adapter.supported_strategies))})",
                node=node.unique_id,
            )
        keys = node.config.unique_keys()
        if strategy in ("delete+insert", "merge") and not keys:
            raise CompilationError(f"incremental_strategy '{strategy}' requires unique_key", node=node.unique_id)

        staging = relation.with_suffix(TMP_SUFFIX)
        self._drop(staging, statements)
        self._create_table_as(staging, sql, statements)

        columns = self._reconcile_columns(node, staging, statements)
        target_sql = self.adapter.render_relation(relation)
        staging_sql = self.adapter.render_relation(staging)
        quoted = [self.adapter.quote(c) for c in columns]
        quoted_keys = [self.adapter.quote(k) for k in keys]

        if strategy == "merge":
            rows = self._exec(IncrementalEngine.merge_sql(target_sql, staging_sql, quoted_keys, quoted), statements)
        else:
            if strategy == "delete+insert":
                self._exec(IncrementalEngine.delete_sql(target_sql, staging_sql, quoted_keys), statements)
            rows = self._exec(IncrementalEngine.append_sql(target_sql, staging_sql, quoted), statements)

        self._drop(staging, statements)
        return MaterializationResult(f"INSERT {max(rows, 0)}", rows_affected=rows)

    def _reconcile_columns(self, node: Node, staging: Relation, statements: List[str]) -> List[str]:
        target_cols = self.adapter.get_columns(node.relation)
        staged_cols = self.adapter.get_columns(staging)
        target_names = [c for c, _ in target_cols]
        staged_names = [c for c, _ in staged_cols]
        lower_target = {c.lower() for c in target_names}
        new_cols = [(c, t) for c, t in staged_cols if c.lower() not in lower_target]
        missing = [c for c in target_names if c.lower() not in {s.lower() for s in staged_names}]

        policy = node.config.on_schema_change
        if (new_cols or missing) and policy == "fail":
            raise CompilationError(
                "Schema of incremental model changed: "
                f"new columns {[c for c, _ in new_cols]}, missing columns {missing}",
                node=node.unique_id,
            )
        target_sql = self.adapter.render_relation(node.relation)
        if new_cols and policy in ("append_new_columns", "sync_all_columns"):
            for name, dtype in new_cols:
                self._exec(
                    f"alter table {target_sql} add column {self.adapter.quote(name)} {dtype or 'text'}",
                    statements,
                )
            target_names += [c for c, _ in new_cols]
        if missing and policy == "sync_all_columns":
            for name in missing:
                self._exec(f"alter table {target_sql} drop column {self.adapter.quote(name)}", statements)
            target_names = [c for c in target_names if c not in missing]

        staged_lower = {s.lower() for s in staged_names}
        return [c for c in target_names if c.lower() in staged_lower]

    # ------------------------------------------------------------------
    # snapshots
    # ------------------------------------------------------------------
    def snapshot(
        self,
        node: Node,
        sql: str,
        *,
        hooks_sql: Optional[Sequence[str]] = None,
        post_hooks_sql: Optional[Sequence[str]] = None,
    ) -> MaterializationResult:
        cfg = node.config
        check_cols = cfg.extra("check_cols")
        spec = SnapshotSpec(
            unique_keys=cfg.unique_keys(),
            strategy=cfg.extra("strategy"),
            updated_at=cfg.extra("updated_at"),
            check_cols=[] if check_cols in (None, "all") else list(check_cols),
            invalidate_hard_deletes=bool(cfg.extra("invalidate_hard_deletes", False)),
        )
        relation = node.relation
        statements: List[str] = []
        self._ensure_schema(relation, statements)
        self._hooks(hooks_sql if hooks_sql is not None else cfg.pre_hook, statements)
        snapshot_sql = self.adapter.render_relation(relation)
        now = self.adapter.current_timestamp()

        if self.adapter.get_relation_type(relation) is None:
            self._exec(
                SnapshotEngine.create_sql(
                    spec, snapshot_sql, sql, now, self.adapter.column_type("timestamp"), quote=self.adapter.quote
                ),
                statements,
            )
            result = MaterializationResult("CREATE SNAPSHOT")
        else:
            staging = relation.with_suffix(TMP_SUFFIX)
            self._drop(staging, statements)
            self._create_table_as(staging, sql, statements)
            columns = [c for c, _ in self.adapter.get_columns(staging) if c not in META_COLUMNS]
            try:
                plan = SnapshotEngine.plan(
                    spec,
                    snapshot=snapshot_sql,
                    staging=self.adapter.render_relation(staging),
                    columns=columns,
                    now=now,
                    quote=self.adapter.quote,
                )
            except ValueError as exc:
                raise CompilationError(str(exc), node=node.unique_id) from exc
            rows = 0
            for stmt in plan.statements():
                rows = self._exec(stmt, statements)
            self._drop(staging, statements)
            result = MaterializationResult(f"INSERT {max(rows, 0)}", rows_affected=rows)

        self._hooks(post_hooks_sql if post_hooks_sql is not None else cfg.post_hook, statements)
        result.statements = statements
        return result

    # ------------------------------------------------------------------
    # seeds
    # ------------------------------------------------------------------
    def seed(self, node: Node, columns: Sequence[Column], rows: Sequence[Sequence[Any]]) -> MaterializationResult:
        statements: List[str] = []
        self._ensure_schema(node.relation, statements)
        self._drop(node.relation, statements)
        loaded = self.adapter.load_rows(node.relation, columns, rows)
        return MaterializationResult(f"INSERT {loaded}", rows_affected=loaded, statements=statements)
