from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .change_detection import generate_change_condition, generate_key_match

VALID_FROM = "dbt_valid_from"
VALID_TO = "dbt_valid_to"
UPDATED_AT = "dbt_updated_at"
META_COLUMNS = (UPDATED_AT, VALID_FROM, VALID_TO)


def _bare(identifier: str) -> str:
    return identifier


@dataclass
class SnapshotSpec:
    unique_keys: List[str]
    strategy: str  # timestamp | check
    updated_at: Optional[str] = None
    check_cols: List[str] = field(default_factory=list)
    invalidate_hard_deletes: bool = False


@dataclass
class SnapshotPlan:
    close_changed_sql: str
    insert_new_sql: str
    invalidate_deleted_sql: Optional[str] = None

    def statements(self) -> List[str]:
        out = [self.close_changed_sql]
        if self.invalidate_deleted_sql:
            out.append(self.invalidate_deleted_sql)
        out.append(self.insert_new_sql)
        return out


class SnapshotEngine:
    """Type 2 slowly-changing-dimension SQL."""

    @staticmethod
    def _version_ts(spec: SnapshotSpec, alias: str, now: str, quote: Callable[[str], str] = _bare) -> str:
        if spec.strategy == "timestamp":
            return f"{alias}.{quote(spec.updated_at)}"
        return now

    @staticmethod
    def create_sql(
        spec: SnapshotSpec,
        snapshot: str,
        source_sql: str,
        now: str,
        ts_type: str,
        quote: Callable[[str], str] = _bare,
    ) -> str:
        ts = SnapshotEngine._version_ts(spec, "src", now, quote)
        return (
            f"create table {snapshot} as\n"
            f"select src.*,\n"
            f"       {ts} as {quote(UPDATED_AT)},\n"
            f"       {ts} as {quote(VALID_FROM)},\n"
            f"       cast(null as {ts_type}) as {quote(VALID_TO)}\n"
            f"from (\n{source_sql}\n) as src"
        )

    @staticmethod
    def plan(
        spec: SnapshotSpec,
        *,
        snapshot: str,
        staging: str,
        columns: Sequence[str],
        now: str,
        quote: Callable[[str], str] = _bare,
    ) -> SnapshotPlan:
        if spec.strategy not in ("timestamp", "check"):
            raise ValueError(f"Unknown snapshot strategy {spec.strategy!r}")

        data_cols = [c for c in columns if c not in META_COLUMNS]
        keys = [quote(k) for k in spec.unique_keys]
        valid_to = quote(VALID_TO)
        key_match = generate_key_match(keys, "staged", snapshot)

        if spec.strategy == "timestamp":
            updated_at = quote(spec.updated_at)
            changed = f"staged.{updated_at} > {snapshot}.{quote(UPDATED_AT)}"
            new_valid_to = f"(select max(staged.{updated_at}) from {staging} as staged where {key_match})"
        else:
            check_cols = [c for c in (spec.check_cols or data_cols) if c not in spec.unique_keys]
            if not check_cols:
                raise ValueError("check strategy needs at least one non-key column to compare")
            changed = "(" + generate_change_condition([quote(c) for c in check_cols], "staged", snapshot) + ")"
            new_valid_to = now

        close_sql = (
            f"update {snapshot}\n"
            f"set {valid_to} = {new_valid_to}\n"
            f"where {valid_to} is null\n"
            f"  and exists (\n"
            f"    select 1 from {staging} as staged\n"
            f"    where {key_match}\n"
            f"      and {changed}\n"
            f"  )"
        )

        invalidate_sql = None
        if spec.invalidate_hard_deletes:
            invalidate_sql = (
                f"update {snapshot}\n"
                f"set {valid_to} = {now}\n"
                f"where {valid_to} is null\n"
                f"  and not exists (\n"
                f"    select 1 from {staging} as staged\n"
                f"    where {key_match}\n"
                f"  )"
            )

        current_match = generate_key_match(keys, "cur", "staged")
        ts = SnapshotEngine._version_ts(spec, "staged", now, quote)
        insert_cols = ", ".join(quote(c) for c in list(data_cols) + list(META_COLUMNS))
        select_cols = ", ".join(f"staged.{quote(c)}" for c in data_cols)
        insert_sql = (
            f"insert into {snapshot} ({insert_cols})\n"
            f"select {select_cols}, {ts}, {ts}, null\n"
            f"from {staging} as staged\n"
            f"where not exists (\n"
            f"  select 1 from {snapshot} as cur\n"
            f"  where {current_match}\n"
            f"    and cur.{valid_to} is null\n"
            f")"
        )

        return SnapshotPlan(
            close_changed_sql=close_sql,
            insert_new_sql=insert_sql,
            invalidate_deleted_sql=invalidate_sql,
        )
