from __future__ import annotations

from typing import Sequence

from .change_detection import generate_key_match


class IncrementalEngine:
    """SQL builders for applying a staged batch to an existing incremental target."""

    @staticmethod
    def append_sql(target: str, staging: str, columns: Sequence[str]) -> str:
        cols = ", ".join(columns)
        return f"insert into {target} ({cols})\nselect {cols}\nfrom {staging}"

    @staticmethod
    def delete_sql(target: str, staging: str, unique_keys: Sequence[str]) -> str:
        if not unique_keys:
            raise ValueError("delete+insert requires a unique_key")
        match = generate_key_match(unique_keys, "staged", target)
        return f"delete from {target}\nwhere exists (\n  select 1 from {staging} as staged\n  where {match}\n)"

    @staticmethod
    def merge_sql(target: str, staging: str, unique_keys: Sequence[str], columns: Sequence[str]) -> str:
        if not unique_keys:
            raise ValueError("merge requires a unique_key")
        on = generate_key_match(unique_keys, "src", "dest")
        updates = ",\n    ".join(f"{c} = src.{c}" for c in columns)
        cols = ", ".join(columns)
        vals = ", ".join(f"src.{c}" for c in columns)
        return (
            f"merge into {target} as dest\n"
            f"using {staging} as src\n"
            f"on {on}\n"
            f"when matched then update set\n    {updates}\n"
            f"when not matched then insert ({cols})\n"
            f"values ({vals})"
        )
