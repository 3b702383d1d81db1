"""SQL for the built-in generic tests. Each query returns the failing rows."""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from transform_copilot.core.errors import CompilationError

GENERIC_TESTS = ("not_null", "unique", "accepted_values", "relationships")


def _require(kwargs: Dict[str, Any], key: str, test: str) -> Any:
    if key not in kwargs or kwargs[key] in (None, "", []):
        raise CompilationError(f"{test} test requires '{key}'")
    return kwargs[key]


def _literal(value: Any, quote: bool) -> str:
    if not quote:
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def build_generic_test_sql(
    name: str,
    *,
    relation: str,
    column: Optional[str],
    kwargs: Dict[str, Any],
    render_to: Callable[[str], str],
) -> str:
    col = column or kwargs.get("column_name")
    if name not in GENERIC_TESTS:
        raise CompilationError(f"Unknown generic test '{name}'")
    if not col:
        raise CompilationError(f"{name} test must be attached to a column")

    if name == "not_null":
        return f"select *\nfrom {relation}\nwhere {col} is null"

    if name == "unique":
        return (
            f"select {col} as unique_field, count(*) as n_records\n"
            f"from {relation}\n"
            f"where {col} is not null\n"
            f"group by {col}\n"
            f"having count(*) > 1"
        )

    if name == "accepted_values":
        values = _require(kwargs, "values", name)
        quote = bool(kwargs.get("quote", True))
        rendered = ", ".join(_literal(v, quote) for v in values)
        return (
            f"select {col} as value_field, count(*) as n_records\n"
            f"from {relation}\n"
            f"where {col} not in ({rendered})\n"
            f"group by {col}"
        )

    to = render_to(str(_require(kwargs, "to", name)))
    field = _require(kwargs, "field", name)
    return (
        f"select child.{col} as from_field\n"
        f"from {relation} as child\n"
        f"left join {to} as parent\n"
        f"  on child.{col} = parent.{field}\n"
        f"where child.{col} is not null\n"
        f"  and parent.{field} is null"
    )


def failures_sql(test_sql: str) -> str:
    return f"select count(*) as failures from (\n{test_sql}\n) as test_results"
