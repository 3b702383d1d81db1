from typing import Sequence


def null_safe_distinct(left: str, right: str) -> str:
    """True when two expressions differ, treating NULL = NULL as equal."""
    return f"not (coalesce({left} = {right}, false) or ({left} is null and {right} is null))"


def generate_change_condition(columns: Sequence[str], left_alias: str, right_alias: str) -> str:
    """
    Returns a SQL predicate that is true when any column differs.
    Example:
      not (coalesce(s.a = t.a, false) or (s.a is null and t.a is null)) or ...
    """
    if not columns:
        raise ValueError("Change detection columns cannot be empty")
    return " or ".join(
        "(" + null_safe_distinct(f"{left_alias}.{c}", f"{right_alias}.{c}") + ")" for c in columns
    )


def generate_key_match(keys: Sequence[str], left_alias: str, right_alias: str) -> str:
    if not keys:
        raise ValueError("At least one key column is required")
    return " and ".join(f"{left_alias}.{k} = {right_alias}.{k}" for k in keys)
