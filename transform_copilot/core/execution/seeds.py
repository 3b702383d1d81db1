from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from transform_copilot.core.errors import ProjectError


def _is_int(v: str) -> bool:
    try:
        int(v)
        return True
    except ValueError:
        return False


def _is_real(v: str) -> bool:
    try:
        float(v)
        return True
    except ValueError:
        return False


def infer_type(values: Sequence[str]) -> str:
    """Logical type of a CSV column: integer, real or text. Empty cells are ignored."""
    present = [v for v in values if v != ""]
    if not present:
        return "text"
    if all(_is_int(v) for v in present):
        return "integer"
    if all(_is_real(v) for v in present):
        return "real"
    return "text"


def _convert(value: str, logical: str) -> Any:
    if value == "":
        return None
    if logical == "integer":
        return int(value)
    if logical == "real":
        return float(value)
    return value


def read_seed(path: Path, column_types: Optional[Dict[str, str]] = None) -> Tuple[List[Tuple[str, str]], List[List[Any]]]:
    """
    Returns ([(column, logical_type)], rows). ``column_types`` overrides
    inference per column and is passed through to the adapter as-is.
    """
    try:
        with path.open(newline="", encoding="utf-8") as fh:
            reader = csv.reader(fh)
            header = next(reader, None)
            raw_rows = [r for r in reader if r]
    except OSError as exc:
        raise ProjectError(f"Cannot read seed: {exc}", path=str(path)) from exc

    if not header:
        raise ProjectError("Seed file has no header row", path=str(path))
    header = [h.strip() for h in header]
    for i, row in enumerate(raw_rows, start=2):
        if len(row) != len(header):
            raise ProjectError(f"Row {i} has {len(row)} values, expected {len(header)}", path=str(path))

    overrides = column_types or {}
    types = []
    for idx, name in enumerate(header):
        types.append(overrides.get(name) or infer_type([r[idx] for r in raw_rows]))

    logical = [t if t in ("integer", "real", "text") else "text" for t in types]
    rows = [[_convert(r[i], logical[i]) for i in range(len(header))] for r in raw_rows]
    return list(zip(header, types)), rows
