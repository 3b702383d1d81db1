from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from jinja2 import Environment, StrictUndefined

from transform_copilot.core.errors import CompilationError

_MISSING = object()


def make_environment() -> Environment:
    return Environment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )


class RelationProxy:
    """What ``{{ this }}``, ``ref()`` and ``source()`` evaluate to."""

    def __init__(self, rendered: str, identifier: str = "", schema: str = "", database: Optional[str] = None):
        self.rendered = rendered
        self.identifier = identifier
        self.schema = schema
        self.database = database

    def __str__(self) -> str:
        return self.rendered

    def __html__(self) -> str:
        return self.rendered


@dataclass
class TargetProxy:
    name: str
    type: str
    schema: str
    database: Optional[str] = None
    threads: int = 1

    @classmethod
    def from_config(cls, cfg) -> "TargetProxy":
        return cls(name=cfg.name, type=cfg.type, schema=cfg.schema_name, database=cfg.database, threads=cfg.threads)


@dataclass
class Capture:
    """Calls observed while rendering a node at parse time."""

    refs: List[str] = field(default_factory=list)
    sources: List[Tuple[str, str]] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)


def make_var(vars_: Dict[str, Any], node_name: str) -> Callable[..., Any]:
    def var(name: str, default: Any = _MISSING) -> Any:
        if name in vars_:
            return vars_[name]
        if default is not _MISSING:
            return default
        raise CompilationError(f"Required var '{name}' not found in project vars or --vars", node=node_name)

    return var


def make_env_var(node_name: str) -> Callable[..., Any]:
    def env_var(name: str, default: Any = _MISSING) -> Any:
        value = os.environ.get(name)
        if value is not None:
            return value
        if default is not _MISSING:
            return default
        raise CompilationError(f"Environment variable '{name}' is required but not set", node=node_name)

    return env_var


def parse_ref_args(args: Tuple[Any, ...], node_name: str) -> str:
    # ref("model") or ref("package", "model"); the package is ignored.
    if len(args) == 1:
        return str(args[0])
    if len(args) == 2:
        return str(args[1])
    raise CompilationError(f"ref() takes 1 or 2 arguments, got {len(args)}", node=node_name)


def capture_context(
    *,
    node_name: str,
    vars_: Dict[str, Any],
    target: TargetProxy,
    capture: Capture,
) -> Dict[str, Any]:
    def ref(*args):
        name = parse_ref_args(args, node_name)
        if name not in capture.refs:
            capture.refs.append(name)
        return RelationProxy(f"__ref__{name}", identifier=name)

    def source(source_name, table_name):
        key = (str(source_name), str(table_name))
        if key not in capture.sources:
            capture.sources.append(key)
        return RelationProxy(f"__source__{source_name}__{table_name}", identifier=str(table_name))

    def config(**kwargs):
        capture.config.update(kwargs)
        return ""

    return {
        "ref": ref,
        "source": source,
        "config": config,
        "is_incremental": lambda: False,
        "this": RelationProxy(f"__this__{node_name}", identifier=node_name),
        "var": make_var(vars_, node_name),
        "env_var": make_env_var(node_name),
        "target": target,
    }
