"""
Source freshness.

For every selected source table that declares ``loaded_at_field`` and a
freshness rule, the newest ``loaded_at_field`` value is compared with the
current time:

    freshness:
      warn_after: {count: 12, period: hour}
      error_after: {count: 24, period: hour}
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from transform_copilot.core.errors import TransformError
from transform_copilot.core.graph.selector import select_nodes
from transform_copilot.core.manifest.models import Node
from transform_copilot.core.observability.metrics import observe_freshness
from transform_copilot.core.schema.models import FreshnessRule
from transform_copilot.core.session import Session

_log = logging.getLogger("transform.freshness")

PASS = "pass"
WARN = "warn"
ERROR = "error"
RUNTIME_ERROR = "runtime error"


@dataclass
class FreshnessResult:
    unique_id: str
    status: str
    max_loaded_at: Optional[str] = None
    snapshotted_at: Optional[str] = None
    age_seconds: Optional[float] = None
    criteria: Optional[Dict[str, Any]] = None
    message: str = ""
    execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


def coerce_timestamp(value: Any) -> datetime:
    """Drivers return datetimes or ISO strings; naive values are taken as UTC."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        text = value.strip().replace("Z", "+00:00")
        try:
            ts = datetime.fromisoformat(text)
        except ValueError as exc:
            raise TransformError(f"Cannot interpret {value!r} as a timestamp") from exc
    else:
        raise TransformError(f"Cannot interpret {value!r} as a timestamp")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def classify(age_seconds: float, rule: FreshnessRule) -> str:
    if rule.error_after is not None and age_seconds > rule.error_after.seconds():
        return ERROR
    if rule.warn_after is not None and age_seconds > rule.warn_after.seconds():
        return WARN
    return PASS


def freshness_sql(session: Session, node: Node) -> str:
    adapter = session.adapter
    sql = (
        f"select max({node.loaded_at_field}) as max_loaded_at\n"
        f"from {adapter.render_relation(node.relation)}"
    )
    if node.freshness and node.freshness.filter:
        sql += f"\nwhere {node.freshness.filter}"
    return sql


def check_source(session: Session, node: Node, *, now: Optional[datetime] = None) -> FreshnessResult:
    rule = node.freshness
    now = now or datetime.now(timezone.utc)
    result = FreshnessResult(unique_id=node.unique_id, status=RUNTIME_ERROR, snapshotted_at=now.isoformat())
    if rule is not None:
        result.criteria = rule.model_dump()

    t0 = time.time()
    try:
        resp = session.adapter.execute(freshness_sql(session, node), fetch=True)
        value = resp.rows[0][0] if resp.rows else None
        if value is None:
            result.message = "no rows with a loaded_at value"
            return result
        max_loaded = coerce_timestamp(value)
        age = (now - max_loaded).total_seconds()
        result.max_loaded_at = max_loaded.isoformat()
        result.age_seconds = age
        result.status = classify(age, rule)
        result.message = f"{result.status.upper()} age={int(age)}s"
    except TransformError as exc:
        result.message = str(exc)
        _log.error("freshness check failed for %s: %s", node.unique_id, exc)
    finally:
        result.execution_time = time.time() - t0
        observe_freshness(result.status)
    return result


def check_freshness(
    session: Session,
    *,
    select: Optional[List[str]] = None,
    exclude: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> List[FreshnessResult]:
    if select:
        selected = select_nodes(session.manifest, session.graph, select, exclude, resource_types={"source"})
    else:
        selected = set(session.manifest.sources)
        if exclude:
            selected -= select_nodes(session.manifest, session.graph, exclude, resource_types={"source"})

    results: List[FreshnessResult] = []
    for uid in sorted(selected):
        node = session.manifest.sources[uid]
        if not node.loaded_at_field or node.freshness is None or not node.freshness.is_active():
            _log.debug("skipping %s: no freshness configured", uid)
            continue
        results.append(check_source(session, node, now=now))

    session.write_artifact(
        "sources.json",
        {
            "generated_at": (now or datetime.now(timezone.utc)).isoformat(),
            "results": [r.to_dict() for r in results],
        },
    )
    return results
