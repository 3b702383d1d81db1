from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


@dataclass
class NodeResult:
    unique_id: str
    resource_type: str
    status: NodeStatus = NodeStatus.PENDING
    message: str = ""
    execution_time: float = 0.0
    rows_affected: Optional[int] = None
    failures: Optional[int] = None
    compiled_sql: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        d.pop("compiled_sql", None)
        return d


@dataclass
class RunResult:
    command: str
    results: List[NodeResult] = field(default_factory=list)
    elapsed_time: float = 0.0
    generated_at: str = field(default_factory=_utc_now_iso)

    @property
    def success(self) -> bool:
        return not any(r.status in (NodeStatus.ERROR, NodeStatus.FAIL) for r in self.results)

    def by_id(self) -> Dict[str, NodeResult]:
        return {r.unique_id: r for r in self.results}

    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for r in self.results:
            out[r.status.value] = out.get(r.status.value, 0) + 1
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {"command": self.command, "generated_at": self.generated_at},
            "elapsed_time": self.elapsed_time,
            "success": self.success,
            "counts": self.counts(),
            "results": [r.to_dict() for r in self.results],
        }
