from __future__ import annotations

from typing import Set, Tuple

from .models import NodeStatus


_ALLOWED: Set[Tuple[NodeStatus, NodeStatus]] = {
    (NodeStatus.PENDING, NodeStatus.RUNNING),
    (NodeStatus.PENDING, NodeStatus.SKIPPED),

    (NodeStatus.RUNNING, NodeStatus.SUCCESS),
    (NodeStatus.RUNNING, NodeStatus.ERROR),
    (NodeStatus.RUNNING, NodeStatus.PASS),
    (NodeStatus.RUNNING, NodeStatus.FAIL),
    (NodeStatus.RUNNING, NodeStatus.WARN),
}

_TERMINAL: Set[NodeStatus] = {
    NodeStatus.SUCCESS,
    NodeStatus.ERROR,
    NodeStatus.SKIPPED,
    NodeStatus.PASS,
    NodeStatus.FAIL,
    NodeStatus.WARN,
}

# Outcomes that stop descendants from running.
BLOCKING: Set[NodeStatus] = {NodeStatus.ERROR, NodeStatus.FAIL, NodeStatus.SKIPPED}


def is_terminal(state: NodeStatus) -> bool:
    return state in _TERMINAL


def can_transition(src: NodeStatus, dst: NodeStatus) -> bool:
    if src in _TERMINAL:
        return False
    return (src, dst) in _ALLOWED


def ensure_transition(src: NodeStatus, dst: NodeStatus) -> None:
    if not can_transition(src, dst):
        raise ValueError(f"Illegal transition: {src.value} -> {dst.value}")
