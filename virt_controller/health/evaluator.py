"""
Health Evaluator — decides whether a node's agent is still alive.

The node agent refreshes an RFC 3339 timestamp annotation on its Node.
A node is UNRESPONSIVE when that heartbeat is older than the configured
threshold, or when it carries no usable heartbeat at all (an agent that was
never seen). Pure functions: no I/O, no clock reads unless the caller omits
the current time.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from virt_controller.models.node import Node


class NodeHealth(str, Enum):
    HEALTHY = "healthy"
    UNRESPONSIVE = "unresponsive"


def parse_heartbeat(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a heartbeat annotation into an aware UTC datetime.

    Returns None for a missing or malformed value. Naive timestamps are
    taken to be UTC.
    """
    if not value:
        return None
    text = value.strip().strip('"')
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_timedelta(threshold: Union[timedelta, int, float]) -> timedelta:
    if isinstance(threshold, timedelta):
        return threshold
    return timedelta(seconds=threshold)


def evaluate_heartbeat(
    heartbeat: Optional[datetime],
    threshold: Union[timedelta, int, float],
    current_time: Optional[datetime] = None,
) -> NodeHealth:
    """UNRESPONSIVE iff the heartbeat is missing or ``now - heartbeat > threshold``."""
    if heartbeat is None:
        return NodeHealth.UNRESPONSIVE
    if current_time is None:
        current_time = datetime.now(timezone.utc)
    elif current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)
    if heartbeat.tzinfo is None:
        heartbeat = heartbeat.replace(tzinfo=timezone.utc)

    if current_time - heartbeat > _as_timedelta(threshold):
        return NodeHealth.UNRESPONSIVE
    return NodeHealth.HEALTHY


def evaluate_node(
    node: Node,
    threshold: Union[timedelta, int, float],
    current_time: Optional[datetime] = None,
) -> NodeHealth:
    """Evaluate a node from its heartbeat annotation."""
    return evaluate_heartbeat(parse_heartbeat(node.heartbeat), threshold, current_time)


def has_malformed_heartbeat(node: Node) -> bool:
    """True when the heartbeat annotation is present but cannot be parsed."""
    return bool(node.heartbeat) and parse_heartbeat(node.heartbeat) is None
