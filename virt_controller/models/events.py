"""Operational events recorded against cluster objects."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EventType(str, Enum):
    NORMAL = "Normal"
    WARNING = "Warning"


class Event(BaseModel):
    """A human-readable note about an anomaly seen while reconciling."""

    id: str
    kind: str                               # "Node", "VirtualMachine"
    name: str
    namespace: Optional[str] = None
    type: EventType = EventType.NORMAL
    reason: str                             # Machine-readable, CamelCase
    message: str                            # Human-readable
    created_at: datetime
