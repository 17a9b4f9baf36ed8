"""Controller data models."""

from virt_controller.models.controller import ControllerConfig, CycleResult, PatchOutcome
from virt_controller.models.events import Event, EventType
from virt_controller.models.node import HEARTBEAT_ANNOTATION, NODE_SCHEDULABLE_LABEL, Node
from virt_controller.models.pod import DOMAIN_LABEL, Pod
from virt_controller.models.vm import (
    FINAL_PHASES,
    INITIALIZED_ANNOTATION,
    NODE_NAME_LABEL,
    PLACED_PHASES,
    VirtualMachine,
    VMPhase,
)

__all__ = [
    "ControllerConfig",
    "CycleResult",
    "DOMAIN_LABEL",
    "Event",
    "EventType",
    "FINAL_PHASES",
    "HEARTBEAT_ANNOTATION",
    "INITIALIZED_ANNOTATION",
    "NODE_NAME_LABEL",
    "NODE_SCHEDULABLE_LABEL",
    "Node",
    "PLACED_PHASES",
    "PatchOutcome",
    "Pod",
    "VMPhase",
    "VirtualMachine",
]
