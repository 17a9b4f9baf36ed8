"""VirtualMachine — the workload object whose phase the controller drives."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel

NODE_NAME_LABEL = "kubevirt.io/nodeName"
INITIALIZED_ANNOTATION = "kubevirt.io/initialized"


class VMPhase(str, Enum):
    UNSET = ""
    PENDING = "Pending"
    SCHEDULING = "Scheduling"
    SCHEDULED = "Scheduled"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def _missing_(cls, value):
        # Phases this controller does not know are neither placed nor final.
        return cls.UNKNOWN


FINAL_PHASES = frozenset({VMPhase.SUCCEEDED, VMPhase.FAILED})
PLACED_PHASES = frozenset({VMPhase.SCHEDULED, VMPhase.RUNNING})


class VirtualMachine(BaseModel):
    """The subset of a VirtualMachine object the controller consumes."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    node_name: str = ""                     # status.nodeName
    phase: VMPhase = VMPhase.UNSET
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def assigned_node(self) -> str:
        """Node the VM was placed on, falling back to the node-name label."""
        return self.node_name or self.labels.get(NODE_NAME_LABEL, "")

    @property
    def initialized(self) -> bool:
        return INITIALIZED_ANNOTATION in self.annotations

    def is_final(self) -> bool:
        return self.phase in FINAL_PHASES

    def is_placed(self) -> bool:
        return self.phase in PLACED_PHASES

    @classmethod
    def from_api(cls, obj: dict) -> "VirtualMachine":
        """Build from a custom-object dict as returned by the API server."""
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace") or "default",
            uid=metadata.get("uid"),
            node_name=status.get("nodeName") or "",
            phase=VMPhase(status.get("phase") or ""),
            labels=metadata.get("labels") or {},
            annotations=metadata.get("annotations") or {},
        )
