"""Node — the cluster host a virt-handler agent runs on."""

from typing import Dict, Optional

from pydantic import BaseModel

NODE_SCHEDULABLE_LABEL = "kubevirt.io/schedulable"
HEARTBEAT_ANNOTATION = "kubevirt.io/heartbeat"


class Node(BaseModel):
    """The subset of a Node object the controller consumes."""

    name: str
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}
    resource_version: Optional[str] = None

    @property
    def heartbeat(self) -> Optional[str]:
        """Raw heartbeat annotation, as written by the node agent."""
        return self.annotations.get(HEARTBEAT_ANNOTATION)

    @property
    def schedulable(self) -> Optional[str]:
        """Value of the schedulability label ("true"/"false"), if set."""
        return self.labels.get(NODE_SCHEDULABLE_LABEL)

    @classmethod
    def from_api(cls, obj: dict) -> "Node":
        """Build from a serialized API object (camelCase JSON form)."""
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata["name"],
            labels=metadata.get("labels") or {},
            annotations=metadata.get("annotations") or {},
            resource_version=metadata.get("resourceVersion"),
        )
