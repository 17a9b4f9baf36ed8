"""Pod — the execution unit backing a running VirtualMachine."""

from typing import Dict, Optional

from pydantic import BaseModel

DOMAIN_LABEL = "kubevirt.io/domain"


class Pod(BaseModel):
    """The subset of a Pod object the controller consumes."""

    name: str
    namespace: str = "default"
    node_name: str = ""                     # spec.nodeName
    labels: Dict[str, str] = {}

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def owner_vm_name(self) -> Optional[str]:
        """Name of the VirtualMachine this pod runs, from the domain label."""
        return self.labels.get(DOMAIN_LABEL)

    @classmethod
    def from_api(cls, obj: dict) -> "Pod":
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace") or "default",
            node_name=spec.get("nodeName") or "",
            labels=metadata.get("labels") or {},
        )
