"""
Cluster client — the remote API the controller reads from and writes to.

The controller only depends on the abstract ClusterClient; the concrete
KubernetesClusterClient talks to an API server through the official
kubernetes client. Every call either returns or raises ClusterAPIError.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from kubernetes import client as k8s
from kubernetes.client import ApiException
from urllib3.exceptions import HTTPError

from virt_controller.models.node import NODE_SCHEDULABLE_LABEL
from virt_controller.models.pod import Pod
from virt_controller.models.vm import VirtualMachine, VMPhase

logger = logging.getLogger(__name__)

_serializer: Optional[k8s.ApiClient] = None


class ClusterAPIError(Exception):
    """Raised when a remote list or patch call fails."""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason

    @classmethod
    def wrap(cls, operation: str, exc: Exception) -> "ClusterAPIError":
        if isinstance(exc, ApiException):
            return cls(
                f"{operation} failed: {exc.status} {exc.reason}",
                status=exc.status,
                reason=exc.reason,
            )
        return cls(f"{operation} failed: {exc}")


def to_dict(obj: Any) -> dict:
    """Serialize a kubernetes model object to its camelCase JSON form."""
    global _serializer
    if isinstance(obj, dict):
        return obj
    if _serializer is None:
        _serializer = k8s.ApiClient()
    return _serializer.sanitize_for_serialization(obj)


# --- Patch bodies ---

def schedulable_label_patch(schedulable: bool) -> dict:
    """Merge patch touching only the schedulability label."""
    return {"metadata": {"labels": {NODE_SCHEDULABLE_LABEL: "true" if schedulable else "false"}}}


def failed_phase_patch(observed_phase: Optional[VMPhase] = None) -> List[dict]:
    """
    JSON patch moving a VM to Failed.

    With ``observed_phase`` the patch is conditional: the server rejects it
    if the phase changed since the decision was taken.
    """
    ops = []
    if observed_phase is not None:
        ops.append({"op": "test", "path": "/status/phase", "value": observed_phase.value})
    ops.append({"op": "replace", "path": "/status/phase", "value": VMPhase.FAILED.value})
    return ops


class ClusterClient(ABC):
    """Remote reads and writes used by a reconciliation cycle."""

    @abstractmethod
    def list_virtual_machines(self, namespace: Optional[str] = None) -> List[VirtualMachine]:
        """All VMs in ``namespace``, or cluster-wide when None."""

    @abstractmethod
    def list_pods(
        self,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> List[Pod]:
        """Pods in ``namespace`` (cluster-wide when None) matching the selectors."""

    @abstractmethod
    def patch_node(self, name: str, body: dict) -> None:
        """Apply a merge patch to a Node."""

    @abstractmethod
    def patch_virtual_machine(self, name: str, namespace: str, body: List[dict]) -> None:
        """Apply a JSON patch to a VirtualMachine."""


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by the kubernetes CoreV1 and CustomObjects APIs."""

    def __init__(
        self,
        core_api: Optional[k8s.CoreV1Api] = None,
        custom_api: Optional[k8s.CustomObjectsApi] = None,
        group: str = "kubevirt.io",
        version: str = "v1alpha1",
        plural: str = "virtualmachines",
    ):
        self.core_api = core_api or k8s.CoreV1Api()
        self.custom_api = custom_api or k8s.CustomObjectsApi()
        self.group = group
        self.version = version
        self.plural = plural

    def list_virtual_machines(self, namespace: Optional[str] = None) -> List[VirtualMachine]:
        try:
            if namespace:
                response = self.custom_api.list_namespaced_custom_object(
                    self.group, self.version, namespace, self.plural
                )
            else:
                response = self.custom_api.list_cluster_custom_object(
                    self.group, self.version, self.plural
                )
        except (ApiException, HTTPError) as e:
            raise ClusterAPIError.wrap("list virtualmachines", e) from e
        return [VirtualMachine.from_api(item) for item in response.get("items", [])]

    def list_pods(
        self,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> List[Pod]:
        kwargs = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        try:
            if namespace:
                response = self.core_api.list_namespaced_pod(namespace, **kwargs)
            else:
                response = self.core_api.list_pod_for_all_namespaces(**kwargs)
        except (ApiException, HTTPError) as e:
            raise ClusterAPIError.wrap("list pods", e) from e
        return [Pod.from_api(to_dict(item)) for item in (response.items or [])]

    def patch_node(self, name: str, body: dict) -> None:
        logger.debug(f"Patching node {name}: {body}")
        try:
            self.core_api.patch_node(
                name, body, _content_type="application/merge-patch+json"
            )
        except (ApiException, HTTPError) as e:
            raise ClusterAPIError.wrap(f"patch node {name}", e) from e

    def patch_virtual_machine(self, name: str, namespace: str, body: List[dict]) -> None:
        logger.debug(f"Patching virtualmachine {namespace}/{name}: {body}")
        try:
            self.custom_api.patch_namespaced_custom_object(
                self.group, self.version, namespace, self.plural, name, body,
                _content_type="application/json-patch+json",
            )
        except (ApiException, HTTPError) as e:
            raise ClusterAPIError.wrap(f"patch virtualmachine {namespace}/{name}", e) from e
