"""Tests for the kubernetes-backed ClusterClient."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException
from urllib3.exceptions import HTTPError

from virt_controller.client.cluster import (
    ClusterAPIError,
    KubernetesClusterClient,
    failed_phase_patch,
    schedulable_label_patch,
)
from virt_controller.models.vm import VMPhase


def _vm_obj(name, node, phase="Running", namespace="default"):
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": "1234",
            "annotations": {"kubevirt.io/initialized": ""},
        },
        "status": {"nodeName": node, "phase": phase},
    }


def _pod_obj(name, vm_name, node, namespace="default"):
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {"kubevirt.io/domain": vm_name},
        },
        "spec": {"nodeName": node},
    }


class TestPatchBodies:
    def test_schedulable_label_patch(self):
        assert schedulable_label_patch(False) == {
            "metadata": {"labels": {"kubevirt.io/schedulable": "false"}}
        }
        assert schedulable_label_patch(True) == {
            "metadata": {"labels": {"kubevirt.io/schedulable": "true"}}
        }

    def test_failed_phase_patch_is_conditional(self):
        assert failed_phase_patch(VMPhase.SCHEDULED) == [
            {"op": "test", "path": "/status/phase", "value": "Scheduled"},
            {"op": "replace", "path": "/status/phase", "value": "Failed"},
        ]

    def test_failed_phase_patch_unconditional(self):
        assert failed_phase_patch() == [
            {"op": "replace", "path": "/status/phase", "value": "Failed"},
        ]


class TestKubernetesClusterClient:
    def setup_method(self):
        self.core = MagicMock()
        self.custom = MagicMock()
        self.client = KubernetesClusterClient(
            core_api=self.core,
            custom_api=self.custom,
            group="kubevirt.io",
            version="v1alpha1",
            plural="virtualmachines",
        )

    def test_list_vms_cluster_wide(self):
        self.custom.list_cluster_custom_object.return_value = {
            "items": [_vm_obj("vm1", "node01"), _vm_obj("vm2", "node02", phase="Scheduled")]
        }

        vms = self.client.list_virtual_machines()

        self.custom.list_cluster_custom_object.assert_called_once_with(
            "kubevirt.io", "v1alpha1", "virtualmachines"
        )
        assert [vm.key for vm in vms] == ["default/vm1", "default/vm2"]
        assert vms[1].phase == VMPhase.SCHEDULED
        assert vms[0].node_name == "node01"

    def test_list_vms_namespaced(self):
        self.custom.list_namespaced_custom_object.return_value = {"items": []}

        assert self.client.list_virtual_machines("tenant") == []
        self.custom.list_namespaced_custom_object.assert_called_once_with(
            "kubevirt.io", "v1alpha1", "tenant", "virtualmachines"
        )

    def test_list_pods_uses_selectors(self):
        self.core.list_pod_for_all_namespaces.return_value = SimpleNamespace(
            items=[_pod_obj("virt-launcher-vm1", "vm1", "node01")]
        )

        pods = self.client.list_pods(
            label_selector="kubevirt.io/domain",
            field_selector="spec.nodeName=node01",
        )

        self.core.list_pod_for_all_namespaces.assert_called_once_with(
            label_selector="kubevirt.io/domain",
            field_selector="spec.nodeName=node01",
        )
        assert pods[0].owner_vm_name == "vm1"
        assert pods[0].node_name == "node01"

    def test_list_pods_namespaced(self):
        self.core.list_namespaced_pod.return_value = SimpleNamespace(items=None)

        assert self.client.list_pods("tenant") == []
        self.core.list_namespaced_pod.assert_called_once_with("tenant")

    def test_patch_node_sends_merge_patch(self):
        body = schedulable_label_patch(False)

        self.client.patch_node("node01", body)

        self.core.patch_node.assert_called_once_with(
            "node01", body, _content_type="application/merge-patch+json"
        )

    def test_patch_vm_sends_json_patch(self):
        body = failed_phase_patch(VMPhase.RUNNING)

        self.client.patch_virtual_machine("vm1", "default", body)

        self.custom.patch_namespaced_custom_object.assert_called_once_with(
            "kubevirt.io", "v1alpha1", "default", "virtualmachines", "vm1", body,
            _content_type="application/json-patch+json",
        )

    def test_api_errors_are_wrapped(self):
        self.custom.patch_namespaced_custom_object.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(ClusterAPIError) as exc_info:
            self.client.patch_virtual_machine("vm1", "default", failed_phase_patch())

        assert exc_info.value.status == 409
        assert exc_info.value.reason == "Conflict"
        assert "default/vm1" in str(exc_info.value)

    def test_transport_errors_are_wrapped(self):
        self.core.list_pod_for_all_namespaces.side_effect = HTTPError("connection reset")

        with pytest.raises(ClusterAPIError) as exc_info:
            self.client.list_pods()

        assert exc_info.value.status is None
        assert "connection reset" in str(exc_info.value)
