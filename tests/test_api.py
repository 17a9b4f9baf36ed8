"""Tests for the FastAPI API endpoints."""

import threading

import pytest
from fastapi.testclient import TestClient

from virt_controller.api.app import create_app
from virt_controller.cache.store import ObjectCache
from virt_controller.events.store import EventStore
from virt_controller.models.controller import ControllerConfig
from virt_controller.models.events import EventType
from virt_controller.reconciler.controller import NodeController
from virt_controller.reconciler.keys import node_key
from fakes import (
    FakeClusterClient,
    new_healthy_node,
    new_running_vm,
    new_unhealthy_node,
)


@pytest.fixture
def controller():
    """Controller over in-memory caches and a fake cluster."""
    node_cache = ObjectCache("Node", node_key)
    vm_cache = ObjectCache("VirtualMachine", lambda vm: vm.key)
    return NodeController(
        client=FakeClusterClient(),
        node_cache=node_cache,
        vm_cache=vm_cache,
        recorder=EventStore(db_path=":memory:"),
        config=ControllerConfig(workers=2),
    )


@pytest.fixture
def client(controller):
    return TestClient(create_app(controller))


class TestControllerEndpoints:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_status(self, client, controller):
        controller.node_cache.add(new_healthy_node("node01"))
        controller.node_cache.mark_synced()

        data = client.get("/controller/status").json()

        assert data["status"] == "stopped"
        assert data["workers"] == 2
        assert data["queue_depth"] == 1
        assert data["caches"]["Node"] == {"synced": True, "objects": 1}
        assert data["caches"]["VirtualMachine"]["synced"] is False

    def test_config(self, client):
        data = client.get("/controller/config").json()
        assert data["heartbeat_timeout_seconds"] == 300
        assert data["workers"] == 2


class TestNodeEndpoints:
    def test_enqueue(self, client, controller):
        response = client.post("/nodes/node01/enqueue")

        assert response.status_code == 200
        assert response.json() == {"status": "enqueued", "node": "node01", "queue_depth": 1}
        assert controller.queue.pending() == ["node01"]

    def test_reconcile_unresponsive_node(self, client, controller):
        node = new_unhealthy_node("node01")
        controller.node_cache.add(node)
        controller.client.vms = [new_running_vm("vm1", node)]

        data = client.post("/nodes/node01/reconcile").json()

        assert data["succeeded"] is True
        assert data["health"] == "unresponsive"
        assert data["vm_patches"]["default/vm1"]["success"] is True
        assert controller.client.patched_vm_keys == ["default/vm1"]

    def test_reconcile_reports_failures(self, client, controller):
        node = new_unhealthy_node("node01")
        controller.node_cache.add(node)
        controller.client.vms = [new_running_vm("vm1", node)]
        controller.client.fail_vm_patches = {"default/vm1": "conflict"}

        data = client.post("/nodes/node01/reconcile").json()

        assert data["succeeded"] is False
        assert data["vm_patches"]["default/vm1"]["error"] == "conflict"

    def test_reconcile_waits_for_worker_cycle(self, client, controller):
        entered = threading.Event()
        release = threading.Event()
        list_vms = controller.client.list_virtual_machines

        def held_list(namespace=None):
            if not entered.is_set():
                entered.set()
                release.wait(timeout=5)
            return list_vms(namespace)

        controller.client.list_virtual_machines = held_list
        node = new_unhealthy_node("node01")
        controller.client.vms = [new_running_vm("vm1", node)]
        controller.node_cache.add(node)

        worker = threading.Thread(target=controller.execute)
        worker.start()
        assert entered.wait(timeout=5)

        responses = []
        request = threading.Thread(
            target=lambda: responses.append(client.post("/nodes/node01/reconcile"))
        )
        request.start()
        request.join(timeout=0.2)
        assert request.is_alive()

        release.set()
        worker.join(timeout=5)
        request.join(timeout=5)

        assert controller.client.patched_vm_keys == ["default/vm1"]
        assert responses[0].json()["vm_patches"] == {}

    def test_node_health(self, client, controller):
        controller.node_cache.add(new_healthy_node("node01"))

        data = client.get("/nodes/node01/health").json()

        assert data["health"] == "healthy"
        assert data["schedulable"] == "true"
        assert data["heartbeat"] is not None

    def test_node_health_not_found(self, client):
        response = client.get("/nodes/missing/health")
        assert response.status_code == 404


class TestEventEndpoints:
    def test_list_events(self, client, controller):
        controller.recorder.record(
            "Node", "node01", EventType.WARNING, "MalformedHeartbeat", "bad heartbeat"
        )

        data = client.get("/events").json()

        assert len(data) == 1
        assert data[0]["reason"] == "MalformedHeartbeat"
        assert data[0]["type"] == "Warning"

    def test_object_events(self, client, controller):
        controller.recorder.record("Node", "node01", EventType.WARNING, "ReconcileFailed", "x")
        controller.recorder.record("Node", "node02", EventType.WARNING, "ReconcileFailed", "y")

        data = client.get("/events/Node/node02").json()

        assert [e["message"] for e in data] == ["y"]

    def test_events_without_store(self):
        controller = NodeController(
            client=FakeClusterClient(),
            node_cache=ObjectCache("Node", node_key),
            vm_cache=ObjectCache("VirtualMachine", lambda vm: vm.key),
        )
        client = TestClient(create_app(controller))

        assert client.get("/events").json() == []
        assert client.get("/events/Node/node01").json() == []
