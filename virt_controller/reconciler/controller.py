"""
Node Controller — keeps VirtualMachines consistent with node agent liveness.

Flow:
  cache notification → key extraction → work queue → reconcile(node)
  → node label patch + per-VM Failed patches → forget / retry with backoff

Per node (conceptually):
  UNKNOWN → HEALTHY ⇄ UNRESPONSIVE
Entering UNRESPONSIVE (stale heartbeat, or node removed) marks the node
unschedulable and sweeps its stuck VMs. A node that becomes HEALTHY again
while labeled unschedulable gets the label flipped back.

One key is reconciled by at most one caller at a time: the queue never hands
a key to two workers, and a per-node lock also serializes direct calls such
as the API. Distinct nodes are reconciled in parallel.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from virt_controller.cache.store import EventHandler, ObjectCache, wait_for_cache_sync
from virt_controller.client.cluster import (
    ClusterAPIError,
    ClusterClient,
    failed_phase_patch,
    schedulable_label_patch,
)
from virt_controller.events.store import EventStore
from virt_controller.health.evaluator import NodeHealth, evaluate_node, has_malformed_heartbeat
from virt_controller.models.controller import ControllerConfig, CycleResult, PatchOutcome
from virt_controller.models.events import EventType
from virt_controller.models.node import Node
from virt_controller.models.pod import DOMAIN_LABEL, Pod
from virt_controller.models.vm import VirtualMachine
from virt_controller.reconciler.keys import node_key, pod_node_key, vm_node_key, vm_update_keys
from virt_controller.reconciler.selector import (
    filter_placed_on_node,
    filter_stuck_virtual_machines_without_pods,
)
from virt_controller.workqueue.queue import ExponentialBackoff, WorkQueue

logger = logging.getLogger(__name__)


class NodeController:
    """Reconciles one node key per cycle against the remote cluster state."""

    def __init__(
        self,
        client: ClusterClient,
        node_cache: ObjectCache,
        vm_cache: ObjectCache,
        pod_cache: Optional[ObjectCache] = None,
        queue: Optional[WorkQueue] = None,
        recorder: Optional[EventStore] = None,
        config: Optional[ControllerConfig] = None,
    ):
        self.client = client
        self.node_cache = node_cache
        self.vm_cache = vm_cache
        self.pod_cache = pod_cache
        self.config = config or ControllerConfig()
        self.queue = queue or WorkQueue(
            ExponentialBackoff(
                base_delay=self.config.retry_base_delay_seconds,
                max_delay=self.config.retry_max_delay_seconds,
            )
        )
        self.recorder = recorder
        self._running = False
        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._register_handlers()

    @property
    def status(self) -> str:
        """Current controller status."""
        return "running" if self._running else "stopped"

    # === EVENT WIRING ===

    def _register_handlers(self) -> None:
        self.node_cache.add_event_handler(EventHandler(
            on_add=self._enqueue_node,
            on_update=lambda old, new: self._enqueue_node(new),
            on_delete=self._enqueue_node,
        ))
        self.vm_cache.add_event_handler(EventHandler(
            on_add=self._enqueue_vm,
            on_update=self._enqueue_vm_update,
            on_delete=self._enqueue_vm,
        ))
        if self.pod_cache is not None:
            self.pod_cache.add_event_handler(EventHandler(
                on_add=self._enqueue_pod,
                on_update=lambda old, new: self._enqueue_pod(new),
                on_delete=self._enqueue_pod,
            ))

    def _enqueue_node(self, node: Node) -> None:
        self.enqueue(node_key(node))

    def _enqueue_vm(self, vm: VirtualMachine) -> None:
        key = vm_node_key(vm)
        if key:
            self.enqueue(key)

    def _enqueue_vm_update(self, old: VirtualMachine, new: VirtualMachine) -> None:
        for key in vm_update_keys(old, new):
            self.enqueue(key)

    def _enqueue_pod(self, pod: Pod) -> None:
        key = pod_node_key(pod, self.vm_cache.get)
        if key:
            self.enqueue(key)

    def enqueue(self, key: str) -> None:
        """Schedule a reconciliation of node ``key``."""
        self.queue.add(key)

    def resync(self) -> int:
        """Enqueue every known node so stale heartbeats are noticed without events."""
        keys = self.node_cache.keys()
        for key in keys:
            self.enqueue(key)
        return len(keys)

    # === PROCESSING ===

    def execute(self) -> bool:
        """
        Take one key from the queue and reconcile it.

        Returns False once the queue has been shut down.
        """
        key, shutdown = self.queue.get()
        if shutdown:
            return False
        try:
            try:
                succeeded = self.reconcile(key).succeeded
            except Exception:
                logger.exception(f"Unexpected error reconciling node {key}")
                succeeded = False
            self._handle_outcome(key, succeeded)
        finally:
            self.queue.done(key)
        return True

    def _handle_outcome(self, key: str, succeeded: bool) -> None:
        if succeeded:
            self.queue.forget(key)
            return

        requeues = self.queue.num_requeues(key)
        if requeues < self.config.max_requeues:
            logger.warning(f"Reconciling node {key} failed, retrying (attempt {requeues + 1})")
            self.queue.add_rate_limited(key)
            return

        logger.error(f"Dropping node {key} out of the queue after {requeues} failed retries")
        self.queue.forget(key)
        self._record(
            "Node",
            key,
            EventType.WARNING,
            "ReconcileFailed",
            f"Giving up on node {key} after {requeues} failed reconciliation attempts",
        )

    def reconcile(self, key: str, current_time: Optional[datetime] = None) -> CycleResult:
        """
        Run a single reconciliation cycle for node ``key``.

        Never raises for remote errors: read failures end the cycle and are
        reported in ``read_error``; every patch is attempted and its outcome
        kept in the result.
        Cycles for the same key never overlap.
        """
        with self._lock_for(key):
            return self._reconcile(key, current_time)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def _reconcile(self, key: str, current_time: Optional[datetime]) -> CycleResult:
        if current_time is None:
            current_time = datetime.now(timezone.utc)

        result = CycleResult(node_name=key)
        node = self.node_cache.get(key)

        if node is None:
            # No heartbeat will ever arrive for a removed node.
            result.node_found = False
            result.health = NodeHealth.UNRESPONSIVE.value
            logger.info(f"Node {key} is gone, looking for orphaned VirtualMachines")
        else:
            health = self._evaluate(node, current_time)
            result.health = health.value

            if health == NodeHealth.HEALTHY:
                if self.config.restore_schedulable_on_recovery and node.schedulable == "false":
                    logger.info(f"Node {key} is responsive again, marking it schedulable")
                    result.node_patch = self._patch_node(key, schedulable=True)
                return result

            if node.schedulable != "false":
                logger.info(f"Node {key} stopped sending heartbeats, marking it unschedulable")
                result.node_patch = self._patch_node(key, schedulable=False)

        self._fail_stuck_vms(key, result)
        return result

    def _evaluate(self, node: Node, current_time: datetime) -> NodeHealth:
        if has_malformed_heartbeat(node):
            self._record(
                "Node",
                node.name,
                EventType.WARNING,
                "MalformedHeartbeat",
                f"Cannot parse heartbeat {node.heartbeat!r}, treating node as unresponsive",
            )
        return evaluate_node(node, self.config.heartbeat_timeout_seconds, current_time)

    def _fail_stuck_vms(self, node_name: str, result: CycleResult) -> None:
        """List fresh VM and pod state and move stuck VMs to Failed."""
        try:
            vms = self.client.list_virtual_machines(self.config.namespace)
        except ClusterAPIError as e:
            logger.warning(f"Listing VirtualMachines for node {node_name} failed: {e}")
            result.read_error = str(e)
            return

        candidates = filter_placed_on_node(vms, node_name)
        if not candidates:
            return

        try:
            pods = self.client.list_pods(
                self.config.namespace,
                label_selector=DOMAIN_LABEL,
                field_selector=f"spec.nodeName={node_name}",
            )
        except ClusterAPIError as e:
            logger.warning(f"Listing pods for node {node_name} failed: {e}")
            result.read_error = str(e)
            return

        for vm in filter_stuck_virtual_machines_without_pods(candidates, pods):
            result.vm_patches[vm.key] = self._fail_vm(vm)

        failed = result.failed_vms
        if failed:
            logger.warning(
                f"Could not move {len(failed)} of {len(result.vm_patches)} "
                f"VirtualMachine(s) on node {node_name} to Failed: {', '.join(failed)}"
            )

    def _patch_node(self, name: str, schedulable: bool) -> PatchOutcome:
        body = schedulable_label_patch(schedulable)
        try:
            self.client.patch_node(name, body)
        except ClusterAPIError as e:
            logger.warning(f"Patching node {name} failed: {e}")
            return PatchOutcome(target=name, patch=body, success=False, error=str(e))
        return PatchOutcome(target=name, patch=body, success=True)

    def _fail_vm(self, vm: VirtualMachine) -> PatchOutcome:
        body = failed_phase_patch(vm.phase)
        try:
            self.client.patch_virtual_machine(vm.name, vm.namespace, body)
        except ClusterAPIError as e:
            logger.warning(f"Moving VirtualMachine {vm.key} to Failed failed: {e}")
            return PatchOutcome(target=vm.key, patch=body, success=False, error=str(e))
        logger.info(f"Moved VirtualMachine {vm.key} on node {vm.assigned_node} to Failed")
        return PatchOutcome(target=vm.key, patch=body, success=True)

    def _record(
        self,
        kind: str,
        name: str,
        event_type: EventType,
        reason: str,
        message: str,
        namespace: Optional[str] = None,
    ) -> None:
        if self.recorder is None:
            return
        try:
            self.recorder.record(kind, name, event_type, reason, message, namespace=namespace)
        except Exception:
            logger.exception(f"Recording {reason} event for {kind} {name} failed")

    # === LIFECYCLE ===

    def caches(self) -> List[ObjectCache]:
        caches = [self.node_cache, self.vm_cache]
        if self.pod_cache is not None:
            caches.append(self.pod_cache)
        return caches

    def run(
        self,
        stop_event: Optional[threading.Event] = None,
        workers: Optional[int] = None,
        resync_period: Optional[float] = None,
    ) -> None:
        """
        Run worker threads until ``stop_event`` is set.

        Waits for the initial cache sync first, then re-enqueues every known
        node each ``resync_period`` seconds (0 disables resync). Once
        stopped, no new cycle starts; cycles already in flight run to
        completion before this returns.
        """
        if stop_event is None:
            stop_event = threading.Event()
        workers = workers or self.config.workers
        if resync_period is None:
            resync_period = self.config.resync_period_seconds

        if not wait_for_cache_sync(stop_event, *self.caches()):
            logger.info("Node controller stopped before caches synced")
            return

        self._running = True
        threads = [
            threading.Thread(target=self._worker, name=f"node-controller-{i}", daemon=True)
            for i in range(workers)
        ]
        for thread in threads:
            thread.start()
        logger.info(f"Node controller started with {workers} worker(s)")

        wait_for = resync_period if resync_period > 0 else None
        try:
            while not stop_event.wait(timeout=wait_for):
                self.resync()
        finally:
            self.queue.shut_down()
            for thread in threads:
                thread.join()
            self._running = False
            logger.info("Node controller stopped")

    def _worker(self) -> None:
        while self.execute():
            pass
