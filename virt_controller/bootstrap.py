"""
Bootstrap — wires caches, informers, the cluster client, the event sink
and the node controller from a ControllerConfig.

Configuration comes from VIRT_CONTROLLER_* environment variables; there
are no command-line flags.
"""

import functools
import logging
import signal
import threading
from typing import List, Optional

from kubernetes import client as k8s
from kubernetes import config as k8s_config

from virt_controller.cache.informer import Informer
from virt_controller.cache.store import ObjectCache
from virt_controller.client.cluster import KubernetesClusterClient
from virt_controller.events.store import EventStore
from virt_controller.models.controller import ControllerConfig
from virt_controller.models.node import Node
from virt_controller.models.pod import DOMAIN_LABEL, Pod
from virt_controller.models.vm import VirtualMachine
from virt_controller.reconciler.controller import NodeController
from virt_controller.reconciler.keys import node_key

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_kube_config(config: ControllerConfig) -> None:
    """Load API server credentials from the pod or from a kubeconfig file."""
    if config.in_cluster:
        k8s_config.load_incluster_config()
    else:
        k8s_config.load_kube_config(config_file=config.kubeconfig)


class ControllerRuntime:
    """The controller plus the informers that feed its caches."""

    def __init__(
        self,
        controller: NodeController,
        informers: List[Informer],
        event_store: EventStore,
    ):
        self.controller = controller
        self.informers = informers
        self.event_store = event_store

    def run(self, stop_event: threading.Event) -> None:
        """Start informers, run the controller until ``stop_event`` is set."""
        threads = [
            threading.Thread(
                target=informer.run,
                args=(stop_event,),
                name=f"informer-{informer.cache.kind.lower()}",
                daemon=True,
            )
            for informer in self.informers
        ]
        for thread in threads:
            thread.start()
        try:
            self.controller.run(stop_event)
        finally:
            stop_event.set()
            for informer in self.informers:
                informer.stop()
            for thread in threads:
                thread.join(timeout=5)
            self.event_store.close()


def build_runtime(
    config: Optional[ControllerConfig] = None,
    core_api: Optional[k8s.CoreV1Api] = None,
    custom_api: Optional[k8s.CustomObjectsApi] = None,
) -> ControllerRuntime:
    """Assemble every component from ``config``; no network calls are made."""
    config = config or ControllerConfig()
    core_api = core_api or k8s.CoreV1Api()
    custom_api = custom_api or k8s.CustomObjectsApi()

    node_cache = ObjectCache("Node", node_key)
    vm_cache = ObjectCache("VirtualMachine", lambda vm: vm.key)
    pod_cache = ObjectCache("Pod", lambda pod: pod.key)

    if config.namespace:
        list_vms = functools.partial(
            custom_api.list_namespaced_custom_object,
            config.vm_group, config.vm_version, config.namespace, config.vm_plural,
        )
        list_pods = functools.partial(core_api.list_namespaced_pod, config.namespace)
    else:
        list_vms = functools.partial(
            custom_api.list_cluster_custom_object,
            config.vm_group, config.vm_version, config.vm_plural,
        )
        list_pods = core_api.list_pod_for_all_namespaces

    informers = [
        Informer(node_cache, core_api.list_node, Node.from_api,
                 watch_timeout_seconds=config.watch_timeout_seconds),
        Informer(vm_cache, list_vms, VirtualMachine.from_api,
                 watch_timeout_seconds=config.watch_timeout_seconds),
        Informer(pod_cache, list_pods, Pod.from_api,
                 list_kwargs={"label_selector": DOMAIN_LABEL},
                 watch_timeout_seconds=config.watch_timeout_seconds),
    ]

    client = KubernetesClusterClient(
        core_api=core_api,
        custom_api=custom_api,
        group=config.vm_group,
        version=config.vm_version,
        plural=config.vm_plural,
    )
    event_store = EventStore(db_path=config.event_db_path)
    controller = NodeController(
        client=client,
        node_cache=node_cache,
        vm_cache=vm_cache,
        pod_cache=pod_cache,
        recorder=event_store,
        config=config,
    )
    return ControllerRuntime(controller, informers, event_store)


def main() -> None:
    """Process entry point: run until SIGTERM or SIGINT."""
    config = ControllerConfig()
    configure_logging(config.log_level)
    load_kube_config(config)

    runtime = build_runtime(config)
    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)
    runtime.run(stop_event)


if __name__ == "__main__":
    main()
