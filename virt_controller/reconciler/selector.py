"""
Stuck-VM selection.

A VirtualMachine is stuck when it was placed on a node whose agent stopped
responding, has not reached a final phase, and no longer has a pod running
it. Only VMs that actually got placed (Scheduled or Running) are eligible;
earlier phases are left to the normal scheduling path.
"""

from typing import Iterable, List, Set, Tuple

from virt_controller.models.pod import Pod
from virt_controller.models.vm import VirtualMachine


def filter_placed_on_node(
    vms: Iterable[VirtualMachine], node_name: str
) -> List[VirtualMachine]:
    """VMs assigned to ``node_name`` whose phase is Scheduled or Running."""
    return [
        vm for vm in vms
        if vm.assigned_node == node_name and vm.is_placed()
    ]


def _live_pod_index(pods: Iterable[Pod]) -> Set[Tuple[str, str, str]]:
    """(namespace, owning vm name, node) for every pod that backs a VM."""
    index = set()
    for pod in pods:
        owner = pod.owner_vm_name
        if owner:
            index.add((pod.namespace, owner, pod.node_name))
    return index


def filter_stuck_virtual_machines_without_pods(
    vms: Iterable[VirtualMachine], pods: Iterable[Pod]
) -> List[VirtualMachine]:
    """
    Drop VMs in a final phase and VMs that still have a live pod.

    A pod only counts for a VM when its domain label names the VM, it lives
    in the VM's namespace and it is assigned to the VM's node. Input order
    is preserved.
    """
    live = _live_pod_index(pods)
    stuck = []
    for vm in vms:
        if vm.is_final():
            continue
        if (vm.namespace, vm.name, vm.assigned_node) in live:
            continue
        stuck.append(vm)
    return stuck
