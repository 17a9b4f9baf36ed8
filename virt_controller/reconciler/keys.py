"""
Key extraction — map a changed object to the node that must be reconciled.

Every function returns the node name, or None when the notification does
not concern any node yet.
"""

from typing import Callable, List, Optional

from virt_controller.models.node import Node
from virt_controller.models.pod import Pod
from virt_controller.models.vm import VirtualMachine

VMLookup = Callable[[str], Optional[VirtualMachine]]


def node_key(node: Node) -> str:
    return node.name


def vm_node_key(vm: VirtualMachine) -> Optional[str]:
    """Node a VM is assigned to; None until the VM is initialized and placed."""
    if not vm.initialized:
        return None
    return vm.assigned_node or None


def pod_node_key(pod: Pod, lookup_vm: Optional[VMLookup] = None) -> Optional[str]:
    """
    Node of the VM owning ``pod``.

    The owning VM is looked up by ``namespace/name`` through ``lookup_vm``;
    when it is not known the pod's own node assignment is used.
    """
    owner = pod.owner_vm_name
    if not owner:
        return None
    if lookup_vm is not None:
        vm = lookup_vm(f"{pod.namespace}/{owner}")
        if vm is not None:
            key = vm_node_key(vm)
            if key:
                return key
    return pod.node_name or None


def vm_update_keys(old: VirtualMachine, new: VirtualMachine) -> List[str]:
    """Keys for a VM update; a VM that moved between nodes touches both."""
    keys = []
    for vm in (old, new):
        key = vm_node_key(vm)
        if key and key not in keys:
            keys.append(key)
    return keys
