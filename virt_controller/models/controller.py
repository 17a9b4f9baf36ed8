"""Controller configuration and per-cycle outcome."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControllerConfig(BaseSettings):
    """Controller settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="VIRT_CONTROLLER_")

    # Node health
    heartbeat_timeout_seconds: int = 300
    restore_schedulable_on_recovery: bool = True

    # Work distribution
    workers: int = 3
    max_requeues: int = 5
    retry_base_delay_seconds: float = 0.005
    retry_max_delay_seconds: float = 1000.0
    resync_period_seconds: float = 60.0

    # Object scope
    namespace: Optional[str] = None  # None means all namespaces
    vm_group: str = "kubevirt.io"
    vm_version: str = "v1alpha1"
    vm_plural: str = "virtualmachines"

    # Cluster connection
    kubeconfig: Optional[str] = None
    in_cluster: bool = False
    watch_timeout_seconds: int = 300

    # Event sink
    event_db_path: str = ":memory:"

    log_level: str = "INFO"


class PatchOutcome(BaseModel):
    """Result of one remote mutation issued during a cycle."""

    target: str                             # node name or "namespace/name"
    patch: Any                              # body that was sent
    success: bool
    error: Optional[str] = None


class CycleResult(BaseModel):
    """
    Aggregate outcome of reconciling one node key.

    Every required mutation is attempted; the cycle is reported failed if
    any read failed or any single mutation failed.
    """

    node_name: str
    node_found: bool = True
    health: Optional[str] = None
    node_patch: Optional[PatchOutcome] = None
    vm_patches: Dict[str, PatchOutcome] = {}
    read_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        if self.read_error is not None:
            return False
        if self.node_patch is not None and not self.node_patch.success:
            return False
        return all(outcome.success for outcome in self.vm_patches.values())

    @property
    def failed_vms(self) -> List[str]:
        return [key for key, outcome in self.vm_patches.items() if not outcome.success]
