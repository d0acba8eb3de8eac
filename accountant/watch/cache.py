"""
Resource Cache - local view of Calico workloads and policies.

Maps interface names to the workloads running on this node and policy
chain names to policy names. Fed by the sync feed consumer; read by every
scrape round.

The workload map and the policy map are guarded by independent
reader/writer locks, each held only for a single key mutation or a single
snapshot copy. Readers may observe a partially applied batch.
"""

import threading
from typing import Dict, Iterable, Optional, Set

from ..iptables.chains import policy_chain_names
from ..logging_config import get_logger
from ..utils.rwlock import ReadWriteLock
from .models import ResourceKind, SyncStatus, Update, UpdateAction, WorkloadIdentity

logger = get_logger(__name__)


class ResourceCache:
    """
    Eventually consistent cache of local workloads and policy chains.

    Workloads bound to other nodes are ignored on arrival, so everything
    returned by list_workloads() belongs to this host.
    """

    def __init__(self, node_name: str):
        self.node_name = node_name

        self._workloads: Dict[str, WorkloadIdentity] = {}
        self._workloads_lock = ReadWriteLock()

        self._policies: Dict[str, str] = {}
        self._policies_lock = ReadWriteLock()

        self._ready = threading.Event()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_workloads(self) -> Set[WorkloadIdentity]:
        """Snapshot of all known local workloads."""
        with self._workloads_lock.read_locked():
            return set(self._workloads.values())

    def lookup_policy_name(self, chain: str) -> str:
        """Policy name enforced by a chain, or "" if unknown."""
        with self._policies_lock.read_locked():
            return self._policies.get(chain, "")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the first full sync has completed."""
        return self._ready.wait(timeout)

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def __len__(self) -> int:
        with self._workloads_lock.read_locked():
            return len(self._workloads)

    @property
    def policy_chain_count(self) -> int:
        with self._policies_lock.read_locked():
            return len(self._policies)

    # ------------------------------------------------------------------
    # Feed callbacks
    # ------------------------------------------------------------------

    def on_status_updated(self, status: SyncStatus) -> None:
        if status is SyncStatus.IN_SYNC and not self._ready.is_set():
            self._ready.set()
            logger.info(
                f"Calico cache filled: {len(self)} local workloads, "
                f"{self.policy_chain_count} policy chains"
            )

    def on_updates(self, updates: Iterable[Update]) -> None:
        for update in updates:
            if update.kind is ResourceKind.WORKLOAD:
                self._on_workload_update(update)
            elif update.kind is ResourceKind.POLICY:
                self._on_policy_update(update)

    def _on_workload_update(self, update: Update) -> None:
        if update.action is UpdateAction.DELETE:
            with self._workloads_lock.read_locked():
                if update.key not in self._workloads:
                    return

            with self._workloads_lock.write_locked():
                logger.verbose(f"Removing workload {update.key}")
                self._workloads.pop(update.key, None)
            return

        workload = update.value
        if workload.node != self.node_name:
            return

        logger.verbose(f"Adding workload {update.key}")
        with self._workloads_lock.write_locked():
            self._workloads[update.key] = workload

    def _on_policy_update(self, update: Update) -> None:
        inbound, outbound = policy_chain_names(update.key)

        if update.action is UpdateAction.DELETE:
            logger.verbose(
                f"Removing policy id {update.key} with chain names {inbound}, {outbound}"
            )
            with self._policies_lock.write_locked():
                self._policies.pop(inbound, None)
                self._policies.pop(outbound, None)
            return

        logger.verbose(
            f"Storing policy id {update.key} against chain names {inbound}, {outbound}"
        )
        with self._policies_lock.write_locked():
            self._policies[inbound] = update.value
            self._policies[outbound] = update.value
