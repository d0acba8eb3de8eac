"""
Accounting records produced by the counter-dump parser.
"""

from dataclasses import dataclass
from enum import Enum

from ..constants import ChainNames
from ..exceptions import RecordBuildError
from ..watch.models import WorkloadIdentity
from .chains import ChainType, PolicyDirection


class CountType(Enum):
    """What a packet count measures."""
    DROP = "drop"
    ACCEPT = "accept"
    # Zero accept count replaced by the policy chain's observed drop count
    ACCEPT_CORRECTED = "accept_corrected"

    @property
    def is_accept(self) -> bool:
        return self is not CountType.DROP


@dataclass(frozen=True)
class AccountingRecord:
    """One accept or drop count for one workload in one direction."""
    pod_name: str
    namespace: str
    app_label: str
    pod_ip: str
    chain_type: ChainType
    count_type: CountType
    packet_count: int
    target: str


@dataclass(frozen=True)
class DropChainObservation:
    """Packet count of the DROP rule in a policy chain, for one parse."""
    chain: str
    direction: PolicyDirection
    packet_count: int


def build_record(
    workload: WorkloadIdentity,
    count_type: CountType,
    chain_type: ChainType,
    packet_count: int,
    target: str,
) -> AccountingRecord:
    """
    Build a record for a workload.

    Raises:
        RecordBuildError: for a drop count whose target is not DROP
    """
    if count_type is CountType.DROP and target != ChainNames.DROP_TARGET:
        raise RecordBuildError("drop count type but not a drop target")

    return AccountingRecord(
        pod_name=workload.pod,
        namespace=workload.namespace,
        app_label=workload.app_label,
        pod_ip=workload.ip_list,
        chain_type=chain_type,
        count_type=count_type,
        packet_count=packet_count,
        target=target,
    )
