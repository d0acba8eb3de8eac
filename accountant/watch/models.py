"""
Resource models received from the Calico sync feed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

from ..exceptions import FeedDecodeError

HOST_MASK_SUFFIX = "/32"


def normalize_ip(network: str) -> str:
    """Drop the pointless /32 host mask, if any."""
    if network.endswith(HOST_MASK_SUFFIX):
        return network[:-len(HOST_MASK_SUFFIX)]
    return network


def _string_field(key: str, data: Dict[str, Any], name: str) -> str:
    """A string field of a feed payload; missing or null reads as ""."""
    field_value = data.get(name)
    if field_value is None:
        return ""
    if not isinstance(field_value, str):
        raise FeedDecodeError(f"Workload {key}: {name} is not a string")
    return field_value


@dataclass(frozen=True)
class WorkloadIdentity:
    """A workload endpoint (pod) scheduled on some node."""
    key: str
    pod: str
    namespace: str
    app_label: str
    interface_name: str
    ip_networks: FrozenSet[str] = field(default_factory=frozenset)
    node: str = ""

    @classmethod
    def create(
        cls,
        key: str,
        pod: str,
        namespace: str = "",
        app_label: str = "",
        interface_name: str = "",
        ip_networks: Iterable[str] = (),
        node: str = "",
    ) -> 'WorkloadIdentity':
        return cls(
            key=key,
            pod=pod,
            namespace=namespace,
            app_label=app_label,
            interface_name=interface_name,
            ip_networks=frozenset(normalize_ip(n) for n in ip_networks),
            node=node,
        )

    @classmethod
    def from_dict(cls, key: str, value: Dict[str, Any]) -> 'WorkloadIdentity':
        """
        Build from a WorkloadEndpoint spec as carried by the feed.

        Raises:
            FeedDecodeError: if a field has the wrong type
        """
        labels = value.get('labels') or {}
        if not isinstance(labels, dict):
            raise FeedDecodeError(f"Workload {key}: labels is not an object")
        networks = value.get('ipNetworks') or []
        if not isinstance(networks, list) or not all(isinstance(n, str) for n in networks):
            raise FeedDecodeError(f"Workload {key}: ipNetworks is not a list of strings")

        return cls.create(
            key=key,
            pod=_string_field(key, value, 'pod'),
            namespace=_string_field(key, value, 'namespace'),
            app_label=_string_field(key, labels, 'app'),
            interface_name=_string_field(key, value, 'interfaceName'),
            ip_networks=networks,
            node=_string_field(key, value, 'node'),
        )

    @property
    def ip_list(self) -> str:
        """Canonical comma-joined, sorted address list used as a label."""
        return ",".join(sorted(self.ip_networks))


class ResourceKind(Enum):
    WORKLOAD = "workload"
    POLICY = "policy"


class UpdateAction(Enum):
    UPSERT = "upsert"
    DELETE = "delete"


class SyncStatus(Enum):
    """Datastore sync state reported by the feed."""
    WAIT_FOR_DATASTORE = "wait-for-datastore"
    RESYNC_IN_PROGRESS = "resync-in-progress"
    IN_SYNC = "in-sync"


@dataclass(frozen=True)
class Update:
    """
    One keyed change from the feed.

    For policies the key is the policy id. value is a WorkloadIdentity for
    workload upserts, the policy name for policy upserts, and None for
    deletes.
    """
    kind: ResourceKind
    action: UpdateAction
    key: str
    value: Optional[Union[WorkloadIdentity, str]] = None

    @classmethod
    def upsert_workload(cls, workload: WorkloadIdentity) -> 'Update':
        return cls(ResourceKind.WORKLOAD, UpdateAction.UPSERT, workload.key, workload)

    @classmethod
    def delete_workload(cls, key: str) -> 'Update':
        return cls(ResourceKind.WORKLOAD, UpdateAction.DELETE, key)

    @classmethod
    def upsert_policy(cls, key: str, name: Optional[str] = None) -> 'Update':
        # The policy key is the policy id chain names are derived from
        return cls(ResourceKind.POLICY, UpdateAction.UPSERT, key, name or key)

    @classmethod
    def delete_policy(cls, key: str) -> 'Update':
        return cls(ResourceKind.POLICY, UpdateAction.DELETE, key)
