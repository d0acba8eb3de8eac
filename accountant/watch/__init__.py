"""
Calico resource watching: the local cache of workloads and policy chains,
the feed that keeps it current, and node identity resolution.
"""

from .models import (
    WorkloadIdentity,
    ResourceKind,
    UpdateAction,
    Update,
    SyncStatus,
)
from .cache import ResourceCache
from .nodename import resolve_node_name
from .feed import JsonLinesFeed, SyncFeedConsumer, decode_event

__all__ = [
    'WorkloadIdentity',
    'ResourceKind',
    'UpdateAction',
    'Update',
    'SyncStatus',
    'ResourceCache',
    'resolve_node_name',
    'JsonLinesFeed',
    'SyncFeedConsumer',
    'decode_event',
]
