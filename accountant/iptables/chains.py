"""
Calico chain naming.

Workload chains are named cali-tw-<iface> (to workload) and
cali-fw-<iface> (from workload). Each policy is rendered by Felix into an
inbound chain (cali-pi-...) and an outbound chain (cali-po-...), with long
names replaced by a hash so they fit the iptables chain name limit.
"""

import base64
import hashlib
from enum import Enum
from typing import Tuple

from ..constants import ChainNames
from ..exceptions import UnsupportedGrammarError


class ChainType(Enum):
    """Direction of a per-workload chain."""
    TO_WORKLOAD = ChainNames.TO_WORKLOAD
    FROM_WORKLOAD = ChainNames.FROM_WORKLOAD

    @classmethod
    def from_token(cls, token: str) -> 'ChainType':
        try:
            return cls(token)
        except ValueError:
            raise UnsupportedGrammarError("chain type", token) from None

    def __str__(self) -> str:
        return self.value


class PolicyDirection(Enum):
    """Direction of a policy chain."""
    INBOUND = ChainNames.INBOUND
    OUTBOUND = ChainNames.OUTBOUND

    @classmethod
    def from_token(cls, token: str) -> 'PolicyDirection':
        try:
            return cls(token)
        except ValueError:
            raise UnsupportedGrammarError("policy direction", token) from None

    @property
    def prefix(self) -> str:
        if self is PolicyDirection.INBOUND:
            return ChainNames.POLICY_INBOUND_PREFIX
        return ChainNames.POLICY_OUTBOUND_PREFIX


def length_limited_id(prefix: str, suffix: str, max_length: int = ChainNames.MAX_LENGTH) -> str:
    """
    Join prefix and suffix, hashing the suffix if the result is too long.

    A suffix that already starts with the shortened-name marker is hashed
    too, so a real name can never collide with a shortened one.
    """
    shortened = ChainNames.SHORTENED_PREFIX
    byte_length = len(prefix.encode('utf-8')) + len(suffix.encode('utf-8'))
    if byte_length <= max_length and not suffix.startswith(shortened):
        return prefix + suffix

    hasher = hashlib.sha224()
    hasher.update(prefix.encode('utf-8'))
    hasher.update(suffix.encode('utf-8'))
    digest = base64.urlsafe_b64encode(hasher.digest()).decode('ascii').rstrip('=')
    chars_left = max_length - len(prefix) - len(shortened)
    return prefix + shortened + digest[:chars_left]


def policy_chain_name(
    direction: PolicyDirection,
    policy_name: str,
    tier: str = ChainNames.DEFAULT_TIER,
) -> str:
    """Chain name Felix uses for one direction of a policy."""
    return length_limited_id(direction.prefix, f"{tier}/{policy_name}")


def policy_chain_names(policy_name: str, tier: str = ChainNames.DEFAULT_TIER) -> Tuple[str, str]:
    """Inbound and outbound chain names for a policy, always used as a pair."""
    return (
        policy_chain_name(PolicyDirection.INBOUND, policy_name, tier),
        policy_chain_name(PolicyDirection.OUTBOUND, policy_name, tier),
    )
