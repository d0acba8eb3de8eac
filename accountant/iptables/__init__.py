"""
iptables counter accounting: chain naming, the counter-dump parser and
the iptables-save producer.
"""

from .chains import (
    ChainType,
    PolicyDirection,
    policy_chain_name,
    policy_chain_names,
)
from .models import AccountingRecord, CountType, DropChainObservation, build_record
from .parser import parse_from, parse_lines, parse_text, workloads_by_interface
from .dump import CompletedDump, IptablesSave, scan

__all__ = [
    'ChainType',
    'PolicyDirection',
    'policy_chain_name',
    'policy_chain_names',
    'AccountingRecord',
    'CountType',
    'DropChainObservation',
    'build_record',
    'parse_from',
    'parse_lines',
    'parse_text',
    'workloads_by_interface',
    'CompletedDump',
    'IptablesSave',
    'scan',
]
