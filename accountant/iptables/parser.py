"""
Counter-dump parser.

Extracts per-workload accept and drop counts from `iptables-save -c`
output. Inspired by how Felix itself reads back iptables state.

The dump is buffered once and scanned twice:

1. Drop-chain discovery: the packet count of every `-j DROP` rule in a
   policy chain (cali-pi-* / cali-po-*).
2. Accounting: walks the per-workload chains (cali-tw-* / cali-fw-*).
   A rule jumping into a policy chain sets the context; the following
   "Return if policy accepted" rule carries the accept count for that
   policy, and "Drop if no policies passed packet" carries the drop count.

Accept counters sometimes read back as zero for an instant while the
policy chain's own DROP counter, captured in the same dump, does not.
Such a zero is replaced by the drop chain's count and marked
ACCEPT_CORRECTED.
"""

import re
from typing import IO, Dict, Iterable, List, Optional, Sequence

from ..constants import MAX_PACKET_COUNT, Markers
from ..exceptions import DumpError, RecordBuildError
from ..logging_config import get_logger
from ..watch.models import WorkloadIdentity
from .chains import ChainType, PolicyDirection
from .models import AccountingRecord, CountType, DropChainObservation, build_record

logger = get_logger(__name__)

APPEND_RE = re.compile(r'^\[(-?\d+):\d+\] -A cali-([tf]w)-(\S+).*-j (\S+)$')
DROP_CHAIN_RE = re.compile(r'^\[(-?\d+):\d+\] -A (cali-p([io])-\S+)\s.*-j DROP$')


def workloads_by_interface(workloads: Iterable[WorkloadIdentity]) -> Dict[str, WorkloadIdentity]:
    """Index workloads by their host-side interface name."""
    return {w.interface_name: w for w in workloads}


def parse_count(raw: str) -> Optional[int]:
    """Packet count as a non-negative int64, or None if it is not one."""
    try:
        count = int(raw)
    except ValueError:
        return None
    if count < 0 or count > MAX_PACKET_COUNT:
        return None
    return count


def scan_drop_chains(lines: Iterable[str]) -> Dict[str, DropChainObservation]:
    """First pass: packet count of the DROP rule of each policy chain."""
    observations: Dict[str, DropChainObservation] = {}

    for line in lines:
        match = DROP_CHAIN_RE.match(line)
        if match is None:
            continue

        raw_count, chain, direction_token = match.groups()
        packet_count = parse_count(raw_count)
        if packet_count is None:
            logger.error(f"Error parsing packet count {raw_count!r} for drop chain {chain}")
            continue

        observations[chain] = DropChainObservation(
            chain=chain,
            direction=PolicyDirection.from_token(direction_token),
            packet_count=packet_count,
        )

    return observations


def parse_lines(
    lines: Sequence[str],
    interface_to_workload: Dict[str, WorkloadIdentity],
) -> List[AccountingRecord]:
    """
    Parse buffered dump lines into accounting records, in line order.

    Malformed lines are logged and skipped.

    Raises:
        UnsupportedGrammarError: for a chain token outside the naming scheme
    """
    drop_chains = scan_drop_chains(lines)

    # At most drop and accept for ingress and egress per interface
    results: List[AccountingRecord] = []
    last_target = ""

    for line in lines:
        match = APPEND_RE.match(line)
        if match is None:
            continue

        raw_count, type_token, iface, target = match.groups()

        packet_count = parse_count(raw_count)
        if packet_count is None:
            logger.error(f"Error parsing packet count {raw_count!r} on line: {line}")
            continue

        chain_type = ChainType.from_token(type_token)

        is_drop = Markers.NO_POLICY_DROP in line
        is_accept = Markers.POLICY_ACCEPT in line

        if not (is_drop or is_accept):
            last_target = target
            continue

        workload = interface_to_workload.get(iface)
        if workload is None:
            logger.error(f"Couldn't find workload for interface: {iface}")
            continue

        try:
            if is_drop:
                record = build_record(workload, CountType.DROP, chain_type, packet_count, target)
            else:
                # The accept count belongs to the policy jumped to on the previous line
                count_type = CountType.ACCEPT
                observed = drop_chains.get(last_target)
                if packet_count == 0 and observed is not None and observed.packet_count != 0:
                    logger.trace(
                        f"Correcting zero accept count for {iface} {last_target} "
                        f"to {observed.packet_count}"
                    )
                    packet_count = observed.packet_count
                    count_type = CountType.ACCEPT_CORRECTED
                record = build_record(workload, count_type, chain_type, packet_count, last_target)
        except RecordBuildError as e:
            logger.error(f"Error building result from line '{line}': {e}")
            continue

        results.append(record)

    return results


def parse_text(text: str, interface_to_workload: Dict[str, WorkloadIdentity]) -> List[AccountingRecord]:
    return parse_lines(text.splitlines(), interface_to_workload)


def parse_from(stream: IO[str], interface_to_workload: Dict[str, WorkloadIdentity]) -> List[AccountingRecord]:
    """
    Read a whole dump from a stream, then parse it.

    Raises:
        DumpError: if reading the stream fails
    """
    try:
        text = stream.read()
    except OSError as e:
        logger.error(f"Failed to read iptables-save output: {e}")
        raise DumpError(f"Failed to read iptables-save output: {e}") from e
    return parse_text(text, interface_to_workload)
