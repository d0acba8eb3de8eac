"""
Node identity resolution.

Mimics how calico-node determines its node name, because the node field
of every workload endpoint is set from what calico-node sees. Getting it
wrong silently leaks or hides workloads, so failure is fatal.
"""

import os
import socket
from typing import Callable, Mapping, Optional

from ..constants import EnvVars
from ..exceptions import NodeNameError
from ..logging_config import get_logger

logger = get_logger(__name__)


def resolve_node_name(
    environ: Optional[Mapping[str, str]] = None,
    hostname: Callable[[], str] = socket.gethostname,
) -> str:
    """
    Determine the local node name.

    Order: NODENAME (used verbatim when set), then HOSTNAME lower-cased and
    trimmed, then the system hostname.

    Raises:
        NodeNameError: if none of the sources yields a name
    """
    if environ is None:
        environ = os.environ

    node_name = environ.get(EnvVars.NODENAME)
    if node_name is not None:
        logger.verbose(f"Using NODENAME environment variable: {node_name}")
        return node_name

    node_name = environ.get(EnvVars.HOSTNAME, "").strip().lower()
    if node_name:
        logger.verbose(f"Using HOSTNAME environment variable as node name: {node_name}")
        return node_name

    try:
        node_name = hostname().strip().lower()
    except OSError as e:
        raise NodeNameError(f"Error getting hostname: {e}") from e

    if not node_name:
        raise NodeNameError("Error getting hostname: system hostname is empty")

    logger.verbose(f"Using system hostname as node name: {node_name}")
    return node_name
