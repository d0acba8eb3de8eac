"""
Centralized Constants Module for Calico Accountant.

Consolidates chain naming, rule-comment markers, metric names, timeouts
and defaults used throughout the accountant so that parser, cache and
exporter agree on them.

Calico naming must match what Felix programs into iptables. If Felix
changes its scheme, this is the one place to update.

Usage:
    from accountant.constants import Timeouts, ChainNames, Markers

    subprocess.Popen(cmd).communicate(timeout=Timeouts.DUMP_DEFAULT)
"""

import os
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)


# =============================================================================
# ENVIRONMENT VARIABLE OVERRIDE UTILITIES
# =============================================================================

T = TypeVar('T')


def _env_override(
    env_var: str,
    default: T,
    converter: Callable[[str], T] = str,
    validator: Optional[Callable[[T], bool]] = None,
    min_value: Optional[T] = None,
    max_value: Optional[T] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> T:
    """Get a tuning value with environment variable override.

    Out-of-range or unparseable values are logged and replaced by the
    default. Use this only for values where a default is always safe.

    Args:
        env_var: Environment variable name (will be prefixed with ACCOUNTANT_)
        default: Default value if env var not set
        converter: Function to convert string to target type
        validator: Optional validation function
        min_value: Optional minimum allowed value
        max_value: Optional maximum allowed value
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Configured value (from env var if valid, otherwise default)
    """
    full_env_var = f"ACCOUNTANT_{env_var}"
    env_value = (os.environ if environ is None else environ).get(full_env_var)

    if env_value is None:
        return default

    try:
        converted = converter(env_value)

        if min_value is not None and converted < min_value:
            logger.warning(
                f"{full_env_var}={env_value} below minimum {min_value}, using default"
            )
            return default
        if max_value is not None and converted > max_value:
            logger.warning(
                f"{full_env_var}={env_value} above maximum {max_value}, using default"
            )
            return default

        if validator is not None and not validator(converted):
            logger.warning(
                f"{full_env_var}={env_value} failed validation, using default"
            )
            return default

        logger.info(f"Using {full_env_var}={converted} (override)")
        return converted

    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid value for {full_env_var}: {e}, using default")
        return default


# =============================================================================
# TIMEOUT CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class Timeouts:
    """Centralized timeout values in seconds."""
    # iptables-save execution
    DUMP_DEFAULT: float = 10.0          # Full filter table dump
    DUMP_MAX: float = 120.0             # Upper bound for overrides
    PROCESS_REAP: float = 2.0           # Wait after kill()

    # Sync feed
    FEED_RETRY_INTERVAL: float = 5.0    # Pause before reopening the feed
    READY_LOG_INTERVAL: float = 10.0    # Progress log while waiting for sync

    # Thread join timeouts
    THREAD_JOIN_DEFAULT: float = 5.0

    # Main loop
    SLEEP_DEFAULT: float = 1.0


# =============================================================================
# CALICO NAMING
# =============================================================================

@dataclass(frozen=True)
class ChainNames:
    """Calico iptables chain naming, as programmed by Felix."""
    WORKLOAD_PREFIX: str = "cali-"
    TO_WORKLOAD: str = "tw"
    FROM_WORKLOAD: str = "fw"

    POLICY_INBOUND_PREFIX: str = "cali-pi-"
    POLICY_OUTBOUND_PREFIX: str = "cali-po-"
    INBOUND: str = "i"
    OUTBOUND: str = "o"

    DEFAULT_TIER: str = "default"
    MAX_LENGTH: int = 28                # iptables chain name limit
    SHORTENED_PREFIX: str = "_"         # Marks hashed chain names

    DROP_TARGET: str = "DROP"


@dataclass(frozen=True)
class Markers:
    """Rule comments Felix attaches to the per-workload policy rules."""
    NO_POLICY_DROP: str = "Drop if no policies passed packet"
    POLICY_ACCEPT: str = "Return if policy accepted"


# Largest packet count representable in a signed 64-bit counter
MAX_PACKET_COUNT = 2 ** 63 - 1


# =============================================================================
# METRICS
# =============================================================================

@dataclass(frozen=True)
class MetricNames:
    """Exported metric family names."""
    NO_POLICY_DROP: str = "no_policy_drop_counter"
    POLICY_ACCEPT: str = "policy_accept_counter"
    DROPPED_SCRAPES: str = "dropped_scrape_counter"


DROP_LABELS = ("pod", "namespace", "app", "ip", "type")
ACCEPT_LABELS = ("pod", "namespace", "app", "ip", "type", "policy")


# =============================================================================
# DEFAULTS
# =============================================================================

@dataclass(frozen=True)
class Defaults:
    """Process defaults, overridable through the environment."""
    METRICS_PORT: int = 9009
    METRICS_HOST: str = "0.0.0.0"
    MINIMUM_COUNTER: int = 0            # 0 never suppresses a scrape
    IPTABLES_SAVE: str = "iptables-save"
    IPTABLES_TABLE: str = "filter"
    FEED: str = "-"                     # stdin


@dataclass(frozen=True)
class EnvVars:
    """Environment variable names read at startup."""
    METRICS_PORT: str = "METRICS_SERVER_PORT"
    METRICS_HOST: str = "METRICS_SERVER_HOST"
    MINIMUM_COUNTER: str = "MINIMUM_COUNTER"
    NODENAME: str = "NODENAME"
    HOSTNAME: str = "HOSTNAME"
    FEED: str = "ACCOUNTANT_FEED"
    IPTABLES_SAVE: str = "ACCOUNTANT_IPTABLES_SAVE"


__all__ = [
    'Timeouts',
    'ChainNames',
    'Markers',
    'MetricNames',
    'Defaults',
    'EnvVars',
    'MAX_PACKET_COUNT',
    'DROP_LABELS',
    'ACCEPT_LABELS',
]
