"""
Process configuration for Calico Accountant.

Configuration comes from the environment, using the variable names the
accountant has always been deployed with (METRICS_SERVER_PORT,
MINIMUM_COUNTER, NODENAME, HOSTNAME). Values that change what gets
published are validated strictly and fail startup; tuning values fall
back to defaults with a warning.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .constants import Defaults, EnvVars, Timeouts, _env_override
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _parse_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ConfigurationError(f"Failed to parse {name}={raw!r}: {e}") from e


@dataclass
class AccountantConfig:
    """Configuration for one accountant process."""
    port: int = Defaults.METRICS_PORT
    host: str = Defaults.METRICS_HOST
    min_counter: int = Defaults.MINIMUM_COUNTER
    feed: str = Defaults.FEED
    iptables_save: str = Defaults.IPTABLES_SAVE
    dump_timeout: float = Timeouts.DUMP_DEFAULT
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ, repr=False)

    def __post_init__(self):
        if not 0 <= self.port <= 65535:
            raise ConfigurationError(f"Invalid metrics port: {self.port}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AccountantConfig':
        """Create config from environment variables."""
        if environ is None:
            environ = os.environ

        config = cls(
            port=_parse_int(environ, EnvVars.METRICS_PORT, Defaults.METRICS_PORT),
            host=environ.get(EnvVars.METRICS_HOST, Defaults.METRICS_HOST),
            min_counter=_parse_int(environ, EnvVars.MINIMUM_COUNTER, Defaults.MINIMUM_COUNTER),
            feed=environ.get(EnvVars.FEED, Defaults.FEED),
            iptables_save=environ.get(EnvVars.IPTABLES_SAVE, Defaults.IPTABLES_SAVE),
            dump_timeout=_env_override(
                "DUMP_TIMEOUT",
                Timeouts.DUMP_DEFAULT,
                converter=float,
                min_value=0.1,
                max_value=Timeouts.DUMP_MAX,
                environ=environ,
            ),
            environ=environ,
        )

        if config.min_counter:
            logger.info(f"Scrapes with every counter below {config.min_counter} will be dropped")
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            'port': self.port,
            'host': self.host,
            'min_counter': self.min_counter,
            'feed': self.feed,
            'iptables_save': self.iptables_save,
            'dump_timeout': self.dump_timeout,
        }
