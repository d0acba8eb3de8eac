"""
Calico Accountant Daemon

Exports per-workload packet counts for Calico policy decisions as
Prometheus metrics:
- no_policy_drop_counter: packets dropped because no policy matched
- policy_accept_counter: packets accepted, by the accepting policy

Startup order matters. The resource cache must be filled from the sync
feed before the first scrape, otherwise early dumps would reference
workloads the accountant has not heard of yet and lose their samples.
"""

import argparse
import dataclasses
import signal
import sys
import threading
import time
from typing import List, Optional

from . import __version__
from .config import AccountantConfig
from .constants import Timeouts
from .exceptions import AccountantError, ConfigurationError
from .iptables.dump import IptablesSave
from .logging_config import VERBOSE, configure_from_environment, get_logger, get_logging_state
from .metrics.collector import ScrapeCollector
from .metrics.exposition import AccountantMetrics
from .metrics.server import MetricsExporter
from .telemetry.otel_setup import TelemetryConfig, TelemetryManager
from .watch.cache import ResourceCache
from .watch.feed import JsonLinesFeed, SyncFeedConsumer
from .watch.nodename import resolve_node_name

logger = get_logger(__name__)


class AccountantDaemon:
    """
    Wires the sync feed, resource cache, scrape collector and metrics
    endpoint together and owns their lifecycle.
    """

    def __init__(
        self,
        config: AccountantConfig,
        node_name: Optional[str] = None,
        feed: Optional[JsonLinesFeed] = None,
        dump: Optional[IptablesSave] = None,
        telemetry: Optional[TelemetryManager] = None,
    ):
        self.config = config
        self.node_name = node_name or resolve_node_name(config.environ)

        self.cache = ResourceCache(self.node_name)
        self.feed_consumer = SyncFeedConsumer(
            self.cache,
            feed or JsonLinesFeed(config.feed),
        )
        self.telemetry = telemetry or TelemetryManager(TelemetryConfig.from_env(config.environ))
        self.metrics = AccountantMetrics()
        self.collector = ScrapeCollector(
            self.cache,
            dump or IptablesSave(config.iptables_save, timeout=config.dump_timeout),
            self.metrics,
            min_counter=config.min_counter,
            telemetry=self.telemetry,
        )
        self.exporter = MetricsExporter(self.collector, port=config.port, host=config.host)

        self._running = False
        self._shutdown_event = threading.Event()

    def start(self) -> bool:
        """
        Start the daemon and block until the metrics endpoint is up.

        Returns:
            False if shutdown was requested before the cache filled

        Raises:
            AccountantError: the metrics endpoint could not be started
        """
        if self._running:
            logger.warning("Daemon already running")
            return True

        logger.info(f"Starting Calico Accountant {__version__} on node {self.node_name}")
        logger.log_with_data(VERBOSE, "Configuration", self.config.to_dict())
        self._running = True

        self.telemetry.initialize()
        self.feed_consumer.start()

        if not self.wait_for_cache():
            return False

        if not self.exporter.start():
            raise AccountantError(
                f"Could not serve metrics on {self.config.host}:{self.config.port}"
            )
        return True

    def wait_for_cache(self) -> bool:
        """Block until the cache is filled or shutdown is requested."""
        last_report = time.monotonic()
        while not self._shutdown_event.is_set():
            if self.cache.wait_until_ready(timeout=Timeouts.SLEEP_DEFAULT):
                return True
            if time.monotonic() - last_report >= Timeouts.READY_LOG_INTERVAL:
                logger.info(
                    f"Waiting for Calico cache to fill "
                    f"({len(self.cache)} workloads, {self.feed_consumer.events_applied} events so far)"
                )
                last_report = time.monotonic()
        return False

    def run(self) -> int:
        """
        Run until a signal or a fatal scrape error.

        Returns:
            Process exit code
        """
        try:
            if not self.start():
                return 0
            logger.info("Calico Accountant running")

            while not self._shutdown_event.is_set():
                if self.exporter.fatal_error.wait(Timeouts.SLEEP_DEFAULT):
                    logger.critical(f"Shutting down after fatal error: {self.exporter.error}")
                    return 1
            return 0
        except AccountantError as e:
            logger.critical(str(e))
            return 1
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop the daemon"""
        if not self._running:
            return

        logger.info("Stopping Calico Accountant...")
        self._running = False
        self._shutdown_event.set()

        self.exporter.stop()
        self.feed_consumer.stop()
        self.telemetry.shutdown()

        logger.info("Calico Accountant stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}")
        self.request_shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='calico-accountant',
        description='Export Calico policy accept/drop packet counts as Prometheus metrics',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('--trace', '-t', action='store_true',
                        help='Enable trace logging (very detailed)')
    parser.add_argument('--log-json', action='store_true',
                        help='Write log records as JSON')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Also write logs to this file')
    parser.add_argument('--port', type=int, default=None,
                        help='Metrics port (overrides METRICS_SERVER_PORT)')
    parser.add_argument('--feed', type=str, default=None,
                        help='Sync feed to read, a path or "-" for stdin (overrides ACCOUNTANT_FEED)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    configure_from_environment(
        verbose=args.verbose,
        trace=args.trace,
        log_file=args.log_file,
        json_format=args.log_json,
    )
    logger.log_with_data(VERBOSE, "Logging configured", get_logging_state())

    try:
        config = AccountantConfig.from_env()
        overrides = {}
        if args.port is not None:
            overrides['port'] = args.port
        if args.feed is not None:
            overrides['feed'] = args.feed
        if overrides:
            config = dataclasses.replace(config, **overrides)
        daemon = AccountantDaemon(config)
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1

    daemon.install_signal_handlers()
    return daemon.run()


if __name__ == '__main__':
    sys.exit(main())
