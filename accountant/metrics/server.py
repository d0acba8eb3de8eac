"""
Metrics HTTP endpoint.

Serves /metrics (one scrape round per request) and /health (cache
readiness) from a background thread. Requests are handled one at a time.
"""

import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from ..constants import Defaults, Timeouts
from ..exceptions import UnsupportedGrammarError
from ..logging_config import get_logger
from .collector import ScrapeCollector
from .exposition import CONTENT_TYPE

logger = get_logger(__name__)


class MetricsHandler(BaseHTTPRequestHandler):
    """HTTP handler for /metrics and /health endpoints."""

    server: 'MetricsHTTPServer'

    def do_GET(self):
        path = self.path.split('?', 1)[0]
        if path == '/metrics':
            self._serve_metrics()
        elif path == '/health':
            self._serve_health()
        else:
            self._send(404, b'Not Found\n')

    def _serve_metrics(self):
        exporter = self.server.exporter
        try:
            content = exporter.collector.render()
        except UnsupportedGrammarError as e:
            exporter.report_fatal(e)
            self._send(500, f'{e}\n'.encode('utf-8'))
            return
        self._send(200, content.encode('utf-8'), CONTENT_TYPE)

    def _serve_health(self):
        if self.server.exporter.collector.cache.is_ready:
            self._send(200, b'OK\n')
        else:
            self._send(503, b'Waiting for resource cache\n')

    def _send(self, status: int, body: bytes, content_type: str = 'text/plain; charset=utf-8'):
        self.send_response(status)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.trace(f"{self.address_string()} - {format % args}")


class MetricsHTTPServer(HTTPServer):
    """HTTPServer that knows which exporter it serves."""

    def __init__(self, server_address, exporter: 'MetricsExporter'):
        self.exporter = exporter
        super().__init__(server_address, MetricsHandler)


class MetricsExporter:
    """
    Prometheus metrics exporter for Calico Accountant.

    Starts an HTTP server that exposes metrics at /metrics endpoint. A
    scrape that hits chain naming it cannot interpret sets fatal_error;
    the daemon watches that event and shuts down.
    """

    def __init__(
        self,
        collector: ScrapeCollector,
        port: int = Defaults.METRICS_PORT,
        host: str = Defaults.METRICS_HOST,
    ):
        self.collector = collector
        self.port = port
        self.host = host
        self.fatal_error = threading.Event()
        self.error: Optional[Exception] = None
        self._server: Optional[MetricsHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def server_port(self) -> Optional[int]:
        """Bound port, useful when started on port 0."""
        if self._server is None:
            return None
        return self._server.server_address[1]

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the metrics server."""
        try:
            self._server = MetricsHTTPServer((self.host, self.port), self)
        except OSError as e:
            logger.error(f"Failed to start metrics server on {self.host}:{self.port}: {e}")
            self._server = None
            return False

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="metrics-server",
            daemon=True,
        )
        self._thread.start()

        logger.info(f"Prometheus metrics server started on {self.host}:{self.server_port}")
        return True

    def stop(self) -> None:
        """Stop the metrics server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=Timeouts.THREAD_JOIN_DEFAULT)
            self._thread = None
        logger.info("Prometheus metrics server stopped")

    def report_fatal(self, error: Exception) -> None:
        """Record an error the accountant cannot continue after."""
        logger.critical(f"Fatal scrape error: {error}")
        self.error = error
        self.fatal_error.set()
