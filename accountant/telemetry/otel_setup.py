"""
OpenTelemetry Tracing for Calico Accountant

Every scrape round runs inside a span carrying the round's outcome:
record count, whether the round was suppressed, and any failure. Spans
can be written to the console or to a JSON-lines file for offline
inspection of slow or failing scrapes.

Tracing is off unless configured; with no provider configured the
OpenTelemetry API hands out non-recording spans.
"""

import os
import json
import socket
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, HOST_NAME
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from opentelemetry.trace import Status, StatusCode

from .. import __version__

logger = logging.getLogger(__name__)


class ExportMode(Enum):
    """Telemetry export modes"""
    DISABLED = "disabled"       # No export
    CONSOLE = "console"         # Console output
    FILE = "file"               # JSON-lines file


@dataclass
class TelemetryConfig:
    """Configuration for tracing"""
    export_mode: ExportMode = ExportMode.DISABLED
    file_path: Optional[str] = None
    service_name: str = "calico-accountant"

    @property
    def enabled(self) -> bool:
        return self.export_mode is not ExportMode.DISABLED

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'TelemetryConfig':
        """Create config from environment variables"""
        if environ is None:
            environ = os.environ
        config = cls()

        telemetry_dir = environ.get('ACCOUNTANT_TELEMETRY_DIR')
        if telemetry_dir:
            config.export_mode = ExportMode.FILE
            config.file_path = telemetry_dir
        elif environ.get('ACCOUNTANT_TELEMETRY_CONSOLE', 'false').lower() == 'true':
            config.export_mode = ExportMode.CONSOLE

        return config


class FileSpanExporter(SpanExporter):
    """Export spans to a JSON-lines file"""

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.file_path = self.directory / 'traces.jsonl'
        self._lock = threading.Lock()

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            with self._lock:
                with open(self.file_path, 'a', encoding='utf-8') as f:
                    for span in spans:
                        span_data = {
                            'trace_id': format(span.context.trace_id, '032x'),
                            'span_id': format(span.context.span_id, '016x'),
                            'name': span.name,
                            'status': span.status.status_code.name,
                            'attributes': dict(span.attributes or {}),
                            'start_time': span.start_time,
                            'end_time': span.end_time,
                        }
                        f.write(json.dumps(span_data) + '\n')
            return SpanExportResult.SUCCESS
        except OSError as e:
            logger.error(f"Failed to export spans to file: {e}")
            return SpanExportResult.FAILURE

    def shutdown(self) -> None:
        pass


class TelemetryManager:
    """
    Owns the tracer used by scrape rounds.

    The provider is private to the manager rather than installed
    globally, so several managers (e.g. in tests) do not interfere.
    """

    def __init__(self, config: Optional[TelemetryConfig] = None):
        self.config = config or TelemetryConfig()
        self.hostname = socket.gethostname()
        self._provider: Optional[TracerProvider] = None
        self._tracer = trace.get_tracer(__name__)
        self._initialized = False

    def initialize(self) -> bool:
        """
        Set up the tracer provider and exporters.

        Returns:
            True if spans will be recorded
        """
        if self._initialized:
            return self._provider is not None

        self._initialized = True
        if not self.config.enabled:
            logger.info("Tracing disabled by configuration")
            return False

        resource = Resource.create({
            SERVICE_NAME: self.config.service_name,
            HOST_NAME: self.hostname,
            "service.version": __version__,
        })
        provider = TracerProvider(resource=resource)

        if self.config.export_mode is ExportMode.CONSOLE:
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        elif self.config.export_mode is ExportMode.FILE:
            provider.add_span_processor(
                SimpleSpanProcessor(FileSpanExporter(self.config.file_path))
            )

        self._provider = provider
        self._tracer = provider.get_tracer(__name__, __version__)
        logger.info(f"Tracing enabled ({self.config.export_mode.value})")
        return True

    def shutdown(self) -> None:
        """Flush and shut down the tracer provider"""
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None
            self._tracer = trace.get_tracer(__name__)
            logger.info("Tracing shutdown complete")

    @contextmanager
    def start_span(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[trace.Span]:
        """
        Run a block inside a span.

        Exceptions escaping the block are recorded on the span and
        re-raised.
        """
        with self._tracer.start_as_current_span(name, attributes=attributes or {}) as span:
            yield span

    @staticmethod
    def mark_failed(span: trace.Span, error: BaseException) -> None:
        """Record a handled failure on a span."""
        span.record_exception(error)
        span.set_status(Status(StatusCode.ERROR, str(error)))
