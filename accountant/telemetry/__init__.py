"""
Telemetry Module for Calico Accountant
Provides OpenTelemetry tracing of scrape rounds.
"""

from .otel_setup import (
    TelemetryManager,
    TelemetryConfig,
    ExportMode,
    FileSpanExporter,
)

__all__ = [
    'TelemetryManager',
    'TelemetryConfig',
    'ExportMode',
    'FileSpanExporter',
]
