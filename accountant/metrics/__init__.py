"""
Metrics: scrape aggregation, Prometheus text exposition and the HTTP
endpoint that serves them.
"""

from .exposition import (
    CONTENT_TYPE,
    AccountantMetrics,
    Counter,
    MetricFamily,
    MetricValue,
    accept_family,
    drop_family,
    render_families,
)
from .collector import ScrapeCollector, ScrapeResult
from .server import MetricsExporter, MetricsHandler

__all__ = [
    'CONTENT_TYPE',
    'AccountantMetrics',
    'Counter',
    'MetricFamily',
    'MetricValue',
    'accept_family',
    'drop_family',
    'render_families',
    'ScrapeCollector',
    'ScrapeResult',
    'MetricsExporter',
    'MetricsHandler',
]
