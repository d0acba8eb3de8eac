"""
Scrape Aggregator

Runs one measurement round per scrape: wait for the resource cache, take
and parse a counter dump, decide whether the round can be trusted, and
turn the records into metric samples.

Rounds are serialized. Overlapping scrapes would each run iptables-save
and snapshot the cache for no benefit, so a second scrape waits for the
first to finish and then takes its own measurement.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from ..exceptions import DumpError
from ..iptables.dump import IptablesSave, scan
from ..iptables.models import AccountingRecord, CountType
from ..logging_config import get_logger
from ..telemetry.otel_setup import TelemetryManager
from ..utils.error_handling import ErrorCategory, handle_error
from ..watch.cache import ResourceCache
from .exposition import AccountantMetrics, MetricFamily, accept_family, drop_family

logger = get_logger(__name__)


@dataclass
class ScrapeResult:
    """Outcome of one scrape round."""
    families: List[MetricFamily] = field(default_factory=list)
    record_count: int = 0
    max_count: int = 0
    suppressed: bool = False
    error: Optional[Exception] = None
    duration_seconds: float = 0.0

    @property
    def sample_count(self) -> int:
        return sum(len(f.samples) for f in self.families)


class ScrapeCollector:
    """
    Produces the accept/drop samples for one scrape.

    A round whose highest packet count is below min_counter is discarded
    as a whole and counted in dropped_scrape_counter: all counters
    transiently reading near zero together is a known artifact, not a
    quiet host.
    """

    def __init__(
        self,
        cache: ResourceCache,
        dump: Optional[IptablesSave] = None,
        metrics: Optional[AccountantMetrics] = None,
        min_counter: int = 0,
        telemetry: Optional[TelemetryManager] = None,
    ):
        self.cache = cache
        self.dump = dump or IptablesSave()
        self.metrics = metrics or AccountantMetrics()
        self.min_counter = min_counter
        self.telemetry = telemetry or TelemetryManager()
        self._lock = threading.Lock()

    def collect(self) -> ScrapeResult:
        """
        Run one round.

        Raises:
            UnsupportedGrammarError: the dump uses a chain naming scheme
                this accountant does not understand (fatal)
        """
        with self._lock:
            start = time.monotonic()
            with self.telemetry.start_span("scrape") as span:
                result = self._collect_round(span)
                span.set_attribute("scrape.records", result.record_count)
                span.set_attribute("scrape.samples", result.sample_count)
                span.set_attribute("scrape.suppressed", result.suppressed)
            result.duration_seconds = time.monotonic() - start

        logger.verbose(
            f"Scrape finished in {result.duration_seconds:.3f}s: "
            f"{result.record_count} records, {result.sample_count} samples"
        )
        return result

    def render(self) -> str:
        """Run one round and render it with the process metrics."""
        result = self.collect()
        return self.metrics.collect_all(result.families)

    def _collect_round(self, span) -> ScrapeResult:
        self.cache.wait_until_ready()

        try:
            records = scan(self.cache, self.dump)
        except DumpError as e:
            handle_error(e, "scan iptables counters", ErrorCategory.DUMP)
            self.telemetry.mark_failed(span, e)
            return ScrapeResult(error=e)

        max_count = max((r.packet_count for r in records), default=0)
        result = ScrapeResult(record_count=len(records), max_count=max_count)

        if max_count < self.min_counter:
            logger.warning(
                f"Dropping scrape: highest packet count {max_count} is below "
                f"the minimum of {self.min_counter} across {len(records)} records"
            )
            self.metrics.dropped_scrapes.inc()
            result.suppressed = True
            return result

        result.families = self.build_families(records)
        return result

    def build_families(self, records: List[AccountingRecord]) -> List[MetricFamily]:
        """One sample per record; only acceptances carry a policy label."""
        drops = drop_family()
        accepts = accept_family()

        for record in records:
            if record.count_type is CountType.DROP:
                drops.add(
                    record.packet_count,
                    record.pod_name,
                    record.namespace,
                    record.app_label,
                    record.pod_ip,
                    str(record.chain_type),
                )
            else:
                policy_name = self.cache.lookup_policy_name(record.target)
                accepts.add(
                    record.packet_count,
                    record.pod_name,
                    record.namespace,
                    record.app_label,
                    record.pod_ip,
                    str(record.chain_type),
                    policy_name,
                )

        return [accepts, drops]
