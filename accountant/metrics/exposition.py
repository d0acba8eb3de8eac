"""
Prometheus text exposition for Calico Accountant.

Two kinds of series are exposed:
- Per-scrape samples (accept and drop counts) rebuilt from scratch on
  every scrape, since each scrape is an independent measurement of the
  kernel counters.
- Process-lifetime counters owned by the accountant itself, such as the
  number of scrapes dropped by the minimum-counter check.

Output follows the Prometheus text format, version 0.0.4.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from ..constants import ACCEPT_LABELS, DROP_LABELS, MetricNames

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@dataclass
class MetricValue:
    """A single metric value with labels."""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class MetricFamily:
    """All samples of one metric name, with its HELP and TYPE."""
    name: str
    help_text: str
    metric_type: str = "counter"
    label_names: Tuple[str, ...] = ()
    samples: List[MetricValue] = field(default_factory=list)

    def add(self, value: float, *label_values: str) -> None:
        if len(label_values) != len(self.label_names):
            raise ValueError(
                f"{self.name} expects {len(self.label_names)} label values, got {len(label_values)}"
            )
        self.samples.append(MetricValue(
            value=value,
            labels=dict(zip(self.label_names, label_values)),
        ))


class Counter:
    """A monotonically increasing counter."""

    def __init__(self, name: str, help_text: str, labels: Sequence[str] = None):
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(labels or ())
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = threading.Lock()
        if not self.label_names:
            # Unlabelled counters are exported from the start
            self._values[()] = 0.0

    def inc(self, value: float = 1.0, **labels) -> None:
        """Increment the counter."""
        if value < 0:
            raise ValueError("Counters can only be incremented by non-negative amounts")
        label_values = tuple(labels.get(l, "") for l in self.label_names)
        with self._lock:
            self._values[label_values] += value

    def get(self, **labels) -> float:
        """Get current value."""
        label_values = tuple(labels.get(l, "") for l in self.label_names)
        with self._lock:
            return self._values.get(label_values, 0.0)

    def collect(self) -> MetricFamily:
        """Collect all values for export."""
        with self._lock:
            samples = [
                MetricValue(value=v, labels=dict(zip(self.label_names, k)))
                for k, v in self._values.items()
            ]
        return MetricFamily(
            name=self.name,
            help_text=self.help_text,
            metric_type="counter",
            label_names=self.label_names,
            samples=samples,
        )


def escape_label_value(value: str) -> str:
    return value.replace('\\', '\\\\').replace('\n', '\\n').replace('"', '\\"')


def escape_help(text: str) -> str:
    return text.replace('\\', '\\\\').replace('\n', '\\n')


def format_value(value: float) -> str:
    return repr(float(value))


def render_families(families: Iterable[MetricFamily]) -> str:
    """Render metric families in Prometheus text format."""
    lines = []

    for family in families:
        lines.append(f"# HELP {family.name} {escape_help(family.help_text)}")
        lines.append(f"# TYPE {family.name} {family.metric_type}")

        for mv in family.samples:
            if mv.labels:
                label_str = ','.join(
                    f'{k}="{escape_label_value(v)}"' for k, v in mv.labels.items()
                )
                lines.append(f'{family.name}{{{label_str}}} {format_value(mv.value)}')
            else:
                lines.append(f'{family.name} {format_value(mv.value)}')

    return '\n'.join(lines) + '\n'


def drop_family() -> MetricFamily:
    return MetricFamily(
        name=MetricNames.NO_POLICY_DROP,
        help_text="Number of packets dropped to/from a workload because no policies matched them",
        label_names=DROP_LABELS,
    )


def accept_family() -> MetricFamily:
    return MetricFamily(
        name=MetricNames.POLICY_ACCEPT,
        help_text="Number of packets accepted by a policy on a workload",
        label_names=ACCEPT_LABELS,
    )


class AccountantMetrics:
    """
    Process-lifetime metrics of the accountant.

    Naming convention follows the series the accountant has always exported.
    """

    def __init__(self):
        self.dropped_scrapes = Counter(
            MetricNames.DROPPED_SCRAPES,
            "Number of scrapes dropped because every counter was below the minimum",
        )

        self._all_metrics = [
            self.dropped_scrapes,
        ]

    def collect_all(self, scrape_families: Iterable[MetricFamily] = ()) -> str:
        """Render one scrape's families followed by the process metrics."""
        families = list(scrape_families)
        families.extend(metric.collect() for metric in self._all_metrics)
        return render_families(families)
