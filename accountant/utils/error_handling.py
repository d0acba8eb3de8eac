"""
Error Handling Utilities for Calico Accountant

Recoverable failures end one unit of work (a scrape round, one pass over
the sync feed) and are retried by the next one. They are routed through
handle_error(), which classifies them, logs them with their context, and
collapses repeats: a node whose iptables-save keeps failing is scraped
every few seconds and would otherwise log the same failure each time.

Fatal conditions (unresolvable node name, unsupported chain grammar) are
not routed through here; they propagate to the process boundary.

USAGE:
    from accountant.utils.error_handling import handle_error, ErrorCategory

    try:
        records = scan(cache, dump)
    except DumpError as e:
        handle_error(e, "scan iptables counters", ErrorCategory.DUMP)
"""

import logging
import sys
import time
import threading
import traceback
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from ..exceptions import ConfigurationError, DumpError, FeedDecodeError, RecordBuildError

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Where in the accountant a failure happened."""
    DUMP = "dump"               # iptables-save could not be run or read
    PARSE = "parse"             # A dump line could not become a record
    WATCH = "watch"             # Sync feed
    EXPORT = "export"           # Metrics endpoint
    CONFIG = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """How bad a failure is for the process."""
    INFO = "info"
    WARNING = "warning"         # Heals on the next round
    ERROR = "error"             # A round produced nothing
    CRITICAL = "critical"       # The process cannot do its job

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass
class ErrorContext:
    """One handled failure and what was going on when it happened."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    thread_name: str = field(default_factory=lambda: threading.current_thread().name)
    stack_trace: str = ""
    additional_context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Only meaningful when called from inside an except block
        if not self.stack_trace and sys.exc_info()[0] is not None:
            self.stack_trace = traceback.format_exc()

    @property
    def key(self) -> str:
        """Identity used to recognise repeats of the same failure."""
        return f"{self.category.value}:{type(self.error).__name__}:{self.operation}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_type': type(self.error).__name__,
            'error_message': str(self.error),
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'timestamp': self.timestamp,
            'thread_name': self.thread_name,
            'stack_trace': self.stack_trace,
            'context': dict(self.additional_context),
        }

    def format_log_message(self) -> str:
        message = (
            f"{self.operation} failed [{self.category.value}/{self.severity.value}] "
            f"in {self.thread_name}: {type(self.error).__name__}: {self.error}"
        )
        if self.additional_context:
            details = ", ".join(f"{k}={v}" for k, v in self.additional_context.items())
            message = f"{message} ({details})"
        if self.stack_trace:
            message = f"{message}\n{self.stack_trace.rstrip()}"
        return message


class ErrorAggregator:
    """
    Keeps recent failures and collapses repeats.

    A failure with the same key as one recorded less than
    dedup_window_seconds ago is only counted, not kept.
    """

    def __init__(self, max_errors: int = 1000, dedup_window_seconds: float = 60):
        self._recent: Deque[ErrorContext] = deque(maxlen=max_errors)
        self._occurrences: Counter = Counter()
        self._last_seen: Dict[str, float] = {}
        self._dedup_window = dedup_window_seconds
        self._lock = threading.Lock()

    def add_error(self, context: ErrorContext) -> bool:
        """
        Record a failure.

        Returns:
            False if it repeats one seen within the dedup window
        """
        now = time.monotonic()
        with self._lock:
            self._occurrences[context.key] += 1
            last = self._last_seen.get(context.key)
            if last is not None and now - last < self._dedup_window:
                return False
            self._last_seen[context.key] = now
            self._recent.append(context)
            return True

    def get_error_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'total_errors': len(self._recent),
                'by_category': dict(Counter(c.category.value for c in self._recent)),
                'by_severity': dict(Counter(c.severity.value for c in self._recent)),
                'deduplicated_counts': dict(self._occurrences),
            }

    def get_recent_errors(self, count: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            return [c.to_dict() for c in list(self._recent)[-count:]]

    def clear(self) -> None:
        with self._lock:
            self._recent.clear()
            self._occurrences.clear()
            self._last_seen.clear()


_global_aggregator = ErrorAggregator()


def get_error_aggregator() -> ErrorAggregator:
    return _global_aggregator


def determine_severity(error: Exception, category: ErrorCategory) -> ErrorSeverity:
    """Severity of a failure, from its type first and its category second."""
    if isinstance(error, ConfigurationError):
        return ErrorSeverity.CRITICAL

    # Per-line and per-event problems heal on the next round
    if isinstance(error, (RecordBuildError, FeedDecodeError)):
        return ErrorSeverity.WARNING

    if isinstance(error, DumpError) or category == ErrorCategory.DUMP:
        return ErrorSeverity.ERROR

    if 'timeout' in type(error).__name__.lower():
        return ErrorSeverity.WARNING

    return ErrorSeverity.ERROR


def handle_error(
    error: Exception,
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    reraise: bool = False,
) -> ErrorContext:
    """
    Log and record a recoverable failure.

    Args:
        error: The exception that occurred
        operation: What was being attempted, e.g. "scan iptables counters"
        category: Where it happened
        severity: Overrides determine_severity()
        additional_context: Extra key/values for the log line
        reraise: Re-raise the exception after recording it

    Returns:
        The recorded ErrorContext
    """
    context = ErrorContext(
        error=error,
        category=category,
        severity=severity or determine_severity(error, category),
        operation=operation,
        additional_context=additional_context or {},
    )

    if _global_aggregator.add_error(context):
        logger.log(context.severity.log_level, context.format_log_message())
    else:
        logger.log(
            context.severity.log_level,
            f"[DEDUPLICATED] {operation}: {type(error).__name__}: {error}",
        )

    if reraise:
        raise error

    return context


__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'determine_severity',
    'handle_error',
]
