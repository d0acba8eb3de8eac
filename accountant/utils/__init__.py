"""
Utility modules for Calico Accountant.

Provides common utilities including:
- Error handling with deduplicated logging
- A reader/writer lock for the resource cache
"""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ErrorAggregator,
    get_error_aggregator,
    handle_error,
    determine_severity,
)
from .rwlock import ReadWriteLock

__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'handle_error',
    'determine_severity',
    'ReadWriteLock',
]
