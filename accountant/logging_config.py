"""
Logging Configuration for Calico Accountant.

Two levels sit around the standard ones: VERBOSE (15) for cache mutations
and round summaries, TRACE (5) for per-line parser decisions. Every record
is tagged with the accountant feature area it came from, taken from the
second component of the logger name (accountant.watch.cache -> watch).

Usage:
    from accountant.logging_config import setup_logging, get_logger

    setup_logging(verbose=True)

    logger = get_logger(__name__)
    logger.verbose(f"Adding workload {key}")
"""

import os
import sys
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, 'TRACE')
logging.addLevelName(VERBOSE, 'VERBOSE')


class FeatureArea(Enum):
    """Feature areas, named after the accountant subpackages."""
    CORE = "core"
    IPTABLES = "iptables"
    WATCH = "watch"
    METRICS = "metrics"
    TELEMETRY = "telemetry"


def feature_for(logger_name: str) -> FeatureArea:
    parts = logger_name.split('.')
    if len(parts) >= 2 and parts[0] == 'accountant':
        try:
            return FeatureArea(parts[1])
        except ValueError:
            pass
    return FeatureArea.CORE


@dataclass
class LoggingState:
    """What setup_logging() last configured."""
    verbose: bool = False
    trace: bool = False
    log_file: Optional[str] = None
    console_enabled: bool = True
    json_format: bool = False
    initialized: bool = False
    _lock: threading.RLock = field(default_factory=threading.RLock)

    @property
    def level(self) -> int:
        if self.trace:
            return TRACE
        return VERBOSE if self.verbose else logging.INFO


_state = LoggingState()


class AccountantFormatter(logging.Formatter):
    """One line per record: coloured text on a terminal, or JSON."""

    COLORS = {
        'TRACE': '\033[90m',
        'DEBUG': '\033[36m',
        'VERBOSE': '\033[94m',
        'INFO': '\033[32m',
        'WARNING': '\033[33;1m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[31;1m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True, json_format: bool = False):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()
        self.json_format = json_format

    def format(self, record: logging.LogRecord) -> str:
        feature = feature_for(record.name).value
        extra_data = getattr(record, 'extra_data', None)
        exception = self.formatException(record.exc_info) if record.exc_info else None

        if self.json_format:
            data: Dict[str, Any] = {
                'timestamp': datetime.fromtimestamp(record.created).isoformat(),
                'level': record.levelname,
                'logger': record.name,
                'feature': feature,
                'message': record.getMessage(),
            }
            if extra_data:
                data['extra'] = extra_data
            if exception:
                data['exception'] = exception
            return json.dumps(data, default=str)

        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]

        text = f"{timestamp} {level} {'[' + feature + ']':12} {record.getMessage()}"
        if extra_data:
            text += " | " + ", ".join(f"{k}={v}" for k, v in extra_data.items())
        if exception:
            text += "\n" + exception
        return text


class AccountantLogger(logging.Logger):
    """Logger with trace() and verbose() and a feature tag."""

    def __init__(self, name: str, level: int = logging.NOTSET):
        super().__init__(name, level)
        self.feature = feature_for(name)

    def trace(self, msg: str, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    def verbose(self, msg: str, *args, **kwargs):
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, msg, args, **kwargs)

    def log_with_data(self, level: int, msg: str, data: Dict[str, Any], **kwargs):
        """Log with key/value data rendered after the message."""
        if not self.isEnabledFor(level):
            return
        extra = dict(kwargs.pop('extra', None) or {})
        extra['extra_data'] = data
        self._log(level, msg, (), extra=extra, **kwargs)


# Loggers created from here on (including module-level ones) are AccountantLoggers
logging.setLoggerClass(AccountantLogger)


def _handler(handler: logging.Handler, use_colors: bool, json_format: bool) -> logging.Handler:
    handler.setLevel(_state.level)
    handler.setFormatter(AccountantFormatter(use_colors=use_colors, json_format=json_format))
    return handler


def setup_logging(
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
) -> None:
    """
    Configure the root logger, replacing any handlers it already has.

    Args:
        verbose: Log at VERBOSE
        trace: Log at TRACE (implies verbose)
        log_file: Also append to this file
        console: Log to stderr
        json_format: Emit JSON lines instead of text
    """
    with _state._lock:
        _state.verbose = verbose or trace
        _state.trace = trace
        _state.log_file = log_file
        _state.console_enabled = console
        _state.json_format = json_format

        root = logging.getLogger()
        for existing in root.handlers[:]:
            root.removeHandler(existing)
        root.setLevel(_state.level)

        if console:
            root.addHandler(_handler(logging.StreamHandler(sys.stderr), True, json_format))
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            root.addHandler(_handler(logging.FileHandler(log_file, encoding='utf-8'), False, json_format))

        _state.initialized = True


def get_logger(name: str) -> AccountantLogger:
    """Logger for a module, e.g. get_logger(__name__)."""
    if logging.getLoggerClass() is not AccountantLogger:
        logging.setLoggerClass(AccountantLogger)
    return logging.getLogger(name)


def get_logging_state() -> Dict[str, Any]:
    with _state._lock:
        return {
            'verbose': _state.verbose,
            'trace': _state.trace,
            'log_file': _state.log_file,
            'console_enabled': _state.console_enabled,
            'json_format': _state.json_format,
            'initialized': _state.initialized,
        }


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, '').lower() in ('1', 'true', 'yes')


def configure_from_environment(
    environ: Optional[Mapping[str, str]] = None,
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    setup_logging() from ACCOUNTANT_VERBOSE, ACCOUNTANT_TRACE,
    ACCOUNTANT_LOG_FILE, ACCOUNTANT_LOG_NO_CONSOLE and ACCOUNTANT_LOG_JSON.
    Explicit arguments win over the environment.
    """
    if environ is None:
        environ = os.environ

    setup_logging(
        verbose=verbose or _flag(environ, 'ACCOUNTANT_VERBOSE'),
        trace=trace or _flag(environ, 'ACCOUNTANT_TRACE'),
        log_file=log_file or environ.get('ACCOUNTANT_LOG_FILE'),
        console=not _flag(environ, 'ACCOUNTANT_LOG_NO_CONSOLE'),
        json_format=json_format or _flag(environ, 'ACCOUNTANT_LOG_JSON'),
    )


__all__ = [
    'TRACE',
    'VERBOSE',
    'FeatureArea',
    'feature_for',
    'AccountantFormatter',
    'AccountantLogger',
    'setup_logging',
    'get_logger',
    'get_logging_state',
    'configure_from_environment',
]
