"""
Sync Feed Consumer

Consumes the push feed of Calico resource updates and applies it to the
ResourceCache. The feed is produced by a sync sidecar (or any process
speaking the same format) as newline-delimited JSON, one event per line:

    {"type": "workload", "action": "upsert", "key": "...", "value": {...}}
    {"type": "workload", "action": "delete", "key": "..."}
    {"type": "policy", "action": "upsert", "key": "default.allow-dns", "name": "..."}
    {"type": "policy", "action": "delete", "key": "default.allow-dns"}
    {"type": "status", "status": "in-sync"}

Workload values follow the WorkloadEndpoint spec field names: pod,
namespace, labels, interfaceName, ipNetworks, node.

The consumer is passive: when the feed ends it waits and reopens it, but
it does not drive the producer's own resync or reconnect behaviour.
"""

import io
import json
import sys
import threading
from contextlib import contextmanager
from typing import IO, Iterator, Optional, Union

from ..constants import Timeouts
from ..exceptions import FeedDecodeError
from ..logging_config import get_logger
from ..utils.error_handling import ErrorCategory, handle_error
from .cache import ResourceCache
from .models import ResourceKind, SyncStatus, Update, UpdateAction, WorkloadIdentity

logger = get_logger(__name__)

FeedEvent = Union[Update, SyncStatus]


def decode_event(line: str) -> FeedEvent:
    """
    Decode one feed line.

    Raises:
        FeedDecodeError: if the line is not a well-formed event
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise FeedDecodeError(f"Invalid JSON in feed event: {e}") from e

    if not isinstance(data, dict):
        raise FeedDecodeError(f"Feed event is not an object: {line[:200]}")

    event_type = data.get('type')
    if event_type == 'status':
        try:
            return SyncStatus(data.get('status'))
        except ValueError:
            raise FeedDecodeError(f"Unknown sync status: {data.get('status')!r}") from None

    try:
        kind = ResourceKind(event_type)
        action = UpdateAction(data.get('action'))
    except ValueError:
        raise FeedDecodeError(
            f"Unknown feed event {event_type!r}/{data.get('action')!r}"
        ) from None

    key = data.get('key')
    if not isinstance(key, str) or not key:
        raise FeedDecodeError(f"Feed event without a key: {line[:200]}")

    if kind is ResourceKind.POLICY:
        if action is UpdateAction.DELETE:
            return Update.delete_policy(key)
        name = data.get('name')
        if name is not None and not isinstance(name, str):
            raise FeedDecodeError(f"Policy {key}: name is not a string")
        return Update.upsert_policy(key, name)

    if action is UpdateAction.DELETE:
        return Update.delete_workload(key)

    value = data.get('value')
    if not isinstance(value, dict):
        raise FeedDecodeError(f"Workload upsert without a value: {key}")
    return Update.upsert_workload(WorkloadIdentity.from_dict(key, value))


class JsonLinesFeed:
    """
    Newline-delimited JSON feed read from a file, FIFO, or stdin ("-").

    Malformed lines are logged and skipped.
    """

    def __init__(self, source: Union[str, IO[str]] = "-"):
        self.source = source

    @property
    def name(self) -> str:
        if isinstance(self.source, str):
            return "stdin" if self.source == "-" else self.source
        return getattr(self.source, 'name', repr(self.source))

    @contextmanager
    def _open(self) -> Iterator[IO[str]]:
        if not isinstance(self.source, str):
            yield self.source
        elif self.source == "-":
            if isinstance(sys.stdin, io.TextIOWrapper):
                sys.stdin.reconfigure(errors='replace')
            yield sys.stdin
        else:
            # Undecodable bytes spoil one event, not the whole feed
            with open(self.source, 'r', encoding='utf-8', errors='replace') as f:
                yield f

    def events(self) -> Iterator[FeedEvent]:
        """Yield events until the feed reaches end of stream."""
        with self._open() as stream:
            for line in stream:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield decode_event(line)
                except FeedDecodeError as e:
                    handle_error(e, "decode feed event", ErrorCategory.WATCH)


class SyncFeedConsumer:
    """
    Background task applying feed events to a ResourceCache.

    Runs in a daemon thread and never waits on scrape activity.
    """

    def __init__(
        self,
        cache: ResourceCache,
        feed: JsonLinesFeed,
        retry_interval: float = Timeouts.FEED_RETRY_INTERVAL,
    ):
        self.cache = cache
        self.feed = feed
        self.retry_interval = retry_interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.events_applied = 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="sync-feed-consumer",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Consuming Calico sync feed from {self.feed.name}")

    def stop(self, timeout: float = Timeouts.THREAD_JOIN_DEFAULT) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def apply(self, event: FeedEvent) -> None:
        if isinstance(event, SyncStatus):
            self.cache.on_status_updated(event)
        else:
            self.cache.on_updates((event,))
        self.events_applied += 1

    def consume_once(self) -> None:
        """Apply every event until the feed ends or stop() is called."""
        for event in self.feed.events():
            self.apply(event)
            if self._stop_event.is_set():
                return

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.consume_once()
                if not self._stop_event.is_set():
                    logger.warning(f"Sync feed {self.feed.name} ended, reopening")
            except OSError as e:
                handle_error(
                    e,
                    "read sync feed",
                    ErrorCategory.WATCH,
                    additional_context={'feed': self.feed.name},
                )
            except Exception as e:
                handle_error(
                    e,
                    "consume sync feed",
                    ErrorCategory.WATCH,
                    additional_context={'feed': self.feed.name},
                )
            self._stop_event.wait(self.retry_interval)
