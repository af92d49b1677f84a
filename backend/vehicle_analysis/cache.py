"""
Result cache - in-process LRU of validated analysis results.

Keyed by fingerprint.cache_key. Only successful, validated results are ever
stored. Concurrent misses on the same key share one computation: the first
caller runs the factory, the rest wait on its Future.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from typing import Any, Callable

from vehicle_analysis.config import CACHE_MAX_ENTRIES

log = logging.getLogger(__name__)


class ResultCache:
    """Thread-safe LRU mapping of cache key to result. max_entries=0 means unbounded."""

    def __init__(self, max_entries: int = CACHE_MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self._in_flight: dict[str, Future] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: str) -> Any | None:
        with self._lock:
            if key not in self._entries:
                return None
            self._entries.move_to_end(key)
            return self._entries[key]

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._store(key, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_create(self, key: str, factory: Callable[[], Any]) -> tuple[Any, bool]:
        """
        Returns (value, from_cache).

        from_cache is True for a stored hit and for a caller that waited on
        another caller's in-flight computation. A factory exception reaches
        every waiter and nothing is stored.
        """
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                log.debug("cache hit %s", key)
                return self._entries[key], True

            pending = self._in_flight.get(key)
            if pending is None:
                pending = Future()
                self._in_flight[key] = pending
                owner = True
            else:
                owner = False

        if not owner:
            log.debug("cache collapse %s", key)
            return pending.result(), True

        log.debug("cache miss %s", key)
        try:
            value = factory()
        except BaseException as e:
            with self._lock:
                del self._in_flight[key]
            pending.set_exception(e)
            raise

        with self._lock:
            self._store(key, value)
            del self._in_flight[key]
        pending.set_result(value)
        return value, False

    def _store(self, key: str, value: Any) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        if self.max_entries > 0:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                log.debug("cache evict %s", evicted)
