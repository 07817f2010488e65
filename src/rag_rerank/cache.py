from __future__ import annotations

import base64
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Iterable

from .schema import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600.0
MAX_CACHE_SIZE = 1000


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_cache_key(query: str, document_ids: Iterable[str], model: str, top_k: int) -> str:
    """Build a deterministic key from the query, ordered document ids, model and topK."""
    return f"{_b64(query)}_{_b64(','.join(document_ids))}_{model}_{top_k}"


class ResultCache:
    """Bounded TTL cache of re-ranking results shared across requests.

    Expired entries are dropped when read. When full, the oldest inserted
    entry is evicted before a new one is stored.
    """

    def __init__(
        self,
        max_size: int = MAX_CACHE_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.timestamp > entry.ttl:
                del self._entries[key]
                return None
            return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            if len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cache entry %s", evicted)
            self._entries[key] = entry

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def utilization_percent(self) -> float:
        return self.size / self.max_size * 100 if self.max_size else 0.0

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
