"""Time-bounded response cache in front of the workbook.

Reading and mapping a sheet is slow, so read paths keep their JSON-ready
results here for a per-key time-to-live. Payloads are stored serialized,
the way an external key/value store would hold them, which also bounds their
size: a payload whose JSON form exceeds the ceiling is not cached at all.

The cache never raises to its callers. A backend fault or a corrupt payload
is logged and reported as a miss, and a failed put is logged and skipped.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Iterable, NamedTuple, Optional, Protocol

from cachetools import TLRUCache

from . import log
from .constants import DEFAULT_MAX_PAYLOAD_CHARS


class CacheBackend(Protocol):
    """Minimal key/value store with per-key expiry."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, payload: str, ttl_seconds: float) -> None: ...

    def delete(self, key: str) -> None: ...

    def clear(self) -> None: ...


class _Stored(NamedTuple):
    payload: str
    ttl: float


def _time_to_use(_key: str, value: _Stored, now: float) -> float:
    return now + value.ttl


class MemoryBackend:
    """In-process backend on ``cachetools.TLRUCache``.

    Each item expires ``ttl`` seconds after it was stored. ``timer`` defaults
    to :func:`time.monotonic` and can be replaced to control time in tests.
    cachetools caches are not thread-safe, so every access holds a lock.
    """

    def __init__(self, *, maxsize: int = 256, timer: Callable[[], float] = time.monotonic) -> None:
        self._items: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=timer)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            stored = self._items.get(key)
        return stored.payload if stored is not None else None

    def set(self, key: str, payload: str, ttl_seconds: float) -> None:
        with self._lock:
            self._items[key] = _Stored(payload, float(ttl_seconds))

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            self._items.expire()
            return len(self._items)


class ResponseCache:
    """JSON payload cache with a size ceiling and fault-tolerant access."""

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        *,
        max_payload_chars: int = DEFAULT_MAX_PAYLOAD_CHARS,
    ) -> None:
        self.backend: CacheBackend = backend if backend is not None else MemoryBackend()
        self.max_payload_chars = max_payload_chars

    def get(self, key: str) -> Any:
        """Return the cached value for ``key``, or ``None`` on a miss.

        Cached values are never ``None`` themselves, so ``None`` always means
        absent, expired, or unreadable.
        """

        try:
            payload = self.backend.get(key)
        except Exception:
            log.warning("Cache backend read failed for '%s'", key, exc_info=True)
            return None
        if payload is None:
            return None
        try:
            return json.loads(payload)
        except ValueError:
            log.warning("Discarding unreadable cache payload for '%s'", key)
            self.invalidate(key)
            return None

    def put(self, key: str, value: Any, ttl_seconds: float) -> bool:
        """Store ``value`` for ``ttl_seconds``; return whether it was stored.

        Oversized payloads are dropped, not truncated, and any entry already
        stored under ``key`` is evicted with them.
        """

        if value is None or ttl_seconds <= 0:
            return False
        try:
            payload = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError):
            log.warning("Value for cache key '%s' is not JSON serializable; skipped", key)
            return False
        if len(payload) > self.max_payload_chars:
            log.warning(
                "Cache payload for '%s' is %d chars (limit %d); not cached",
                key,
                len(payload),
                self.max_payload_chars,
            )
            self.invalidate(key)
            return False
        try:
            self.backend.set(key, payload, ttl_seconds)
        except Exception:
            log.warning("Cache backend write failed for '%s'", key, exc_info=True)
            return False
        return True

    def invalidate(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception:
            log.warning("Cache backend delete failed for '%s'", key, exc_info=True)

    def invalidate_all(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        for key in keys:
            self.invalidate(key)
        log.debug("Invalidated cache keys: %s", ", ".join(keys))

    def clear(self) -> None:
        try:
            self.backend.clear()
        except Exception:
            log.warning("Cache backend clear failed", exc_info=True)

    def get_or_load(
        self,
        key: str,
        ttl_seconds: float,
        loader: Callable[[], Any],
        *,
        nocache: bool = False,
    ) -> Any:
        """Read-through helper: serve ``key`` from cache or call ``loader``.

        With ``nocache`` the lookup is skipped, but the fresh result still
        replaces the cached entry. Loader exceptions propagate.
        """

        if not nocache:
            cached = self.get(key)
            if cached is not None:
                log.debug("Cache hit for '%s'", key)
                return cached
        log.debug("Cache miss for '%s'", key)
        value = loader()
        self.put(key, value, ttl_seconds)
        return value
