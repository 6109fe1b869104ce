"""Caching helpers: JSON files on disk and a stale-while-revalidate memory cache.

File caches live under ``CACHE_DIR`` (see :mod:`fpl_live.paths`) and survive
restarts; they are the last-resort fallback when upstream is down at
startup.  :class:`StaleWhileRevalidateCache` serves every poll and every
HTTP request.
"""

from __future__ import annotations

import json
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from fpl_live.config import cache_cfg
from fpl_live.logging_config import get_logger
from fpl_live.paths import CACHE_DIR

logger = get_logger(__name__)


def cache_path(name: str) -> Path:
    """Return the full path for a named cache file inside ``CACHE_DIR``."""
    return CACHE_DIR / name


def ensure_cache_dir() -> None:
    """Create ``CACHE_DIR`` if it does not exist."""
    CACHE_DIR.mkdir(parents=True, exist_ok=True)


# ── JSON helpers ────────────────────────────────────────────────────────

def read_json_cache(path: Path) -> dict | list | None:
    """Read a JSON cache file, returning ``None`` if missing or unreadable."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def write_json_cache(path: Path, data: dict | list) -> None:
    """Write *data* as JSON to *path*, creating ``CACHE_DIR`` first."""
    ensure_cache_dir()
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")


# ── Stale-while-revalidate ──────────────────────────────────────────────

@dataclass
class _Entry:
    value: Any
    stored_at: float


class StaleWhileRevalidateCache:
    """In-memory cache with per-key in-flight deduplication.

    * fresh hit: returned synchronously;
    * stale hit: the stale value is returned immediately and at most one
      background refresh per key is submitted;
    * miss: the caller waits for the load, joining an in-flight one if any.

    Loader exceptions on a miss propagate to every waiter.  A failed
    background refresh is logged and the stale value is kept.

    Parameters
    ----------
    max_workers:
        Background refresh threads.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_workers: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or cache_cfg.refresh_workers,
            thread_name_prefix="swr-refresh",
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._inflight: dict[str, Future] = {}

    def _load(self, key: str, loader: Callable[[], Any]) -> Any:
        try:
            value = loader()
        except Exception:
            with self._lock:
                self._inflight.pop(key, None)
            raise
        # Store before releasing the in-flight marker so no caller sees neither
        with self._lock:
            self._entries[key] = _Entry(value, self._clock())
            self._inflight.pop(key, None)
        return value

    def _submit(self, key: str, loader: Callable[[], Any]) -> Future:
        """Return the in-flight future for *key*, starting one if needed."""
        with self._lock:
            future = self._inflight.get(key)
            if future is None:
                future = self._executor.submit(self._load, key, loader)
                self._inflight[key] = future
                future.add_done_callback(lambda f, k=key: self._log_failure(k, f))
            return future

    @staticmethod
    def _log_failure(key: str, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning("Refresh of %s failed: %s", key, exc)

    def get(self, key: str, loader: Callable[[], Any], ttl: float) -> Any:
        """Cached value for *key*, loading or revalidating via *loader*."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None:
            if self._clock() - entry.stored_at < ttl:
                return entry.value
            self._submit(key, loader)
            return entry.value
        return self._submit(key, loader).result()

    def refresh(self, key: str, loader: Callable[[], Any]) -> Any:
        """Load *key* now (joining an in-flight load) and return the new value."""
        return self._submit(key, loader).result()

    def peek(self, key: str) -> Any | None:
        """Last stored value for *key* regardless of age, or ``None``."""
        with self._lock:
            entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._inflight

    def invalidate(self, key: str | None = None) -> None:
        """Drop *key* (or everything) from the cache."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
