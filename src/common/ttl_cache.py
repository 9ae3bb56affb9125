#!/usr/bin/env python3
"""
Process-local key/value cache with per entry time-to-live.

The cache is advisory: it only bounds the volume of remote reads. Any
decision that must be correct (such as refusing a second task start)
is taken on fresh remote data.

A sweeper task runs in the background and drops expired entries. Reads
never return an expired entry, even if the sweeper hasn't run yet.

```
cache = TTLCache(sweep_interval=60.0)
cache.set("active_task:SAGAR", None, ttl=5.0)
value = cache.get("active_task:SAGAR")  # None, cached "no active task"
value = cache.get("unknown")  # MISSING
cache.close()
```

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from dataclasses import dataclass
from threading import RLock, Thread, Event
from typing import Any, Callable, Final
import logging
import time

logger = logging.getLogger(__name__)

# Default entry time-to-live (seconds)
DEFAULT_TTL = 30.0
# Default delay between two sweeps of expired entries (seconds)
DEFAULT_SWEEP_INTERVAL = 60.0


class _Missing:
    """Type of the `MISSING` sentinel."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


# Returned by `TTLCache.get()` when no valid entry exists. It differs from a
# cached `None` value.
MISSING: Final = _Missing()


def active_task_key(employee: str) -> str:
    return f"active_task:{employee}"


@dataclass
class _CacheEntry:
    value: Any
    created_at: float
    expires_at: float


class TTLCache:
    """
    Thread-safe cache with expiring entries and a background sweeper.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            default_ttl (float): Time-to-live used when `set()` gets none.
            sweep_interval (float): Delay between two sweeps. Set to 0 to
                disable the background sweeper.
            clock (Callable[[], float]): Time source in seconds.
        """
        self._default_ttl = default_ttl
        self._sweep_interval = sweep_interval
        self._clock = clock

        self._entries: dict[str, _CacheEntry] = {}
        self._lock = RLock()

        self._sweeper_stop = Event()
        self._sweeper: Thread | None = None
        if sweep_interval > 0:
            self._sweeper = Thread(
                target=self.__sweeper_task, name="TTLCacheSweeper", daemon=True
            )
            self._sweeper.start()

    def set(self, key: str, value: Any, ttl: float | None = None):
        """
        Store a value, replacing any existing entry.
        """
        if ttl is None:
            ttl = self._default_ttl

        now = self._clock()
        with self._lock:
            self._entries[key] = _CacheEntry(value, now, now + ttl)

        logger.debug(f"Cache set '{key}' (ttl={ttl:.1f}s).")

    def get(self, key: str) -> Any:
        """
        Returns:
            Any: The cached value or `MISSING` if no entry exists or the
                entry expired.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"Cache miss '{key}'.")
                return MISSING

            now = self._clock()
            if now >= entry.expires_at:
                del self._entries[key]
                logger.debug(f"Cache expired '{key}'.")
                return MISSING

        logger.debug(
            f"Cache hit '{key}' (age={now - entry.created_at:.1f}s, "
            f"remaining={entry.expires_at - now:.1f}s)."
        )
        return entry.value

    def has(self, key: str) -> bool:
        return self.get(key) is not MISSING

    def invalidate(self, key: str):
        with self._lock:
            self._entries.pop(key, None)
        logger.debug(f"Cache invalidated '{key}'.")

    def invalidate_prefix(self, prefix: str) -> int:
        """
        Drop all entries whose key starts with `prefix`.

        Returns:
            int: Number of dropped entries.
        """
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]

        logger.debug(f"Cache invalidated {len(keys)} entries matching '{prefix}'.")
        return len(keys)

    def clear(self):
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
        logger.debug(f"Cache cleared ({size} entries).")

    def stats(self) -> dict[str, Any]:
        """
        Returns:
            dict[str, Any]: Number of entries and age / remaining time of
                each of them.
        """
        now = self._clock()
        with self._lock:
            return {
                "size": len(self._entries),
                "entries": [
                    {
                        "key": key,
                        "age": now - entry.created_at,
                        "ttl": entry.expires_at - now,
                    }
                    for key, entry in self._entries.items()
                ],
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def sweep(self) -> int:
        """
        Drop expired entries.

        Returns:
            int: Number of dropped entries.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries.")
        return len(expired)

    def __sweeper_task(self):
        """
        Sweeper task. Wakes up every `sweep_interval` and drops expired
        entries until the cache is closed.
        """
        logger.debug("Cache sweeper task started.")

        while not self._sweeper_stop.wait(self._sweep_interval):
            self.sweep()

        logger.debug("Cache sweeper task terminated.")

    def close(self, wait: bool = True):
        """
        Stop the sweeper and drop all entries. The cache can still be used
        afterwards, but expired entries are only dropped on access.
        """
        self._sweeper_stop.set()
        if self._sweeper is not None:
            self._sweeper.join(10.0 if wait else 0.0)
            self._sweeper = None
        self.clear()
