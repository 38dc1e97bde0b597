"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: one lock guards the whole map, held only for the
  read-modify-write of a single entry.
- Expired entries are garbage: they are swept opportunistically and the map
  can be capped with ``max_entries``.
- A live window is never evicted. When the map is full and a sweep frees
  nothing, new keys are refused with ``StoreUnavailableError`` and the
  caller's failure policy decides.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot
from gatekeeper.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class CounterEntry:
    """Mutable window state for one key. Owned exclusively by the store."""

    count: int
    created_at: float
    expires_at: float

    def snapshot(self) -> CounterSnapshot:
        return CounterSnapshot(count=self.count, created_at=self.created_at)


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store backed by a lock-guarded ordered dict.

    Entries are kept in window-start order (a reset moves the key to the end).
    Only entries whose window has ended are ever removed.
    """

    def __init__(
        self,
        *,
        max_entries: int | None = None,
        sweep_interval: float = 60.0,
    ) -> None:
        """Initialize the store.

        Args:
            max_entries: Maximum number of keys held (None for unlimited).
            sweep_interval: Minimum seconds between sweeps of expired entries.

        Raises:
            ValueError: If max_entries or sweep_interval are invalid.
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if sweep_interval < 0:
            raise ValueError("sweep_interval must be >= 0")

        self._max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, CounterEntry] = OrderedDict()
        self._last_sweep: float | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryCounterStore(max_entries={self._max_entries}, "
            f"sweep_interval={self._sweep_interval}, size={len(self._entries)})"
        )

    def increment_or_create(
        self,
        key: str,
        now: float,
        refresh_interval: float,
        *,
        max_count: int | None = None,
    ) -> CounterSnapshot:
        """Atomically count one request for ``key``.

        Raises:
            StoreUnavailableError: If ``key`` is new and the store is full of
                live windows.
        """
        with self._lock:
            self._maybe_sweep_locked(now)

            entry = self._entries.get(key)
            if entry is None:
                self._ensure_capacity_locked(now)
            if entry is None or now - entry.created_at >= refresh_interval:
                entry = CounterEntry(count=1, created_at=now, expires_at=now + refresh_interval)
                self._entries[key] = entry
                self._entries.move_to_end(key)
            else:
                # A key shared by routes with different windows lives for the longest
                entry.expires_at = max(entry.expires_at, entry.created_at + refresh_interval)
                if max_count is None or entry.count < max_count:
                    entry.count += 1

            return entry.snapshot()

    def peek(self, key: str) -> CounterSnapshot | None:
        with self._lock:
            entry = self._entries.get(key)
            return entry.snapshot() if entry else None

    def clear(self) -> None:
        """Drop every entry."""

        with self._lock:
            self._entries.clear()
            self._last_sweep = None

    def _maybe_sweep_locked(self, now: float) -> None:
        if self._last_sweep is not None and now - self._last_sweep < self._sweep_interval:
            return
        self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> None:
        self._last_sweep = now

        expired_keys = [k for k, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            logger.debug(
                "counter_store.sweep",
                extra={"evicted": len(expired_keys), "size": len(self._entries)},
            )

    def _ensure_capacity_locked(self, now: float) -> None:
        if self._max_entries is None or len(self._entries) < self._max_entries:
            return

        # Forced sweep, regardless of sweep_interval
        self._sweep_locked(now)
        if len(self._entries) < self._max_entries:
            return

        logger.warning(
            "counter_store.capacity_exceeded",
            extra={"size": len(self._entries), "max_entries": self._max_entries},
        )
        raise StoreUnavailableError(
            code="store_capacity_exceeded",
            message="Rate limit store is full",
            details={
                "backend": "memory",
                "setting": "memory_max_entries",
                "actual_value": self._max_entries,
            },
        )
