"""Counter store interfaces.

The engine depends on this abstraction (not a concrete implementation) so the
storage backend can be swapped between an in-process map and a shared store
(e.g., Redis) without touching the admission logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CounterSnapshot:
    """State of one key's fixed window as seen by a single store operation.

    Attributes:
        count: Requests recorded in the current window (>= 0).
        created_at: UNIX epoch seconds at which the current window started.
    """

    count: int
    created_at: float


class AbstractCounterStore(ABC):
    """Interface for fixed-window counter stores."""

    @abstractmethod
    def increment_or_create(
        self,
        key: str,
        now: float,
        refresh_interval: float,
        *,
        max_count: int | None = None,
    ) -> CounterSnapshot:
        """Atomically record one request for ``key``.

        When no entry exists, or ``now - created_at >= refresh_interval``, the
        entry is (re)created with ``count = 1`` and ``created_at = now``.
        Otherwise ``count`` is incremented and ``created_at`` is preserved.
        The check and the mutation must happen in one atomic step.

        Args:
            key: Derived rate limit key.
            now: Current UNIX time in seconds.
            refresh_interval: Window length in seconds.
            max_count: Optional ceiling; the count never grows past it.

        Returns:
            CounterSnapshot after the mutation.

        Raises:
            StoreUnavailableError: If the store cannot complete the operation.
        """
        raise NotImplementedError

    @abstractmethod
    def peek(self, key: str) -> CounterSnapshot | None:
        """Read the current entry for ``key`` without mutating it.

        Intended for diagnostics; the admission path never depends on it.

        Returns:
            CounterSnapshot, or None when the key has no entry.

        Raises:
            StoreUnavailableError: If the store cannot be read.
        """
        raise NotImplementedError
