"""
Process-wide time-bounded cache for the failed-runs feed.

All reconciliation passes share one instance (held on the application
state). Within the TTL every caller gets the cached list; when it expires
exactly one caller refreshes while the others wait on the lock and then reuse
the outcome. A failed refresh keeps serving the last good value, and callers
that were already queued behind it get that value instead of retrying.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from callconsole.shared.logging import get_logger
from callconsole.telephony.interface import PlatformError

logger = get_logger(__name__)

T = TypeVar("T")


class RefreshingCache(Generic[T]):
    """Single value with an expiry, refreshed on demand."""

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._value: T | None = None
        self._fetched_at: float | None = None
        # Bumped after every refresh attempt, successful or not
        self._attempts = 0

    @property
    def value(self) -> T | None:
        """Last good value, fresh or not."""
        return self._value

    def _is_fresh(self) -> bool:
        return self._fetched_at is not None and (self._clock() - self._fetched_at) < self._ttl

    async def get(self, refresh: Callable[[], Awaitable[T]]) -> T | None:
        """Return the cached value, calling `refresh` when it has expired.

        Returns:
            The fresh value, the last good value when the refresh failed, or
            None when no refresh has ever succeeded.
        """
        if self._is_fresh():
            return self._value

        seen_attempts = self._attempts
        async with self._lock:
            # Another caller refreshed (or failed to) while we queued for the lock
            if self._is_fresh() or self._attempts != seen_attempts:
                return self._value
            try:
                value = await refresh()
            except PlatformError as e:
                self._attempts += 1
                logger.warning(
                    "Cache refresh failed; serving last good value",
                    extra={
                        "error": e.message,
                        "error_code": e.error_code,
                        "has_stale_value": self._value is not None,
                    },
                )
                return self._value
            self._attempts += 1
            self._value = value
            self._fetched_at = self._clock()
            return value

    def reset(self) -> None:
        """Forget the cached value."""
        self._value = None
        self._fetched_at = None
