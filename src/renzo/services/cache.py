"""In-process TTL cache for read endpoints, with prefix invalidation.

Keys are tuples. Invalidating a key drops every entry whose key starts with
it, so ``("credit-balance",)`` clears the balance of every user.
"""

import time
from typing import Any, Callable, Hashable

import structlog

logger = structlog.get_logger(__name__)

CacheKey = tuple[Hashable, ...]


def project_images_key(project_id: str) -> CacheKey:
    return ("images", "project", project_id)


def credit_balance_key(user_id: str) -> CacheKey:
    return ("credit-balance", user_id)


def credit_stats_key(user_id: str) -> CacheKey:
    return ("credit-stats", user_id)


def credit_transactions_key(user_id: str) -> CacheKey:
    return ("credit-transactions", user_id)


def credit_keys(user_id: str) -> list[CacheKey]:
    """Every cached view derived from a user's ledger."""
    return [
        credit_balance_key(user_id),
        credit_stats_key(user_id),
        credit_transactions_key(user_id),
    ]


class QueryCache:
    """Dictionary cache with per-entry expiry.

    Expired entries are swept on write at most once per TTL period, and the
    oldest entries are evicted once ``max_entries`` is reached.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 10_000,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, Any]] = {}
        self._next_sweep = clock() + ttl_seconds

    def get(self, key: CacheKey) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: CacheKey, value: Any) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            # Dicts keep insertion order, so the first key is the oldest write
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (now + self.ttl_seconds, value)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self.ttl_seconds
        if expired:
            logger.debug("cache.swept", removed=len(expired))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return self.get(key) is not None

    def invalidate(self, *keys: CacheKey) -> int:
        """Drop entries matching any of the given key prefixes.

        Returns:
            Number of entries removed
        """
        stale = [
            cached
            for cached in self._entries
            if any(cached[: len(prefix)] == prefix for prefix in keys)
        ]
        for cached in stale:
            del self._entries[cached]
        if stale:
            logger.debug("cache.invalidated", keys=[list(k) for k in keys], removed=len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
