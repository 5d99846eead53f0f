"""
Result cache.

In-memory TTL store for ranking and combination results. Entries remember
which transactions they describe so attaching or detaching a document can
drop exactly the affected results.

Usage:
    cache = ResultCache.from_config(config.cache)

    key = cache.single_key(transaction_id, unconnected_only=False)
    matches = cache.get(key)
    if matches is None:
        matches = engine.rank(transaction_id)
        cache.put(key, matches, cache.single_ttl, {transaction_id})
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import CacheConfig

logger = logging.getLogger(__name__)

CacheKey = tuple[Any, ...]

SINGLE = "single"
COMBINATIONS = "combinations"
BATCH = "batch"


@dataclass
class CacheEntry:
    """One cached result with its expiry time."""

    value: Any
    expires_at: float
    transaction_ids: frozenset[int]
    unconnected_only: bool


class ResultCache:
    """Thread-safe TTL cache keyed by transaction.

    A disabled cache stores nothing and always misses.
    """

    def __init__(
        self,
        single_ttl: float = 30 * 60,
        combination_ttl: float = 20 * 60,
        batch_ttl: float = 45 * 60,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize ResultCache.

        Args:
            single_ttl: Seconds a single-document ranking stays valid.
            combination_ttl: Seconds a combination search stays valid.
            batch_ttl: Seconds a batch ranking stays valid.
            enabled: When False every lookup misses and nothing is stored.
            clock: Monotonic time source (seconds).
        """
        self.single_ttl = single_ttl
        self.combination_ttl = combination_ttl
        self.batch_ttl = batch_ttl
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._by_transaction: dict[int, set[CacheKey]] = {}
        self._stats = {"hits": 0, "misses": 0, "invalidations": 0}

    @classmethod
    def from_config(cls, config: CacheConfig) -> ResultCache:
        return cls(
            single_ttl=config.single_ttl_seconds,
            combination_ttl=config.combination_ttl_seconds,
            batch_ttl=config.batch_ttl_seconds,
            enabled=config.enabled,
        )

    @staticmethod
    def single_key(transaction_id: int, unconnected_only: bool) -> CacheKey:
        return (SINGLE, transaction_id, unconnected_only)

    @staticmethod
    def combination_key(transaction_id: int, unconnected_only: bool) -> CacheKey:
        return (COMBINATIONS, transaction_id, unconnected_only)

    @staticmethod
    def batch_key(
        transaction_ids: Iterable[int],
        document_ids: Iterable[int],
        unconnected_only: bool,
    ) -> CacheKey:
        """Key for a batch ranking: hash of the transaction and document id sets."""
        tx_part = ",".join(str(i) for i in sorted(set(transaction_ids)))
        doc_part = ",".join(str(i) for i in sorted(set(document_ids)))
        digest = hashlib.sha256(f"{tx_part}|{doc_part}".encode()).hexdigest()
        return (BATCH, digest, unconnected_only)

    def get(self, key: CacheKey) -> Any | None:
        """Cached value, or None on a miss or expired entry."""
        if not self.enabled:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None

            if self._clock() >= entry.expires_at:
                self._remove(key)
                self._stats["misses"] += 1
                return None

            self._stats["hits"] += 1
            return entry.value

    def put(
        self,
        key: CacheKey,
        value: Any,
        ttl: float,
        transaction_ids: Iterable[int],
    ) -> None:
        """Store a value that describes the given transactions."""
        if not self.enabled:
            return

        ids = frozenset(transaction_ids)
        with self._lock:
            if key in self._entries:
                self._remove(key)
            self._entries[key] = CacheEntry(
                value=value,
                expires_at=self._clock() + ttl,
                transaction_ids=ids,
                unconnected_only=bool(key[-1]),
            )
            for transaction_id in ids:
                self._by_transaction.setdefault(transaction_id, set()).add(key)

    def invalidate_transaction(self, transaction_id: int) -> int:
        """Drop every entry keyed by or containing a transaction.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            keys = list(self._by_transaction.get(transaction_id, ()))
            for key in keys:
                self._remove(key)
            if keys:
                self._stats["invalidations"] += len(keys)
        if keys:
            logger.debug("Invalidated %d cache entries for transaction %s", len(keys), transaction_id)
        return len(keys)

    def invalidate_unconnected(self) -> int:
        """Drop every entry computed against the unconnected-only pool.

        Attaching or detaching a document changes that pool for all
        transactions, not only the one being edited.
        """
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.unconnected_only]
            for key in keys:
                self._remove(key)
            if keys:
                self._stats["invalidations"] += len(keys)
        return len(keys)

    def clear(self) -> None:
        """Clear all cached entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._by_transaction.clear()
            self._stats = {"hits": 0, "misses": 0, "invalidations": 0}

    @property
    def stats(self) -> dict[str, int]:
        """Hit/miss/invalidation counts plus the current size."""
        with self._lock:
            return {**self._stats, "size": len(self._entries)}

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def _remove(self, key: CacheKey) -> None:
        # Caller holds the lock
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for transaction_id in entry.transaction_ids:
            keys = self._by_transaction.get(transaction_id)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._by_transaction[transaction_id]
