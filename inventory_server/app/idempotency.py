"""
Idempotency cache for sale recording.

A client that retries POST /api/sales with the same Idempotency-Key gets the
response produced by the first successful attempt instead of a second sale.

The default store is process-local. Retries that land on a different instance
are not deduplicated, and two requests racing on the same key before the first
one finishes both run. Deployments that need cross-instance guarantees swap in a
shared key-value store implementing IdempotencyStore with the same TTL and
eviction contract (see get_idempotency_store).
"""
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from .config import settings


class IdempotencyStore(ABC):
    @abstractmethod
    def lookup(self, key: str) -> Optional[dict]:
        """Return the stored response body, or None when absent or expired."""

    @abstractmethod
    def store(self, key: str, body: dict) -> None:
        """Remember body under key for the configured TTL."""

    @abstractmethod
    def evict(self, key: str) -> None:
        """Forget key if present."""


@dataclass
class _Entry:
    body: dict
    expires_at: float


class InMemoryIdempotencyStore(IdempotencyStore):
    def __init__(
        self,
        ttl_seconds: float = 5 * 60,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None

    def lookup(self, key: str) -> Optional[dict]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.body

    def store(self, key: str, body: dict) -> None:
        with self._lock:
            now = self._clock()
            self._prune(now)
            # Re-storing a key counts as a fresh insertion.
            self._entries.pop(key, None)
            # Insertion-order eviction, not recency of use.
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = _Entry(body=body, expires_at=now + self.ttl_seconds)

    def evict(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]


_store: IdempotencyStore = InMemoryIdempotencyStore(
    ttl_seconds=settings.idempotency_ttl_seconds,
    max_entries=settings.idempotency_max_entries,
)


def get_idempotency_store() -> IdempotencyStore:
    # FastAPI dependency; override via app.dependency_overrides to plug in a shared store.
    return _store
