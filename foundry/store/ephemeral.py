"""
foundry/store/ephemeral.py

Ephemeral keyed store with per-key TTL.

Holds every piece of cross-request state the helper needs:
  - consumed nonce hashes (replay defence)
  - rate-limit windows
  - download/upload token records
  - the shared secret (no TTL)

The host normally owns this store; MemoryStore is the in-process default.
Its contents do not survive a restart, which is why token records are also
written to sidecar files (see foundry.archive.tokens).

Every operation is atomic at the store boundary: callers never lock around
get/set pairs, they use add() (set-if-absent), pop() (get-and-delete) or
update() (read-modify-write) instead.
"""

from __future__ import annotations

import copy
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

Clock = Callable[[], float]


class EphemeralStore(ABC):
    """Interface of the keyed store consumed by the helper."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the live value for key, or None."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value; ttl None means no expiry."""

    @abstractmethod
    def add(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Store value only if key is absent. Returns True if stored."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns True if a live value was removed."""

    @abstractmethod
    def pop(self, key: str) -> Optional[Any]:
        """Remove key and return its live value, or None."""

    @abstractmethod
    def update(
        self,
        key: str,
        fn: Callable[[Optional[Any]], Any],
        ttl: Optional[float] = None,
    ) -> Any:
        """Atomically replace the value with fn(current) and return it."""


class MemoryStore(EphemeralStore):
    """Thread-safe in-memory implementation."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and now >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, now: float, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else now + ttl

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live(key, self._clock())
            return copy.deepcopy(entry[0]) if entry else None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            now = self._clock()
            self._data[key] = (copy.deepcopy(value), self._expiry(now, ttl))

    def add(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        with self._lock:
            now = self._clock()
            if self._live(key, now) is not None:
                return False
            self._data[key] = (copy.deepcopy(value), self._expiry(now, ttl))
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return False
            del self._data[key]
            return True

    def pop(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return None
            del self._data[key]
            return entry[0]

    def update(
        self,
        key: str,
        fn: Callable[[Optional[Any]], Any],
        ttl: Optional[float] = None,
    ) -> Any:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            current = copy.deepcopy(entry[0]) if entry else None
            value = fn(current)
            self._data[key] = (copy.deepcopy(value), self._expiry(now, ttl))
            return value

    def purge_expired(self) -> int:
        """Drop expired entries eagerly. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [
                k for k, (_, exp) in self._data.items()
                if exp is not None and now >= exp
            ]
            for k in expired:
                del self._data[k]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(
                1 for _, exp in self._data.values()
                if exp is None or now < exp
            )


# --- Singleton Accessor ---

_store: Optional[EphemeralStore] = None


def get_store() -> EphemeralStore:
    global _store
    if _store is None:
        _store = MemoryStore()
    return _store


def set_store(store: Optional[EphemeralStore]) -> None:
    """Swap the process-wide store (used by hosts and tests)."""
    global _store
    _store = store
