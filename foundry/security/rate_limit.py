"""
foundry/security/rate_limit.py

Fixed-window request throttle, consulted before authentication so that
unauthenticated floods are rejected without touching the HMAC path.

Each client identifier gets one window record in the ephemeral store:
    ratelimit:<sha256(identifier)> -> {"start": <epoch>, "count": <n>}
When a window is older than `window` seconds it is replaced by a fresh one
(hard reset, no gradual decay).
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Callable, Optional

from foundry.base.config import FoundryConfig, get_config
from foundry.errors import ErrorCode, FoundryError
from foundry.store.ephemeral import EphemeralStore, get_store

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit:"


class RateLimiter:
    def __init__(
        self,
        max_requests: Optional[int] = None,
        window: Optional[int] = None,
        store: Optional[EphemeralStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._max_requests = max_requests
        self._window = window
        self._store = store
        self.clock = clock

    def _config(self) -> FoundryConfig:
        return get_config()

    @property
    def max_requests(self) -> int:
        if self._max_requests is not None:
            return self._max_requests
        return self._config().security.rate_limit_requests

    @property
    def window(self) -> int:
        if self._window is not None:
            return self._window
        return self._config().security.rate_limit_window

    @property
    def store(self) -> EphemeralStore:
        return self._store or get_store()

    @staticmethod
    def key_for(identifier: str) -> str:
        return KEY_PREFIX + hashlib.sha256(identifier.encode("utf-8")).hexdigest()

    def hit(self, identifier: str) -> dict:
        """Count one request and return the resulting window record."""
        now = self.clock()
        window = self.window

        def _advance(current: Optional[dict]) -> dict:
            if not current or now - current.get("start", 0) >= window:
                return {"start": now, "count": 1}
            return {"start": current["start"], "count": current["count"] + 1}

        return self.store.update(self.key_for(identifier), _advance, ttl=window)

    def is_allowed(self, identifier: str) -> bool:
        return self.hit(identifier)["count"] <= self.max_requests

    def check(self, identifier: str) -> None:
        """Raise RATE_LIMITED when identifier has exhausted its window."""
        record = self.hit(identifier)
        if record["count"] > self.max_requests:
            retry_after = max(0, int(record["start"] + self.window - self.clock()))
            logger.warning(f"[RateLimit] Client over limit ({record['count']}/{self.max_requests})")
            raise FoundryError(
                ErrorCode.RATE_LIMITED,
                "Rate limit exceeded",
                details={"retry_after": retry_after, "limit": self.max_requests, "window": self.window},
            )


# ---------------------------------------------------------------------------
# Lazy-initialized limiter (NO import-time config access)
# ---------------------------------------------------------------------------

_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def set_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    global _rate_limiter
    _rate_limiter = limiter
