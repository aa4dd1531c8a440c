"""
foundry/security/authenticator.py

Verifies the signed header set carried by every request.

Order of checks (first failure wins, nothing is recorded on failure):
  1. required headers present                 -> AUTH_MISSING
  2. body hash / nonce well-formed            -> AUTH_INVALID
  3. timestamp within the skew window         -> AUTH_EXPIRED
  4. nonce not consumed yet                   -> AUTH_REPLAY
  5. HMAC matches                             -> AUTH_FAILED
  6. declared body hash matches the body      -> AUTH_INVALID
Only after all six pass is the nonce hash recorded (TTL nonce_ttl).
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from foundry.base.config import FoundryConfig, get_config
from foundry.errors import ErrorCode, FoundryError
from foundry.security.signing import (
    QueryInput,
    SharedSecret,
    body_hash,
    build_base_string,
    canonical_query,
    get_shared_secret,
    sign,
    signatures_match,
)
from foundry.store.ephemeral import EphemeralStore, get_store

logger = logging.getLogger(__name__)

HEADER_SIGNATURE = "x-foundry-signature"
HEADER_TIMESTAMP = "x-foundry-timestamp"
HEADER_NONCE = "x-foundry-nonce"
HEADER_BODY_HASH = "x-foundry-body-hash"
HEADER_REQUEST_ID = "x-foundry-request-id"

REQUIRED_HEADERS = (HEADER_SIGNATURE, HEADER_TIMESTAMP, HEADER_NONCE, HEADER_BODY_HASH)

_BODY_HASH_RE = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)
_NONCE_RE = re.compile(r"^[a-f0-9]{16,128}$", re.IGNORECASE)

NONCE_KEY_PREFIX = "nonce:"


@dataclass(frozen=True)
class AuthContext:
    """What downstream layers learn about an authenticated request."""
    request_id: str
    timestamp: int
    nonce_hash: str


def nonce_key(nonce: str) -> str:
    return NONCE_KEY_PREFIX + hashlib.sha256(nonce.lower().encode("utf-8")).hexdigest()


def _parse_timestamp(raw: str) -> int:
    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return 0


class RequestAuthenticator:
    """Signature, freshness and replay verification for inbound requests."""

    def __init__(
        self,
        config: Optional[FoundryConfig] = None,
        store: Optional[EphemeralStore] = None,
        secret: Optional[SharedSecret] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._store = store
        self._secret = secret
        self.clock = clock

    @property
    def config(self) -> FoundryConfig:
        return self._config or get_config()

    @property
    def store(self) -> EphemeralStore:
        return self._store or get_store()

    @property
    def secret(self) -> SharedSecret:
        return self._secret or get_shared_secret()

    def authenticate(
        self,
        method: str,
        route: str,
        headers: Mapping[str, str],
        query: QueryInput = None,
        body: Optional[bytes] = None,
    ) -> AuthContext:
        """
        Verify one request.

        Args:
            method: HTTP method
            route: Route path exactly as requested (no query string)
            headers: Request headers (any key case)
            query: Query parameters, mapping or (key, value) pairs
            body: Raw body; when given it must hash to the declared value

        Returns:
            AuthContext for the accepted request

        Raises:
            FoundryError: one of the AUTH_* codes
        """
        lowered = {str(k).lower(): v for k, v in headers.items()}
        values = {name: (lowered.get(name) or "").strip() for name in REQUIRED_HEADERS}
        request_id = (lowered.get(HEADER_REQUEST_ID) or "").strip()

        missing = [name for name, value in values.items() if not value]
        if missing:
            raise FoundryError(
                ErrorCode.AUTH_MISSING,
                "Missing authentication headers",
                details={"missing": missing, "route": route},
            )

        declared_hash = values[HEADER_BODY_HASH]
        nonce = values[HEADER_NONCE]
        if not _BODY_HASH_RE.match(declared_hash):
            raise FoundryError(ErrorCode.AUTH_INVALID, "Malformed body hash", details={"route": route})
        if not _NONCE_RE.match(nonce):
            raise FoundryError(ErrorCode.AUTH_INVALID, "Malformed nonce", details={"route": route})

        timestamp = _parse_timestamp(values[HEADER_TIMESTAMP])
        skew = abs(self.clock() - timestamp)
        if timestamp <= 0 or skew > self.config.security.timestamp_skew:
            raise FoundryError(
                ErrorCode.AUTH_EXPIRED,
                "Request timestamp outside the accepted window",
                details={"route": route, "skew_seconds": int(skew) if timestamp > 0 else None},
            )

        key = nonce_key(nonce)
        if self.store.get(key) is not None:
            logger.warning(f"[Auth] Replayed nonce rejected (request_id={request_id or '-'})")
            raise FoundryError(ErrorCode.AUTH_REPLAY, "Nonce already used", details={"route": route})

        base = build_base_string(
            method,
            route,
            canonical_query(query),
            declared_hash,
            values[HEADER_TIMESTAMP],
            nonce,
            request_id,
        )
        expected = sign(self.secret.get(), base)
        if not signatures_match(expected, values[HEADER_SIGNATURE]):
            logger.warning(f"[Auth] Signature mismatch on {method.upper()} {route} (request_id={request_id or '-'})")
            raise FoundryError(ErrorCode.AUTH_FAILED, "Invalid signature", details={"route": route})

        if body is not None and body_hash(body) != declared_hash.lower():
            raise FoundryError(
                ErrorCode.AUTH_INVALID,
                "Body hash does not match request body",
                details={"route": route},
            )

        if not self.store.add(key, {"seen_at": self.clock()}, ttl=self.config.security.nonce_ttl):
            raise FoundryError(ErrorCode.AUTH_REPLAY, "Nonce already used", details={"route": route})

        logger.debug(f"[Auth] Accepted {method.upper()} {route} (request_id={request_id or '-'})")
        return AuthContext(request_id=request_id, timestamp=timestamp, nonce_hash=key[len(NONCE_KEY_PREFIX):])
