"""
foundry/security/signing.py

Request signing primitives shared by the server and the signing client.

Base string (newline-joined, in this order):
    METHOD
    /route/path
    canonical query string
    lowercase hex SHA-256 of the body
    timestamp (epoch seconds)
    lowercase nonce
    request id

signature = hex(HMAC-SHA256(shared_secret, base_string))
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote

from foundry.base.config import FoundryConfig, get_config
from foundry.store.ephemeral import EphemeralStore, get_store

logger = logging.getLogger(__name__)

SECRET_STORE_KEY = "foundry:shared_secret"
SECRET_BYTES = 32  # 256-bit

QueryInput = Union[Mapping[str, Any], Iterable[Tuple[str, str]], None]


def _encode(value: Any) -> str:
    # RFC 3986 unreserved characters stay literal, everything else is escaped
    return quote(str(value), safe="-_.~")


def canonical_query(params: QueryInput) -> str:
    """
    Deterministic re-serialisation of query parameters.

    Accepts a mapping (values may be lists) or a sequence of (key, value)
    pairs where repeated keys form an array-valued parameter. Keys are
    sorted, array values are sorted, every key and value is percent-encoded.
    """
    if not params:
        return ""

    grouped: dict = {}
    items = params.items() if isinstance(params, Mapping) else params
    for key, value in items:
        bucket = grouped.setdefault(str(key), [])
        if isinstance(value, (list, tuple)):
            bucket.extend(str(v) for v in value)
        else:
            bucket.append(str(value))

    parts: List[str] = []
    for key in sorted(grouped):
        values = grouped[key]
        if len(values) > 1:
            values = sorted(values)
        for value in values:
            parts.append(f"{_encode(key)}={_encode(value)}")
    return "&".join(parts)


def body_hash(body: Optional[bytes]) -> str:
    return hashlib.sha256(body or b"").hexdigest()


def build_base_string(
    method: str,
    route: str,
    query: str,
    body_sha256: str,
    timestamp: Union[int, str],
    nonce: str,
    request_id: str,
) -> str:
    return "\n".join([
        method.upper(),
        route,
        query,
        body_sha256.lower(),
        str(timestamp),
        nonce.lower(),
        request_id,
    ])


def sign(secret: str, base_string: str) -> str:
    return hmac.new(secret.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: str) -> bool:
    """Constant-time, case-insensitive comparison of hex signatures."""
    return hmac.compare_digest(expected.lower().encode("ascii", "replace"),
                               provided.strip().lower().encode("ascii", "replace"))


def new_nonce() -> str:
    return secrets.token_hex(16)


def sign_headers(
    secret: str,
    method: str,
    route: str,
    params: QueryInput = None,
    body: Optional[bytes] = None,
    *,
    timestamp: Optional[int] = None,
    nonce: Optional[str] = None,
    request_id: Optional[str] = None,
) -> dict:
    """Build the full authentication header set for one request."""
    ts = int(time.time()) if timestamp is None else int(timestamp)
    nonce = nonce or new_nonce()
    request_id = request_id or str(uuid.uuid4())
    digest = body_hash(body)
    base = build_base_string(method, route, canonical_query(params), digest, ts, nonce, request_id)
    return {
        "X-Foundry-Signature": sign(secret, base),
        "X-Foundry-Timestamp": str(ts),
        "X-Foundry-Nonce": nonce,
        "X-Foundry-Body-Hash": digest,
        "X-Foundry-Request-Id": request_id,
    }


# ============================================================================
# Shared Secret Lifecycle
# ============================================================================

class SharedSecret:
    """
    Process-wide HMAC key.

    Resolution order: FOUNDRY_SHARED_SECRET (pinned), then the value cached in
    the ephemeral store, then the secret file on disk. A missing secret is
    generated on first use. The file is authoritative across processes: when
    its mtime changes (e.g. `rotate-secret` from the CLI) the cached value is
    reloaded on the next request.
    """

    def __init__(
        self,
        config: Optional[FoundryConfig] = None,
        store: Optional[EphemeralStore] = None,
    ):
        self._config = config
        self._store = store
        self._lock = threading.Lock()

    @property
    def config(self) -> FoundryConfig:
        return self._config or get_config()

    @property
    def store(self) -> EphemeralStore:
        return self._store or get_store()

    @property
    def path(self) -> Path:
        return self.config.storage.secret_path

    def _file_mtime(self) -> Optional[int]:
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def _write(self, value: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(value)
        try:
            self.path.chmod(0o600)
        except OSError:
            pass

    def get(self) -> str:
        pinned = self.config.security.shared_secret
        if pinned:
            return pinned

        with self._lock:
            mtime = self._file_mtime()
            cached = self.store.get(SECRET_STORE_KEY)
            if cached and mtime is not None and cached.get("mtime") == mtime:
                return cached["value"]

            if mtime is not None:
                value = self.path.read_text(encoding="utf-8").strip()
                if value:
                    self.store.set(SECRET_STORE_KEY, {"value": value, "mtime": mtime})
                    return value

            value = secrets.token_hex(SECRET_BYTES)
            self._write(value)
            self.store.set(SECRET_STORE_KEY, {"value": value, "mtime": self._file_mtime()})
            logger.info(f"[Secret] Generated new shared secret at {self.path}")
            return value

    def regenerate(self) -> str:
        """Replace the secret; every outstanding signature stops verifying."""
        if self.config.security.shared_secret:
            raise RuntimeError("Shared secret is pinned by FOUNDRY_SHARED_SECRET and cannot be rotated")

        with self._lock:
            value = secrets.token_hex(SECRET_BYTES)
            self._write(value)
            self.store.set(SECRET_STORE_KEY, {"value": value, "mtime": self._file_mtime()})
        logger.warning("[Secret] Shared secret regenerated; outstanding signatures are now invalid")
        return value


_shared_secret: Optional[SharedSecret] = None


def get_shared_secret() -> SharedSecret:
    global _shared_secret
    if _shared_secret is None:
        _shared_secret = SharedSecret()
    return _shared_secret


def reset_shared_secret() -> None:
    """Drop the accessor singleton (tests swap config/store underneath it)."""
    global _shared_secret
    _shared_secret = None


__all__: Sequence[str] = [
    "canonical_query",
    "body_hash",
    "build_base_string",
    "sign",
    "signatures_match",
    "sign_headers",
    "new_nonce",
    "SharedSecret",
    "get_shared_secret",
    "reset_shared_secret",
]
