"""
foundry/archive/tokens.py

Token records for staged artifacts and the adapters that persist them.

A record is written through two adapters, consulted in fixed priority:
  1. StoreAdapter:   ephemeral keyed store, TTL = token lifetime
  2. SidecarAdapter: JSON file next to the staged zip, survives a store
                     that forgets everything on restart
"""

from __future__ import annotations

import json
import logging
import os
import re
import secrets
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from foundry.errors import ErrorCode, FoundryError
from foundry.store.ephemeral import EphemeralStore

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"^[a-f0-9]{32}$")

KIND_DOWNLOAD = "download"
KIND_UPLOAD = "upload"


def new_token() -> str:
    return secrets.token_hex(16)


def check_token(token: Optional[str]) -> str:
    if not token or not TOKEN_RE.match(token):
        raise FoundryError(ErrorCode.TOKEN_MALFORMED, "Malformed token")
    return token


@dataclass
class TokenRecord:
    token: str
    path: str
    filename: str
    size: int
    created_at: float
    expires_at: float
    kind: str = KIND_DOWNLOAD

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenRecord":
        return cls(
            token=str(data["token"]),
            path=str(data["path"]),
            filename=str(data["filename"]),
            size=int(data.get("size", 0)),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            kind=str(data.get("kind", KIND_DOWNLOAD)),
        )


class TokenAdapter(ABC):
    name = "adapter"

    @abstractmethod
    def save(self, record: TokenRecord) -> None: ...

    @abstractmethod
    def load(self, token: str) -> Optional[TokenRecord]: ...

    @abstractmethod
    def discard(self, token: str) -> None: ...


class StoreAdapter(TokenAdapter):
    name = "store"

    def __init__(self, store: EphemeralStore, kind: str = KIND_DOWNLOAD):
        self.store = store
        self.kind = kind

    def key(self, token: str) -> str:
        return f"{self.kind}:{token}"

    def save(self, record: TokenRecord) -> None:
        ttl = max(1.0, record.expires_at - record.created_at)
        self.store.set(self.key(record.token), record.to_dict(), ttl=ttl)

    def load(self, token: str) -> Optional[TokenRecord]:
        data = self.store.get(self.key(token))
        return TokenRecord.from_dict(data) if data else None

    def discard(self, token: str) -> None:
        self.store.delete(self.key(token))


class SidecarAdapter(TokenAdapter):
    name = "sidecar"

    def __init__(self, directory: Path, prefix: str = "foundry-"):
        self.directory = Path(directory)
        self.prefix = prefix

    def path_for(self, token: str) -> Path:
        return self.directory / f"{self.prefix}{token}.json"

    def save(self, record: TokenRecord) -> None:
        path = self.path_for(record.token)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(record.to_dict()), encoding="utf-8")
        os.replace(tmp, path)

    def load(self, token: str) -> Optional[TokenRecord]:
        path = self.path_for(token)
        try:
            return TokenRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, OSError) as exc:
            logger.warning(f"[Tokens] Unreadable sidecar {path.name}: {exc}")
            return None

    def discard(self, token: str) -> None:
        try:
            self.path_for(token).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.debug(f"[Tokens] Could not remove sidecar for {token[:8]}: {exc}")


class TokenRegistry:
    """One view over several adapters, highest priority first."""

    def __init__(self, adapters: List[TokenAdapter]):
        self.adapters = adapters

    def save(self, record: TokenRecord) -> None:
        saved = 0
        for adapter in self.adapters:
            try:
                adapter.save(record)
                saved += 1
            except OSError as exc:
                logger.warning(f"[Tokens] {adapter.name} could not persist {record.token[:8]}: {exc}")
        if not saved:
            raise FoundryError(
                ErrorCode.ARCHIVE_CREATE_FAILED,
                "Could not persist the artifact token",
                details={"token": record.token[:8]},
            )

    def load(self, token: str) -> Optional[TokenRecord]:
        for adapter in self.adapters:
            record = adapter.load(token)
            if record is not None:
                logger.debug(f"[Tokens] {token[:8]} resolved via {adapter.name}")
                return record
        return None

    def discard(self, token: str) -> None:
        for adapter in self.adapters:
            adapter.discard(token)
