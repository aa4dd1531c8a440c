"""
foundry/archive/manager.py

Staging, resolution and single-use delivery of zip artifacts.

Layout inside the staging directory:
    foundry-<token>.zip           archive produced by a backup
    foundry-<token>.json          sidecar copy of its token record
    foundry-upload-<token>.zip    zip uploaded for installation
    foundry-upload-<token>.json   sidecar copy of the upload record

Delivery is at-most-once: consume() erases the records and renames the file
to a private name before the first byte is sent, so a concurrent consumer
of the same token sees TOKEN_NOT_FOUND.
"""

from __future__ import annotations

import logging
import os
import secrets
import threading
import time
import zipfile
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, Optional, Sequence, Tuple

from foundry import API_PREFIX
from foundry.archive.builder import EntryCallback, build_zip
from foundry.archive.tokens import (
    KIND_DOWNLOAD,
    KIND_UPLOAD,
    SidecarAdapter,
    StoreAdapter,
    TokenRecord,
    TokenRegistry,
    check_token,
    new_token,
)
from foundry.base.config import FoundryConfig, get_config
from foundry.errors import ErrorCode, FoundryError
from foundry.store.ephemeral import EphemeralStore, get_store

logger = logging.getLogger(__name__)

DOWNLOAD_PREFIX = "foundry-"
UPLOAD_PREFIX = "foundry-upload-"


def _best_effort_unlink(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        pass


class ArchiveManager:
    def __init__(
        self,
        config: Optional[FoundryConfig] = None,
        store: Optional[EphemeralStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._store = store
        self.clock = clock
        self._lock = threading.Lock()

    @property
    def config(self) -> FoundryConfig:
        return self._config or get_config()

    @property
    def store(self) -> EphemeralStore:
        return self._store or get_store()

    @property
    def staging_dir(self) -> Path:
        path = self.config.storage.staging_path
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def ttl(self) -> int:
        return self.config.archive.token_ttl

    def artifact_path(self, token: str) -> Path:
        return self.staging_dir / f"{DOWNLOAD_PREFIX}{token}.zip"

    def upload_path(self, token: str) -> Path:
        return self.staging_dir / f"{UPLOAD_PREFIX}{token}.zip"

    def _registry(self, kind: str) -> TokenRegistry:
        prefix = UPLOAD_PREFIX if kind == KIND_UPLOAD else DOWNLOAD_PREFIX
        return TokenRegistry([
            StoreAdapter(self.store, kind=kind),
            SidecarAdapter(self.staging_dir, prefix=prefix),
        ])

    def display_filename(self, label: str, kind: str) -> str:
        stamp = time.strftime("%Y%m%d-%H%M%S", time.localtime(self.clock()))
        return f"{label}-{kind}-{stamp}.zip"

    def _new_record(self, token: str, path: Path, filename: str, kind: str) -> TokenRecord:
        now = self.clock()
        return TokenRecord(
            token=token,
            path=str(path),
            filename=filename,
            size=path.stat().st_size,
            created_at=now,
            expires_at=now + self.ttl,
            kind=kind,
        )

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def create(
        self,
        source: Path,
        label: str,
        kind: str,
        exclude: Sequence[str] = (),
        on_entry: Optional[EntryCallback] = None,
    ) -> Dict[str, object]:
        """
        Zip source into the staging area and issue a download token.

        Returns:
            {token, filename, size, expires_in, download_url}
        """
        self.purge_stale()
        token = new_token()
        path = self.artifact_path(token)
        build_zip(Path(source), path, exclude=exclude, on_entry=on_entry)

        record = self._new_record(token, path, self.display_filename(label, kind), KIND_DOWNLOAD)
        try:
            self._registry(KIND_DOWNLOAD).save(record)
        except FoundryError:
            _best_effort_unlink(path)
            raise

        logger.info(f"[Archive] Staged {record.filename} ({record.size} bytes) as {token[:8]}")
        return {
            "token": token,
            "filename": record.filename,
            "size": record.size,
            "expires_in": self.ttl,
            "download_url": f"{API_PREFIX}/download?token={token}",
        }

    def resolve(self, token: str) -> TokenRecord:
        """
        Find the live record for a download token.

        Raises:
            FoundryError: TOKEN_MALFORMED or TOKEN_NOT_FOUND
        """
        check_token(token)
        registry = self._registry(KIND_DOWNLOAD)
        now = self.clock()

        record = registry.load(token)
        if record is not None:
            if record.is_expired(now):
                logger.info(f"[Archive] Token {token[:8]} expired, reaping")
                registry.discard(token)
                _best_effort_unlink(Path(record.path))
                raise FoundryError(ErrorCode.TOKEN_NOT_FOUND, "Download token not found or expired")
            return record

        guessed = self.artifact_path(token)
        try:
            stat = guessed.stat()
        except FileNotFoundError:
            raise FoundryError(ErrorCode.TOKEN_NOT_FOUND, "Download token not found or expired")

        if now > stat.st_mtime + self.ttl:
            raise FoundryError(ErrorCode.TOKEN_NOT_FOUND, "Download token not found or expired")

        logger.debug(f"[Archive] Token {token[:8]} resolved by filename")
        return TokenRecord(
            token=token,
            path=str(guessed),
            filename=guessed.name,
            size=stat.st_size,
            created_at=stat.st_mtime,
            expires_at=stat.st_mtime + self.ttl,
        )

    def consume(self, token: str) -> Tuple[TokenRecord, Iterator[bytes]]:
        """
        Claim a download token exactly once.

        Returns the record and an iterator over the file's bytes; the file is
        deleted when the iterator is exhausted or closed.

        Raises:
            FoundryError: TOKEN_MALFORMED, TOKEN_NOT_FOUND or FILE_OPEN_FAILED
        """
        with self._lock:
            record = self.resolve(token)
            self._registry(KIND_DOWNLOAD).discard(token)

            path = Path(record.path)
            claimed = path.with_name(f"{path.name}.claimed-{secrets.token_hex(4)}")
            try:
                os.rename(path, claimed)
            except FileNotFoundError:
                raise FoundryError(ErrorCode.TOKEN_NOT_FOUND, "Download token not found or expired")
            except OSError as exc:
                logger.error(f"[Archive] Could not claim {path.name}: {exc}")
                raise FoundryError(ErrorCode.FILE_OPEN_FAILED, "Could not open archive")

            try:
                handle = open(claimed, "rb")
            except OSError as exc:
                _best_effort_unlink(claimed)
                logger.error(f"[Archive] Could not open {claimed.name}: {exc}")
                raise FoundryError(ErrorCode.FILE_OPEN_FAILED, "Could not open archive")

        logger.info(f"[Archive] Delivering {record.filename} for token {token[:8]}")
        return record, self._chunks(handle, claimed)

    def _chunks(self, handle: BinaryIO, path: Path) -> Iterator[bytes]:
        chunk_size = self.config.archive.chunk_size
        try:
            while True:
                chunk = handle.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()
            _best_effort_unlink(path)

    def purge_stale(self) -> int:
        """Delete staged files whose lifetime has passed. Returns the count."""
        cutoff = self.clock() - self.ttl
        removed = 0
        for path in self.staging_dir.glob(f"{DOWNLOAD_PREFIX}*"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError:
                continue
        if removed:
            logger.debug(f"[Archive] Purged {removed} stale staging file(s)")
        return removed

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def store_upload(self, data: bytes, filename: str = "upload.zip") -> Dict[str, object]:
        """
        Stage an uploaded zip for a later install-upload.

        Raises:
            FoundryError: ARCHIVE_INVALID for oversized or non-zip payloads
        """
        limit = self.config.archive.max_upload_mb * 1024 * 1024
        if len(data) > limit:
            raise FoundryError(
                ErrorCode.ARCHIVE_INVALID,
                "Upload exceeds the size limit",
                details={"size": len(data), "limit": limit},
            )

        token = new_token()
        path = self.upload_path(token)
        path.write_bytes(data)
        if not zipfile.is_zipfile(path):
            _best_effort_unlink(path)
            raise FoundryError(ErrorCode.ARCHIVE_INVALID, "Upload is not a zip archive")

        display = Path(filename).name or "upload.zip"
        record = self._new_record(token, path, display, KIND_UPLOAD)
        try:
            self._registry(KIND_UPLOAD).save(record)
        except FoundryError:
            _best_effort_unlink(path)
            raise

        logger.info(f"[Archive] Stored upload {display} ({record.size} bytes) as {token[:8]}")
        return {
            "token": token,
            "filename": display,
            "size": record.size,
            "expires_in": self.ttl,
        }

    def resolve_upload(self, token: str) -> TokenRecord:
        check_token(token)
        registry = self._registry(KIND_UPLOAD)
        record = registry.load(token)
        if record is None:
            raise FoundryError(ErrorCode.TOKEN_NOT_FOUND, "Upload token not found or expired")
        if record.is_expired(self.clock()) or not Path(record.path).exists():
            registry.discard(token)
            _best_effort_unlink(Path(record.path))
            raise FoundryError(ErrorCode.TOKEN_NOT_FOUND, "Upload token not found or expired")
        return record

    def delete_upload(self, token: str) -> None:
        record = self.resolve_upload(token)
        self._registry(KIND_UPLOAD).discard(token)
        _best_effort_unlink(Path(record.path))
        logger.info(f"[Archive] Deleted upload {token[:8]}")


_manager: Optional[ArchiveManager] = None


def get_archive_manager() -> ArchiveManager:
    global _manager
    if _manager is None:
        _manager = ArchiveManager()
    return _manager


def set_archive_manager(manager: Optional[ArchiveManager]) -> None:
    global _manager
    _manager = manager
