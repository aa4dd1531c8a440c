"""
foundry/archive/builder.py

Zip creation with entries rooted at the archive root.

A directory source contributes its contents (not the directory itself); a
single file lands at the root under its own basename. Symlinks are skipped.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import zipfile
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from foundry.errors import ErrorCode, FoundryError

logger = logging.getLogger(__name__)

EntryCallback = Callable[[int, str], None]


def ensure_engine() -> None:
    """Raise ARCHIVE_ENGINE_UNAVAILABLE when deflate compression is missing."""
    try:
        import zlib  # noqa: F401
    except ImportError:
        raise FoundryError(
            ErrorCode.ARCHIVE_ENGINE_UNAVAILABLE,
            "Zip compression is not available on this host",
        )


def check_source(source: Path) -> Path:
    source = Path(source)
    if not source.exists():
        raise FoundryError(
            ErrorCode.PATH_NOT_FOUND,
            f"Path not found: {source}",
            details={"path": str(source)},
        )
    if not os.access(source, os.R_OK) or (source.is_dir() and not os.access(source, os.X_OK)):
        raise FoundryError(
            ErrorCode.PATH_NOT_READABLE,
            f"Path not readable: {source}",
            details={"path": str(source)},
        )
    return source


def is_excluded(relative: str, patterns: Sequence[str]) -> bool:
    name = relative.rsplit("/", 1)[-1]
    for pattern in patterns:
        pattern = pattern.strip("/")
        if not pattern:
            continue
        if fnmatch.fnmatch(relative, pattern) or fnmatch.fnmatch(name, pattern):
            return True
        if relative == pattern or relative.startswith(pattern + "/"):
            return True
    return False


def _walk(root: Path, exclude: Sequence[str]) -> Iterable[tuple]:
    """Yield (path, arcname, is_dir) under root, using an explicit stack."""
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            entries = sorted(os.scandir(current), key=lambda e: e.name)
        except PermissionError:
            logger.warning(f"[Archive] Skipping unreadable directory {current}")
            continue
        subdirs = []
        for entry in entries:
            if entry.is_symlink():
                continue
            relative = Path(entry.path).relative_to(root).as_posix()
            if is_excluded(relative, exclude):
                continue
            if entry.is_dir(follow_symlinks=False):
                yield Path(entry.path), relative + "/", True
                subdirs.append(Path(entry.path))
            elif entry.is_file(follow_symlinks=False):
                yield Path(entry.path), relative, False
        stack.extend(reversed(subdirs))


def build_zip(
    source: Path,
    destination: Path,
    exclude: Sequence[str] = (),
    on_entry: Optional[EntryCallback] = None,
) -> int:
    """
    Write source into a new zip at destination.

    Returns:
        Number of entries written

    Raises:
        FoundryError: ARCHIVE_ENGINE_UNAVAILABLE, PATH_NOT_FOUND,
            PATH_NOT_READABLE or ARCHIVE_CREATE_FAILED
    """
    ensure_engine()
    source = check_source(source)
    destination = Path(destination)
    count = 0

    try:
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            if source.is_file():
                zf.write(source, arcname=source.name)
                count = 1
                if on_entry:
                    on_entry(count, source.name)
            else:
                for path, arcname, is_dir in _walk(source, exclude):
                    if is_dir:
                        zf.writestr(zipfile.ZipInfo.from_file(path, arcname), b"")
                    else:
                        zf.write(path, arcname=arcname)
                    count += 1
                    if on_entry:
                        on_entry(count, arcname)
    except FoundryError:
        _discard(destination)
        raise
    except (OSError, zipfile.BadZipFile) as exc:
        _discard(destination)
        logger.error(f"[Archive] Failed to build {destination.name}: {exc}")
        raise FoundryError(
            ErrorCode.ARCHIVE_CREATE_FAILED,
            f"Failed to create archive: {exc}",
            details={"source": str(source)},
        )

    logger.info(f"[Archive] Wrote {count} entries from {source} to {destination.name}")
    return count


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        pass
