"""
foundry/commands/files.py

Bounded-depth inventory of a directory tree.

Only regular files are reported. Directories are descended into (up to
max_depth levels below the root) but never listed; symlinks are skipped
entirely. Include patterns select files, exclude patterns drop files and
prune whole directories. Patterns are shell globs matched against both the
basename and the path relative to the listing root.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from foundry.errors import ErrorCode, FoundryError

logger = logging.getLogger(__name__)

FILE_TYPES: Dict[str, str] = {
    ".php": "php",
    ".js": "script",
    ".mjs": "script",
    ".ts": "script",
    ".css": "style",
    ".scss": "style",
    ".html": "markup",
    ".htm": "markup",
    ".json": "data",
    ".xml": "data",
    ".yml": "data",
    ".yaml": "data",
    ".sql": "database",
    ".jpg": "image",
    ".jpeg": "image",
    ".png": "image",
    ".gif": "image",
    ".svg": "image",
    ".webp": "image",
    ".ico": "image",
    ".woff": "font",
    ".woff2": "font",
    ".ttf": "font",
    ".eot": "font",
    ".zip": "archive",
    ".gz": "archive",
    ".tar": "archive",
    ".txt": "text",
    ".md": "text",
    ".log": "text",
    ".po": "translation",
    ".pot": "translation",
    ".mo": "translation",
}


def file_type(name: str) -> str:
    return FILE_TYPES.get(os.path.splitext(name)[1].lower(), "other")


def _matches(relative: str, patterns: Sequence[str]) -> bool:
    name = relative.rsplit("/", 1)[-1]
    return any(
        fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(relative, pattern)
        for pattern in patterns
    )


def resolve_listing_root(app_root: Path, requested: Optional[str]) -> Path:
    """
    Resolve a user supplied path against the WordPress root.

    Raises:
        FoundryError: PATH_NOT_FOUND, or PATH_NOT_READABLE when the path
            escapes the root or cannot be read
    """
    base = Path(app_root).resolve()
    target = (base / requested).resolve() if requested else base
    if target != base and base not in target.parents:
        raise FoundryError(
            ErrorCode.PATH_NOT_READABLE,
            "Path is outside the WordPress root",
            details={"path": requested},
        )
    if not target.is_dir():
        raise FoundryError(ErrorCode.PATH_NOT_FOUND, f"Directory not found: {requested or '.'}")
    if not os.access(target, os.R_OK | os.X_OK):
        raise FoundryError(ErrorCode.PATH_NOT_READABLE, f"Directory not readable: {requested or '.'}")
    return target


def iter_files(
    root: Path,
    max_depth: int = 5,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
) -> Iterator[Dict[str, object]]:
    """Yield one metadata dict per matching file under root."""
    root = Path(root)
    stack: List[tuple] = [(root, 0)]
    while stack:
        current, depth = stack.pop()
        try:
            entries = sorted(os.scandir(current), key=lambda e: e.name)
        except OSError as exc:
            logger.debug(f"[Files] Cannot read {current}: {exc}")
            continue

        subdirs = []
        for entry in entries:
            if entry.is_symlink():
                continue
            relative = Path(entry.path).relative_to(root).as_posix()
            if exclude and _matches(relative, exclude):
                continue

            if entry.is_dir(follow_symlinks=False):
                if depth < max_depth:
                    subdirs.append((Path(entry.path), depth + 1))
                continue
            if not entry.is_file(follow_symlinks=False):
                continue
            if include and not _matches(relative, include):
                continue

            try:
                stat = entry.stat(follow_symlinks=False)
            except OSError:
                continue
            yield {
                "path": relative,
                "size": stat.st_size,
                "mtime": int(stat.st_mtime),
                "type": file_type(entry.name),
                "readable": os.access(entry.path, os.R_OK),
                "writable": os.access(entry.path, os.W_OK),
            }

        stack.extend(reversed(subdirs))


def list_files(
    root: Path,
    max_depth: int = 5,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
) -> List[Dict[str, object]]:
    return list(iter_files(root, max_depth=max_depth, include=include, exclude=exclude))
