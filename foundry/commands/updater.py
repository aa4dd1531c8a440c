"""
foundry/commands/updater.py

Self-update for the helper package.

update-check downloads the release zip, reads its version and throws the
download away. update-apply does the same, then replaces the installed
directory wholesale: the old tree is deleted and the new one copied in,
never patched file by file.

The version is taken from `manifest.json` ({"version": "x.y.z"}) or, when
absent, from `__version__ = "x.y.z"` in the package `__init__.py`.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Optional, Tuple

import httpx

from foundry import __version__
from foundry.base.config import FoundryConfig, get_config
from foundry.errors import ErrorCode, FoundryError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
_VERSION_RE = re.compile(r"""__version__\s*=\s*['"]([^'"]+)['"]""")

ClientFactory = Callable[[], httpx.Client]


def version_tuple(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version)[:4])


class HelperUpdater:
    def __init__(
        self,
        config: Optional[FoundryConfig] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._config = config
        self._client_factory = client_factory or (
            lambda: httpx.Client(timeout=60.0, follow_redirects=True)
        )

    @property
    def config(self) -> FoundryConfig:
        return self._config or get_config()

    @property
    def current_version(self) -> str:
        return __version__

    def fetch(self, destination: Path) -> Path:
        """Download the release zip into destination."""
        url = self.config.host.update_url
        logger.info(f"[Updater] Fetching {url}")
        try:
            with self._client_factory() as client:
                with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        raise FoundryError(
                            ErrorCode.UPDATE_FETCH_FAILED,
                            f"Update server returned {response.status_code}",
                            details={"url": url},
                        )
                    with open(destination, "wb") as fh:
                        for chunk in response.iter_bytes():
                            fh.write(chunk)
        except httpx.HTTPError as exc:
            logger.error(f"[Updater] Download failed: {exc}")
            raise FoundryError(
                ErrorCode.UPDATE_FETCH_FAILED,
                f"Could not download update: {exc}",
                details={"url": url},
            )

        if not zipfile.is_zipfile(destination):
            raise FoundryError(ErrorCode.UPDATE_MANIFEST_INVALID, "Update is not a zip archive")
        return destination

    def read_manifest(self, archive: Path) -> Tuple[str, str]:
        """
        Return (version, package_prefix) for a release zip.

        package_prefix is the directory inside the zip that holds the
        package ("" when the package sits at the zip root).
        """
        with zipfile.ZipFile(archive) as zf:
            names = zf.namelist()
            for name in names:
                path = PurePosixPath(name)
                if path.is_absolute() or ".." in path.parts:
                    raise FoundryError(ErrorCode.UPDATE_MANIFEST_INVALID, "Update contains unsafe paths")

            candidates = sorted(
                (n for n in names if PurePosixPath(n).name == MANIFEST_NAME and n.count("/") <= 1),
                key=lambda n: n.count("/"),
            )
            for name in candidates:
                try:
                    version = json.loads(zf.read(name)).get("version")
                except (ValueError, AttributeError):
                    continue
                if version:
                    return str(version), str(PurePosixPath(name).parent).strip(".")

            for name in sorted(names, key=lambda n: n.count("/")):
                if PurePosixPath(name).name == "__init__.py" and name.count("/") <= 1:
                    match = _VERSION_RE.search(zf.read(name).decode("utf-8", "replace"))
                    if match:
                        return match.group(1), str(PurePosixPath(name).parent).strip(".")

        raise FoundryError(ErrorCode.UPDATE_MANIFEST_INVALID, "No version found in update package")

    def check(self) -> Dict[str, object]:
        with tempfile.TemporaryDirectory(prefix="foundry-update-") as tmp:
            archive = self.fetch(Path(tmp) / "update.zip")
            latest, _ = self.read_manifest(archive)

        current = self.current_version
        return {
            "current": current,
            "latest": latest,
            "update_available": version_tuple(latest) > version_tuple(current),
        }

    def apply(self) -> Dict[str, object]:
        install_dir = Path(self.config.host.install_dir)
        with tempfile.TemporaryDirectory(prefix="foundry-update-") as tmp:
            archive = self.fetch(Path(tmp) / "update.zip")
            latest, prefix = self.read_manifest(archive)

            extracted = Path(tmp) / "extracted"
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(extracted)
            package_root = extracted / prefix if prefix else extracted

            logger.warning(f"[Updater] Replacing {install_dir} with version {latest}")
            try:
                if install_dir.exists():
                    shutil.rmtree(install_dir)
                shutil.copytree(package_root, install_dir)
            except OSError as exc:
                logger.error(f"[Updater] Replacement failed: {exc}")
                raise FoundryError(
                    ErrorCode.UPDATE_APPLY_FAILED,
                    f"Could not install update: {exc}",
                    details={"install_dir": str(install_dir)},
                )

        return {"previous": self.current_version, "installed": latest, "install_dir": str(install_dir)}
