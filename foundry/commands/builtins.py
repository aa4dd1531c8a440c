"""
foundry/commands/builtins.py

The `foundry` command namespace.

Every built-in streams the same envelope as a WP-CLI command:
command_start, then command_data / command_progress events, then one
command_complete or command_error. Data events carry {data, line, raw}
exactly like decoded JSON output from the external tool.

    foundry version
    foundry core-version
    foundry self-version
    foundry update-check
    foundry update-apply
    foundry list-files [path] [--depth=N] [--include=a,b] [--exclude=a,b]
    foundry backup-plugin <slug>
    foundry backup-theme <slug>
    foundry backup-db
    foundry backup-content [--exclude=a,b]
    foundry install-upload <token> [plugin|theme]
"""

from __future__ import annotations

import json
import logging
import os
import platform
import re
import secrets
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from foundry import __version__
from foundry.archive.manager import ArchiveManager, get_archive_manager
from foundry.base.config import FoundryConfig, get_config
from foundry.commands.files import iter_files, resolve_listing_root
from foundry.commands.updater import HelperUpdater
from foundry.engine.emitter import EventEmitter
from foundry.engine.runner import ProcessRunner
from foundry.errors import ErrorCode, FoundryError

if TYPE_CHECKING:
    from foundry.commands.dispatcher import CommandEnvelope

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-z0-9_-]+$")
_WP_VERSION_RE = re.compile(r"""\$wp_version\s*=\s*['"]([^'"]+)['"]""")

Handler = Callable[["CommandEnvelope", EventEmitter], Optional[Dict[str, Any]]]


def read_core_version(app_root: Path) -> str:
    version_file = Path(app_root) / "wp-includes" / "version.php"
    try:
        text = version_file.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        raise FoundryError(ErrorCode.PATH_NOT_FOUND, "WordPress core not found", details={"path": str(version_file)})
    match = _WP_VERSION_RE.search(text)
    if not match:
        raise FoundryError(ErrorCode.PATH_NOT_FOUND, "WordPress version not found in version.php")
    return match.group(1)


def require_slug(envelope: "CommandEnvelope") -> str:
    positionals = envelope.positionals
    if not positionals:
        raise FoundryError(ErrorCode.MISSING_ARGUMENT, f"'{envelope.subcommand}' requires a slug")
    slug = positionals[0]
    if not SLUG_RE.match(slug):
        raise FoundryError(ErrorCode.INVALID_SLUG, "Invalid slug", details={"slug": slug})
    return slug


class Builtins:
    def __init__(
        self,
        config: Optional[FoundryConfig] = None,
        runner: Optional[ProcessRunner] = None,
        archives: Optional[ArchiveManager] = None,
        updater: Optional[HelperUpdater] = None,
    ):
        self._config = config
        self.runner = runner or ProcessRunner(config)
        self._archives = archives
        self.updater = updater or HelperUpdater(config)
        self.handlers: Dict[str, Handler] = {
            "version": self.version,
            "core-version": self.core_version,
            "self-version": self.self_version,
            "update-check": self.update_check,
            "update-apply": self.update_apply,
            "list-files": self.list_files,
            "backup-plugin": self.backup_plugin,
            "backup-theme": self.backup_theme,
            "backup-db": self.backup_db,
            "backup-content": self.backup_content,
            "install-upload": self.install_upload,
        }

    @property
    def config(self) -> FoundryConfig:
        return self._config or get_config()

    @property
    def archives(self) -> ArchiveManager:
        return self._archives or get_archive_manager()

    @property
    def site_label(self) -> str:
        return Path(self.config.host.app_root).resolve().name or "site"

    def run(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> None:
        emitter.start(builtin=True, subcommand=envelope.subcommand)

        handler = self.handlers.get(envelope.subcommand)
        if handler is None:
            emitter.error(
                ErrorCode.UNKNOWN_SUBCOMMAND,
                f"Unknown subcommand: {envelope.subcommand or '(none)'}",
                available=sorted(self.handlers),
            )
            return

        try:
            result = handler(envelope, emitter)
        except FoundryError as exc:
            emitter.fail(exc)
            return
        emitter.complete(0, **({"result": result} if result is not None else {}))

    def _data(self, emitter: EventEmitter, value: Any) -> None:
        raw = json.dumps(value, default=str)
        emitter.data(value, emitter.next_line(), raw)

    def _archive_progress(self, emitter: EventEmitter) -> Callable[[int, str], None]:
        def _on_entry(count: int, arcname: str) -> None:
            emitter.maybe_progress(every_lines=None, entries=count)
        return _on_entry

    # ------------------------------------------------------------------
    # Version queries
    # ------------------------------------------------------------------

    def version(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        try:
            core = read_core_version(self.config.host.app_root)
        except FoundryError:
            core = None
        info = {
            "helper": __version__,
            "core": core,
            "python": platform.python_version(),
            "platform": platform.platform(),
        }
        self._data(emitter, info)
        return info

    def core_version(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        info = {"version": read_core_version(self.config.host.app_root)}
        self._data(emitter, info)
        return info

    def self_version(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        info = {"version": __version__, "install_dir": str(self.config.host.install_dir)}
        self._data(emitter, info)
        return info

    def update_check(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        info = self.updater.check()
        self._data(emitter, info)
        return info

    def update_apply(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        emitter.progress(stage="downloading")
        info = self.updater.apply()
        self._data(emitter, info)
        return info

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def list_files(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        positionals = envelope.positionals
        root = resolve_listing_root(self.config.host.app_root, positionals[0] if positionals else None)

        depth_raw = envelope.option("depth", str(self.config.archive.list_max_depth))
        try:
            depth = max(0, int(depth_raw))
        except (TypeError, ValueError):
            raise FoundryError(ErrorCode.MISSING_ARGUMENT, "--depth must be an integer", details={"depth": depth_raw})

        count = 0
        for entry in iter_files(
            root,
            max_depth=depth,
            include=envelope.option_list("include"),
            exclude=envelope.option_list("exclude"),
        ):
            self._data(emitter, entry)
            count += 1
            emitter.maybe_progress()
        return {"files": count, "root": str(root)}

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def _backup(self, emitter: EventEmitter, source: Path, label: str, kind: str, exclude=()) -> Dict[str, Any]:
        info = self.archives.create(
            source,
            label=label,
            kind=kind,
            exclude=exclude,
            on_entry=self._archive_progress(emitter),
        )
        self._data(emitter, info)
        return info

    def backup_plugin(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        slug = require_slug(envelope)
        plugins = self.config.host.plugins_path
        source = plugins / slug
        # Single-file plugins live directly in the plugins directory
        if not source.exists() and (plugins / f"{slug}.php").is_file():
            source = plugins / f"{slug}.php"
        return self._backup(emitter, source, slug, "plugin")

    def backup_theme(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        slug = require_slug(envelope)
        return self._backup(emitter, self.config.host.themes_path / slug, slug, "theme")

    def backup_db(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        dump = self.archives.staging_dir / f"foundry-db-{secrets.token_hex(8)}.sql"
        try:
            exit_code = self.runner.run_step(["db", "export", str(dump), "--porcelain"], emitter)
            if exit_code != 0:
                raise FoundryError(
                    ErrorCode.PROCESS_EXIT_NONZERO,
                    f"Database export exited with code {exit_code}",
                    details={"exit_code": exit_code},
                )
            return self._backup(emitter, dump, self.site_label, "db")
        finally:
            try:
                os.unlink(dump)
            except OSError:
                pass

    def backup_content(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        content = self.config.host.content_path
        exclude = list(self.config.archive.content_exclude) + envelope.option_list("exclude")

        staging = self.config.storage.staging_path.resolve()
        try:
            exclude.append(staging.relative_to(content.resolve()).as_posix())
        except ValueError:
            pass

        return self._backup(emitter, content, self.site_label, "content", exclude=exclude)

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def install_upload(self, envelope: "CommandEnvelope", emitter: EventEmitter) -> Dict[str, Any]:
        positionals = envelope.positionals
        if not positionals:
            raise FoundryError(ErrorCode.MISSING_ARGUMENT, "'install-upload' requires an upload token")
        target = positionals[1] if len(positionals) > 1 else "plugin"
        if target not in ("plugin", "theme"):
            raise FoundryError(ErrorCode.MISSING_ARGUMENT, "Install target must be 'plugin' or 'theme'")

        record = self.archives.resolve_upload(positionals[0])
        exit_code = self.runner.run_step([target, "install", record.path, "--force"], emitter)
        if exit_code != 0:
            raise FoundryError(
                ErrorCode.PROCESS_EXIT_NONZERO,
                f"{target.capitalize()} install exited with code {exit_code}",
                details={"exit_code": exit_code},
            )

        self.archives.delete_upload(record.token)
        return {"installed": record.filename, "type": target}
