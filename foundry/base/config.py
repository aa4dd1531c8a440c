# ============================================================================
# foundry/base/config.py
# Application Configuration Management
# ============================================================================
#
# PURPOSE:
# Defines every tunable of the helper: where the managed WordPress install
# lives, how requests are authenticated and throttled, where archives are
# staged, and how logging behaves.
#
# KEY CONCEPTS:
# 1. Frozen dataclasses: each section is an immutable value object
# 2. Environment variables: FOUNDRY_* overrides, read once by from_env()
# 3. Singleton: get_config() returns one shared instance; set_config() swaps it
#    (tests inject a config rooted in a temporary directory)
#
# ============================================================================

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

_PACKAGE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_tuple(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# ============================================================================
# Security & Access Control Configuration
# ============================================================================

@dataclass(frozen=True)
class SecurityConfig:
    # Explicit shared secret (hex). When unset the secret is generated lazily
    # on first use and persisted under the storage directory.
    shared_secret: Optional[str] = None

    # Maximum tolerated |now - timestamp| for a signed request, in seconds
    timestamp_skew: int = 300

    # How long a consumed nonce is remembered
    nonce_ttl: int = 600

    # Fixed-window throttle: at most N requests per window per client
    rate_limit_requests: int = 10
    rate_limit_window: int = 60

    # Use the first X-Forwarded-For hop as the client identifier.
    # Only enable behind a reverse proxy that rewrites the header.
    trust_forwarded_for: bool = False

    # JSON operator directory (login/email/password hash/capabilities).
    # When unset, holding the shared secret is the administrative capability.
    operators_file: Optional[Path] = None

    # Capability an operator must hold to drive the helper
    required_capability: str = "manage_options"


# ============================================================================
# Managed Host Configuration
# ============================================================================

@dataclass(frozen=True)
class HostConfig:
    # WordPress root; WP-CLI runs with this as its working directory
    app_root: Path = field(default_factory=Path.cwd)

    # wp-content directory (plugins, themes, uploads). Defaults to app_root/wp-content.
    content_dir: Optional[Path] = None

    # WP-CLI executable
    wp_binary: str = "wp"

    # Directory the helper itself is installed in (replaced by update-apply)
    install_dir: Path = _PACKAGE_DIR

    # Remote zip checked by update-check / installed by update-apply
    update_url: str = "https://downloads.wpfoundry.dev/helper/latest.zip"

    # Terminate the subprocess at the next line once the client is gone.
    # Default keeps running to completion.
    cancel_on_disconnect: bool = False

    @property
    def content_path(self) -> Path:
        return self.content_dir or (self.app_root / "wp-content")

    @property
    def plugins_path(self) -> Path:
        return self.content_path / "plugins"

    @property
    def themes_path(self) -> Path:
        return self.content_path / "themes"


# ============================================================================
# File Storage Configuration
# ============================================================================

@dataclass(frozen=True)
class StorageConfig:
    # Base directory for helper state (~/.wpfoundry)
    base_dir: Path = field(default_factory=lambda: Path.home() / ".wpfoundry")

    # Where archives and uploads are staged before download/installation
    staging_dir_name: str = "staging"

    # Writable WP-CLI cache (WP_CLI_CACHE_DIR)
    cache_dir_name: str = "wp-cli-cache"

    # Persisted shared secret (chmod 0600)
    secret_file_name: str = "shared_secret"

    @property
    def staging_path(self) -> Path:
        return self.base_dir / self.staging_dir_name

    @property
    def cache_path(self) -> Path:
        return self.base_dir / self.cache_dir_name

    @property
    def secret_path(self) -> Path:
        return self.base_dir / self.secret_file_name


# ============================================================================
# Archive & Token Configuration
# ============================================================================

@dataclass(frozen=True)
class ArchiveConfig:
    # Lifetime of download/upload tokens, in seconds
    token_ttl: int = 300

    # Read size when streaming an archive to the client
    chunk_size: int = 64 * 1024

    # Glob patterns skipped by backup-content (relative to wp-content)
    content_exclude: Tuple[str, ...] = ()

    # Default depth for list-files
    list_max_depth: int = 5

    # Largest accepted upload, in megabytes
    max_upload_mb: int = 256


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_enabled: bool = True
    file_name: str = "foundry.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


# ============================================================================
# Master Configuration Container
# ============================================================================

@dataclass  # Not frozen because __post_init__ creates directories
class FoundryConfig:
    security: SecurityConfig = field(default_factory=SecurityConfig)
    host: HostConfig = field(default_factory=HostConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    log: LogConfig = field(default_factory=LogConfig)
    debug: bool = False
    api_host: str = "127.0.0.1"
    api_port: int = 8787

    def __post_init__(self):
        self.storage.base_dir.mkdir(parents=True, exist_ok=True)
        self.storage.staging_path.mkdir(parents=True, exist_ok=True)
        self.storage.cache_path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "FoundryConfig":
        operators = os.getenv("FOUNDRY_OPERATORS_FILE")
        security = SecurityConfig(
            shared_secret=os.getenv("FOUNDRY_SHARED_SECRET") or None,
            timestamp_skew=int(os.getenv("FOUNDRY_TIMESTAMP_SKEW", "300")),
            nonce_ttl=int(os.getenv("FOUNDRY_NONCE_TTL", "600")),
            rate_limit_requests=int(os.getenv("FOUNDRY_RATE_LIMIT", "10")),
            rate_limit_window=int(os.getenv("FOUNDRY_RATE_WINDOW", "60")),
            trust_forwarded_for=_env_bool("FOUNDRY_TRUST_FORWARDED_FOR"),
            operators_file=Path(operators) if operators else None,
            required_capability=os.getenv("FOUNDRY_REQUIRED_CAPABILITY", "manage_options"),
        )

        content_dir = os.getenv("FOUNDRY_CONTENT_DIR")
        install_dir = os.getenv("FOUNDRY_INSTALL_DIR")
        host = HostConfig(
            app_root=Path(os.getenv("FOUNDRY_APP_ROOT", str(Path.cwd()))),
            content_dir=Path(content_dir) if content_dir else None,
            wp_binary=os.getenv("FOUNDRY_WP_BINARY", "wp"),
            install_dir=Path(install_dir) if install_dir else _PACKAGE_DIR,
            update_url=os.getenv("FOUNDRY_UPDATE_URL", HostConfig.update_url),
            cancel_on_disconnect=_env_bool("FOUNDRY_CANCEL_ON_DISCONNECT"),
        )

        storage = StorageConfig(
            base_dir=Path(os.getenv("FOUNDRY_DATA_DIR", str(Path.home() / ".wpfoundry"))),
        )

        archive = ArchiveConfig(
            token_ttl=int(os.getenv("FOUNDRY_TOKEN_TTL", "300")),
            content_exclude=_env_tuple("FOUNDRY_CONTENT_EXCLUDE"),
            list_max_depth=int(os.getenv("FOUNDRY_LIST_MAX_DEPTH", "5")),
            max_upload_mb=int(os.getenv("FOUNDRY_MAX_UPLOAD_MB", "256")),
        )

        log = LogConfig(
            level=os.getenv("FOUNDRY_LOG_LEVEL", "INFO"),
            file_enabled=_env_bool("FOUNDRY_LOG_FILE", "true"),
        )

        return cls(
            security=security,
            host=host,
            storage=storage,
            archive=archive,
            log=log,
            debug=_env_bool("FOUNDRY_DEBUG"),
            api_host=os.getenv("FOUNDRY_API_HOST", "127.0.0.1"),
            api_port=int(os.getenv("FOUNDRY_API_PORT", "8787")),
        )


# ============================================================================
# Global Configuration Singleton
# ============================================================================

_config: Optional[FoundryConfig] = None


def get_config() -> FoundryConfig:
    """
    Get the global configuration instance.

    Loaded from the environment on first call, then reused.
    """
    global _config
    if _config is None:
        _config = FoundryConfig.from_env()
    return _config


def set_config(config: Optional[FoundryConfig]) -> None:
    """
    Replace the global configuration (mainly used for testing).

    Passing None drops the cached instance so the next get_config()
    reloads from the environment.
    """
    global _config
    _config = config


def setup_logging(config: Optional[FoundryConfig] = None) -> None:
    """
    Configure console logging plus an optional rotating log file.

    Call once at application startup.
    """
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        log_path = cfg.storage.base_dir / cfg.log.file_name
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    level = "DEBUG" if cfg.debug else cfg.log.level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
