"""Pytest configuration for WP Foundry."""
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from foundry.archive.manager import set_archive_manager
from foundry.base.config import (
    FoundryConfig,
    HostConfig,
    LogConfig,
    SecurityConfig,
    StorageConfig,
    set_config,
)
from foundry.commands.dispatcher import set_dispatcher
from foundry.security.capability import set_capability_checker
from foundry.security.rate_limit import set_rate_limiter
from foundry.security.signing import reset_shared_secret
from foundry.server.routers.auth import set_authenticator
from foundry.store.ephemeral import MemoryStore, set_store

TEST_SECRET = "5e" * 32


def pytest_configure():
    # Never write foundry.log from the test run
    os.environ.setdefault("FOUNDRY_LOG_FILE", "false")


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _reset_singletons():
    set_rate_limiter(None)
    set_capability_checker(None)
    set_archive_manager(None)
    set_dispatcher(None)
    set_authenticator(None)
    reset_shared_secret()
    set_store(None)
    set_config(None)


@pytest.fixture(autouse=True)
def isolated_singletons():
    _reset_singletons()
    yield
    _reset_singletons()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wp_root(tmp_path):
    """A minimal WordPress tree."""
    root = tmp_path / "wordpress"
    (root / "wp-includes").mkdir(parents=True)
    (root / "wp-includes" / "version.php").write_text(
        "<?php\n$wp_version = '6.5.2';\n$wp_db_version = 57155;\n"
    )
    content = root / "wp-content"

    plugin = content / "plugins" / "hello-dolly"
    plugin.mkdir(parents=True)
    (plugin / "hello.php").write_text("<?php\n/* Plugin Name: Hello Dolly */\n")
    (plugin / "readme.txt").write_text("=== Hello Dolly ===\n")
    (content / "plugins" / "akismet-lite.php").write_text("<?php\n/* Plugin Name: Akismet Lite */\n")

    theme = content / "themes" / "twentytwentyfour"
    (theme / "parts").mkdir(parents=True)
    (theme / "style.css").write_text("/* Theme Name: Twenty Twenty-Four */\n")
    (theme / "functions.php").write_text("<?php\n")
    (theme / "parts" / "header.html").write_text("<header></header>\n")

    uploads = content / "uploads" / "2024" / "01"
    uploads.mkdir(parents=True)
    (uploads / "photo.jpg").write_bytes(b"\xff\xd8\xff\xe0" + os.urandom(256))
    (content / "cache").mkdir()
    (content / "cache" / "page.html").write_text("<html></html>")
    return root


@pytest.fixture
def config(tmp_path, wp_root):
    cfg = FoundryConfig(
        security=SecurityConfig(shared_secret=TEST_SECRET),
        host=HostConfig(app_root=wp_root, install_dir=tmp_path / "install"),
        storage=StorageConfig(base_dir=tmp_path / "data"),
        log=LogConfig(file_enabled=False),
    )
    set_config(cfg)
    return cfg


@pytest.fixture
def store(clock):
    memory = MemoryStore(clock=clock)
    set_store(memory)
    return memory
