"""Archive creation, token resolution and single-use delivery."""
import json
import os
import sys
import threading
import time
import zipfile

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from foundry.archive.builder import build_zip
from foundry.archive.manager import ArchiveManager
from foundry.archive.tokens import SidecarAdapter, StoreAdapter, TOKEN_RE
from foundry.errors import ErrorCode, FoundryError
from foundry.store.ephemeral import MemoryStore


class WallClock:
    """Real time plus an adjustable offset (staged files carry real mtimes)."""

    def __init__(self):
        self.offset = 0.0

    def __call__(self):
        return time.time() + self.offset


@pytest.fixture
def wall():
    return WallClock()


@pytest.fixture
def store(wall):
    return MemoryStore(clock=wall)


@pytest.fixture
def manager(config, store, wall):
    return ArchiveManager(config=config, store=store, clock=wall)


def extract(path, dest):
    with zipfile.ZipFile(path) as zf:
        zf.extractall(dest)
    return dest


def snapshot(root):
    files = {}
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            full = os.path.join(dirpath, name)
            with open(full, "rb") as fh:
                files[os.path.relpath(full, root)] = fh.read()
    return files


def drain(chunks):
    return b"".join(chunks)


class TestBuildZip:
    def test_directory_entries_are_rooted(self, wp_root, tmp_path):
        theme = wp_root / "wp-content" / "themes" / "twentytwentyfour"
        out = tmp_path / "theme.zip"
        build_zip(theme, out)
        with zipfile.ZipFile(out) as zf:
            names = zf.namelist()
        assert "style.css" in names
        assert "parts/header.html" in names
        assert not any(n.startswith("twentytwentyfour/") for n in names)
        assert snapshot(extract(out, tmp_path / "x")) == snapshot(theme)

    def test_single_file_at_root(self, wp_root, tmp_path):
        source = wp_root / "wp-content" / "plugins" / "akismet-lite.php"
        out = tmp_path / "single.zip"
        build_zip(source, out)
        with zipfile.ZipFile(out) as zf:
            assert zf.namelist() == ["akismet-lite.php"]
        assert snapshot(extract(out, tmp_path / "y")) == {"akismet-lite.php": source.read_bytes()}

    def test_binary_content_byte_for_byte(self, wp_root, tmp_path):
        uploads = wp_root / "wp-content" / "uploads"
        out = tmp_path / "uploads.zip"
        build_zip(uploads, out)
        assert snapshot(extract(out, tmp_path / "z")) == snapshot(uploads)

    def test_exclusions(self, wp_root, tmp_path):
        out = tmp_path / "content.zip"
        build_zip(wp_root / "wp-content", out, exclude=["cache", "uploads/2024"])
        with zipfile.ZipFile(out) as zf:
            names = zf.namelist()
        assert not any(n.startswith("cache") for n in names)
        assert not any(n.startswith("uploads/2024") for n in names)
        assert "plugins/hello-dolly/hello.php" in names

    def test_missing_source(self, tmp_path):
        with pytest.raises(FoundryError) as exc_info:
            build_zip(tmp_path / "missing", tmp_path / "out.zip")
        assert exc_info.value.code == ErrorCode.PATH_NOT_FOUND
        assert exc_info.value.http_status == 404
        assert not (tmp_path / "out.zip").exists()

    def test_entry_callback(self, wp_root, tmp_path):
        seen = []
        build_zip(wp_root / "wp-content" / "plugins", tmp_path / "p.zip", on_entry=lambda n, name: seen.append(n))
        assert seen == list(range(1, len(seen) + 1))
        assert len(seen) >= 4


class TestCreate:
    def test_returns_token_metadata(self, manager, wp_root, config):
        info = manager.create(wp_root / "wp-content" / "themes" / "twentytwentyfour", "twentytwentyfour", "theme")
        assert TOKEN_RE.match(info["token"])
        assert info["filename"].startswith("twentytwentyfour-theme-")
        assert info["filename"].endswith(".zip")
        assert info["expires_in"] == 300
        assert info["size"] == manager.artifact_path(info["token"]).stat().st_size
        assert info["download_url"] == f"/foundry/v1/download?token={info['token']}"

    def test_record_persisted_twice(self, manager, wp_root, store):
        info = manager.create(wp_root / "wp-includes", "core", "files")
        token = info["token"]
        assert StoreAdapter(store).load(token).filename == info["filename"]
        sidecar = SidecarAdapter(manager.staging_dir).path_for(token)
        assert json.loads(sidecar.read_text())["token"] == token


class TestResolve:
    def test_malformed_token(self, manager):
        for token in ("", "xyz", "A" * 32, "a" * 31, "../../etc/passwd"):
            with pytest.raises(FoundryError) as exc_info:
                manager.resolve(token)
            assert exc_info.value.code == ErrorCode.TOKEN_MALFORMED
            assert exc_info.value.http_status == 400

    def test_unknown_token(self, manager):
        with pytest.raises(FoundryError) as exc_info:
            manager.resolve("0" * 32)
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND
        assert exc_info.value.http_status == 404

    def test_sidecar_survives_store_loss(self, config, wp_root, wall):
        first = ArchiveManager(config=config, store=MemoryStore(clock=wall), clock=wall)
        info = first.create(wp_root / "wp-includes", "core", "files")
        restarted = ArchiveManager(config=config, store=MemoryStore(clock=wall), clock=wall)
        assert restarted.resolve(info["token"]).filename == info["filename"]

    def test_guessed_filename_fallback(self, manager, wp_root, store):
        info = manager.create(wp_root / "wp-includes", "core", "files")
        token = info["token"]
        StoreAdapter(store).discard(token)
        SidecarAdapter(manager.staging_dir).discard(token)
        record = manager.resolve(token)
        assert record.path == str(manager.artifact_path(token))

    def test_expired_record_reaped(self, manager, wp_root, store, wall):
        info = manager.create(wp_root / "wp-includes", "core", "files")
        token = info["token"]
        wall.offset = 301
        # The store forgets on its own; the sidecar still holds the record
        with pytest.raises(FoundryError) as exc_info:
            manager.resolve(token)
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND
        assert not SidecarAdapter(manager.staging_dir).path_for(token).exists()

    def test_expired_guess_is_not_deleted(self, manager, wp_root, store, wall):
        info = manager.create(wp_root / "wp-includes", "core", "files")
        token = info["token"]
        StoreAdapter(store).discard(token)
        SidecarAdapter(manager.staging_dir).discard(token)
        wall.offset = 301
        with pytest.raises(FoundryError) as exc_info:
            manager.resolve(token)
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND
        assert manager.artifact_path(token).exists()


class TestConsume:
    def test_single_use(self, manager, wp_root, tmp_path):
        theme = wp_root / "wp-content" / "themes" / "twentytwentyfour"
        info = manager.create(theme, "twentytwentyfour", "theme")

        record, chunks = manager.consume(info["token"])
        payload = drain(chunks)
        assert record.filename == info["filename"]
        assert len(payload) == info["size"]

        (tmp_path / "dl.zip").write_bytes(payload)
        assert snapshot(extract(tmp_path / "dl.zip", tmp_path / "dl")) == snapshot(theme)
        assert list(manager.staging_dir.glob(f"*{info['token']}*")) == []

        with pytest.raises(FoundryError) as exc_info:
            manager.consume(info["token"])
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND

    def test_unknown_and_expired(self, manager, wp_root, wall):
        with pytest.raises(FoundryError) as exc_info:
            manager.consume("f" * 32)
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND

        info = manager.create(wp_root / "wp-includes", "core", "files")
        wall.offset = 400
        with pytest.raises(FoundryError) as exc_info:
            manager.consume(info["token"])
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND

    def test_concurrent_consumers_single_winner(self, manager, wp_root):
        info = manager.create(wp_root / "wp-content" / "plugins", "plugins", "files")
        outcomes = []
        barrier = threading.Barrier(6)

        def _consume():
            barrier.wait()
            try:
                _, chunks = manager.consume(info["token"])
                outcomes.append(len(drain(chunks)))
            except FoundryError as exc:
                outcomes.append(exc.code)

        threads = [threading.Thread(target=_consume) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert outcomes.count(ErrorCode.TOKEN_NOT_FOUND) == 5
        assert info["size"] in outcomes

    def test_two_managers_single_winner(self, config, wp_root, wall):
        shared = MemoryStore(clock=wall)
        a = ArchiveManager(config=config, store=shared, clock=wall)
        b = ArchiveManager(config=config, store=MemoryStore(clock=wall), clock=wall)
        info = a.create(wp_root / "wp-includes", "core", "files")
        _, chunks = a.consume(info["token"])
        with pytest.raises(FoundryError) as exc_info:
            b.consume(info["token"])
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND
        drain(chunks)

    def test_claim_failure_is_open_error(self, manager, wp_root, monkeypatch):
        info = manager.create(wp_root / "wp-includes", "core", "files")

        def _deny(src, dst):
            raise PermissionError(13, "Permission denied", src)

        monkeypatch.setattr("foundry.archive.manager.os.rename", _deny)
        with pytest.raises(FoundryError) as exc_info:
            manager.consume(info["token"])
        assert exc_info.value.code == ErrorCode.FILE_OPEN_FAILED
        assert exc_info.value.http_status == 500

    def test_open_failure(self, manager, wp_root, monkeypatch):
        info = manager.create(wp_root / "wp-includes", "core", "files")

        def _deny(*args, **kwargs):
            raise PermissionError("denied")

        monkeypatch.setattr("builtins.open", _deny)
        with pytest.raises(FoundryError) as exc_info:
            manager.consume(info["token"])
        monkeypatch.undo()
        assert exc_info.value.code == ErrorCode.FILE_OPEN_FAILED
        with pytest.raises(FoundryError) as exc_info:
            manager.resolve(info["token"])
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND


class TestUploads:
    def _zip_bytes(self, tmp_path):
        path = tmp_path / "plugin.zip"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("my-plugin/my-plugin.php", "<?php\n")
        return path.read_bytes()

    def test_store_and_delete(self, manager, tmp_path):
        info = manager.store_upload(self._zip_bytes(tmp_path), "my-plugin.zip")
        record = manager.resolve_upload(info["token"])
        assert record.filename == "my-plugin.zip"
        assert os.path.exists(record.path)

        manager.delete_upload(info["token"])
        assert not os.path.exists(record.path)
        with pytest.raises(FoundryError) as exc_info:
            manager.delete_upload(info["token"])
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND

    def test_rejects_non_zip(self, manager):
        with pytest.raises(FoundryError) as exc_info:
            manager.store_upload(b"not a zip", "evil.zip")
        assert exc_info.value.code == ErrorCode.ARCHIVE_INVALID
        assert list(manager.staging_dir.glob("foundry-upload-*")) == []

    def test_upload_tokens_do_not_download(self, manager, tmp_path):
        info = manager.store_upload(self._zip_bytes(tmp_path), "my-plugin.zip")
        with pytest.raises(FoundryError) as exc_info:
            manager.consume(info["token"])
        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND
