"""Dispatch of validated commands to built-ins and WP-CLI."""
import os
import sys
import zipfile
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from foundry import __version__
from foundry.archive.manager import ArchiveManager
from foundry.commands.builtins import Builtins
from foundry.commands.dispatcher import CommandDispatcher, parse_command
from foundry.commands.validator import validate_command
from foundry.engine.emitter import EventEmitter
from foundry.engine.runner import ProcessRunner
from foundry.engine.sink import CollectingSink
from foundry.errors import ErrorCode, FoundryError


@pytest.fixture
def runner():
    mock = MagicMock(spec=ProcessRunner)
    mock.run_step.return_value = 0
    return mock


@pytest.fixture
def archives(config, store):
    return ArchiveManager(config=config, store=store)


@pytest.fixture
def dispatcher(config, runner, archives):
    return CommandDispatcher(runner=runner, builtins=Builtins(runner=runner, archives=archives))


def run(dispatcher, command):
    sink = CollectingSink()
    emitter = dispatcher.run(command, sink)
    return sink, emitter


def data_events(sink):
    return [e.data["data"] for e in sink.events if e.type.value == "command_data"]


class Ticking:
    """Monotonic clock that moves forward a fixed step on every read."""

    def __init__(self, step):
        self.now = 0.0
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


class TestRouting:
    def test_external_command_goes_to_runner(self, dispatcher, runner):
        run(dispatcher, "plugin list --format=json")
        runner.execute.assert_called_once()
        args = runner.execute.call_args[0][0]
        assert args == ["plugin", "list", "--format=json"]

    def test_wp_prefix_is_dropped(self, dispatcher, runner):
        run(dispatcher, "wp core version")
        assert runner.execute.call_args[0][0] == ["core", "version"]

    def test_quoted_arguments_survive(self, dispatcher, runner):
        run(dispatcher, 'option update blogname "My Site"')
        assert runner.execute.call_args[0][0] == ["option", "update", "blogname", "My Site"]

    def test_runner_without_terminal_event_is_closed_off(self, dispatcher, runner):
        sink, emitter = run(dispatcher, "plugin list")
        assert sink.types == ["command_error"]
        assert sink.events[0].data["code"] == "internal_error"
        assert emitter.terminated

    def test_unexpected_exception_becomes_internal_error(self, dispatcher, runner):
        runner.execute.side_effect = RuntimeError("boom")
        sink, _ = run(dispatcher, "plugin list")
        assert sink.types == ["command_error"]
        assert "boom" in sink.events[0].data["message"]

    def test_validation_errors_raise_before_streaming(self, dispatcher, runner):
        with pytest.raises(FoundryError) as exc_info:
            run(dispatcher, "plugin list; rm -rf /")
        assert exc_info.value.code == ErrorCode.INJECTION_REJECTED
        runner.execute.assert_not_called()


class TestVersionBuiltins:
    def test_version(self, dispatcher):
        sink, emitter = run(dispatcher, "foundry version")
        assert sink.types == ["command_start", "command_data", "command_complete"]
        assert sink.events[0].data["builtin"] is True
        assert sink.events[0].data["subcommand"] == "version"
        info = data_events(sink)[0]
        assert info["helper"] == __version__
        assert info["core"] == "6.5.2"
        assert emitter.succeeded

    def test_core_version(self, dispatcher):
        sink, _ = run(dispatcher, "foundry core-version")
        assert data_events(sink) == [{"version": "6.5.2"}]
        assert sink.events[-1].data["result"] == {"version": "6.5.2"}

    def test_core_version_without_wordpress(self, dispatcher, wp_root):
        (wp_root / "wp-includes" / "version.php").unlink()
        sink, _ = run(dispatcher, "foundry core-version")
        assert sink.types == ["command_start", "command_error"]
        assert sink.events[-1].data["code"] == "path_not_found"

    def test_self_version(self, dispatcher, config):
        sink, _ = run(dispatcher, "foundry self-version")
        assert data_events(sink)[0]["install_dir"] == str(config.host.install_dir)

    def test_data_event_carries_raw_json(self, dispatcher):
        sink, _ = run(dispatcher, "foundry core-version")
        event = next(e for e in sink.events if e.type.value == "command_data")
        assert event.data["raw"] == '{"version": "6.5.2"}'
        assert event.data["line"] == 1


class TestBuiltinErrors:
    def test_unknown_subcommand(self, dispatcher):
        sink, _ = run(dispatcher, "foundry frobnicate")
        assert sink.types == ["command_start", "command_error"]
        error = sink.events[-1].data
        assert error["code"] == "unknown_subcommand"
        assert "backup-plugin" in error["available"]

    def test_missing_slug(self, dispatcher):
        sink, _ = run(dispatcher, "foundry backup-plugin")
        assert sink.types == ["command_start", "command_error"]
        assert sink.events[-1].data["code"] == "missing_argument"

    def test_invalid_slug(self, dispatcher):
        sink, _ = run(dispatcher, "foundry backup-theme Twenty.Four")
        assert sink.events[-1].data["code"] == "invalid_slug"
        assert sink.events[-1].data["details"] == {"slug": "Twenty.Four"}

    def test_missing_theme(self, dispatcher):
        sink, _ = run(dispatcher, "foundry backup-theme no-such-theme")
        assert sink.events[-1].data["code"] == "path_not_found"


class TestBackups:
    def test_backup_theme(self, dispatcher, archives, tmp_path):
        sink, _ = run(dispatcher, "foundry backup-theme twentytwentyfour")
        assert sink.types[0] == "command_start"
        assert sink.types[-1] == "command_complete"
        info = data_events(sink)[-1]
        assert info["filename"].startswith("twentytwentyfour-theme-")

        _, chunks = archives.consume(info["token"])
        (tmp_path / "t.zip").write_bytes(b"".join(chunks))
        with zipfile.ZipFile(tmp_path / "t.zip") as zf:
            assert "style.css" in zf.namelist()

    def test_backup_plugin_directory(self, dispatcher):
        sink, _ = run(dispatcher, "foundry backup-plugin hello-dolly")
        assert sink.types[-1] == "command_complete"
        assert data_events(sink)[-1]["filename"].startswith("hello-dolly-plugin-")

    def test_backup_single_file_plugin(self, dispatcher, archives, tmp_path):
        sink, _ = run(dispatcher, "foundry backup-plugin akismet-lite")
        info = data_events(sink)[-1]
        _, chunks = archives.consume(info["token"])
        (tmp_path / "p.zip").write_bytes(b"".join(chunks))
        with zipfile.ZipFile(tmp_path / "p.zip") as zf:
            assert zf.namelist() == ["akismet-lite.php"]

    def test_backup_content_excludes(self, dispatcher, archives, tmp_path):
        sink, _ = run(dispatcher, "foundry backup-content --exclude=cache,uploads")
        info = data_events(sink)[-1]
        _, chunks = archives.consume(info["token"])
        (tmp_path / "c.zip").write_bytes(b"".join(chunks))
        with zipfile.ZipFile(tmp_path / "c.zip") as zf:
            names = zf.namelist()
        assert "themes/twentytwentyfour/style.css" in names
        assert not any(n.startswith(("cache", "uploads")) for n in names)

    def test_backup_content_reports_entries(self, dispatcher):
        envelope = parse_command(validate_command("foundry backup-content"))
        sink = CollectingSink()
        emitter = EventEmitter(sink, command=envelope.raw, monotonic=Ticking(2.5))
        dispatcher.dispatch(envelope, emitter)

        assert sink.types[0] == "command_start"
        assert sink.types[-1] == "command_complete"
        counted = [
            i for i, e in enumerate(sink.events)
            if e.type.value == "command_progress" and "entries" in e.data
        ]
        assert counted
        assert 0 < counted[0] and counted[-1] < len(sink.events) - 1
        entries = [sink.events[i].data["entries"] for i in counted]
        assert entries == sorted(entries)
        assert entries[0] >= 1

    def test_backup_db(self, dispatcher, runner, archives, tmp_path):
        def _export(args, emitter):
            with open(args[2], "w") as fh:
                fh.write("CREATE TABLE wp_options (option_id int);\n")
            return 0

        runner.run_step.side_effect = _export
        sink, _ = run(dispatcher, "foundry backup-db")
        assert sink.types[-1] == "command_complete"
        dump = runner.run_step.call_args[0][0][2]
        assert runner.run_step.call_args[0][0][:2] == ["db", "export"]
        assert not os.path.exists(dump)

        info = data_events(sink)[-1]
        assert info["filename"].startswith("wordpress-db-")
        _, chunks = archives.consume(info["token"])
        (tmp_path / "db.zip").write_bytes(b"".join(chunks))
        with zipfile.ZipFile(tmp_path / "db.zip") as zf:
            assert zf.namelist() == [os.path.basename(dump)]

    def test_backup_db_export_failure(self, dispatcher, runner):
        runner.run_step.return_value = 1
        sink, _ = run(dispatcher, "foundry backup-db")
        assert sink.types == ["command_start", "command_error"]
        assert sink.events[-1].data["code"] == "command_failed"


class TestListFiles:
    def test_lists_with_filters(self, dispatcher):
        sink, _ = run(dispatcher, "foundry list-files wp-content/themes --include=*.php,*.css")
        paths = sorted(d["path"] for d in data_events(sink))
        assert paths == ["twentytwentyfour/functions.php", "twentytwentyfour/style.css"]
        assert sink.events[-1].data["result"]["files"] == 2

    def test_depth_option(self, dispatcher):
        sink, _ = run(dispatcher, "foundry list-files wp-content --depth=0")
        assert data_events(sink) == []

    def test_bad_depth(self, dispatcher):
        sink, _ = run(dispatcher, "foundry list-files --depth=deep")
        assert sink.events[-1].data["code"] == "missing_argument"


class TestInstallUpload:
    def _upload(self, archives, tmp_path):
        path = tmp_path / "my-plugin.zip"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("my-plugin/my-plugin.php", "<?php\n")
        return archives.store_upload(path.read_bytes(), "my-plugin.zip")

    def test_installs_and_removes_upload(self, dispatcher, runner, archives, tmp_path):
        info = self._upload(archives, tmp_path)
        sink, _ = run(dispatcher, f"foundry install-upload {info['token']}")
        args = runner.run_step.call_args[0][0]
        assert args[0:2] == ["plugin", "install"]
        assert args[-1] == "--force"
        assert sink.events[-1].data["result"] == {"installed": "my-plugin.zip", "type": "plugin"}
        with pytest.raises(FoundryError):
            archives.resolve_upload(info["token"])

    def test_theme_target(self, dispatcher, runner, archives, tmp_path):
        info = self._upload(archives, tmp_path)
        run(dispatcher, f"foundry install-upload {info['token']} theme")
        assert runner.run_step.call_args[0][0][0] == "theme"

    def test_failed_install_keeps_upload(self, dispatcher, runner, archives, tmp_path):
        runner.run_step.return_value = 1
        info = self._upload(archives, tmp_path)
        sink, _ = run(dispatcher, f"foundry install-upload {info['token']}")
        assert sink.events[-1].data["code"] == "command_failed"
        assert archives.resolve_upload(info["token"]).filename == "my-plugin.zip"

    def test_unknown_upload_token(self, dispatcher):
        sink, _ = run(dispatcher, f"foundry install-upload {'a' * 32}")
        assert sink.events[-1].data["code"] == "token_not_found"
