"""
foundry/engine/runner.py

Runs the external management tool (WP-CLI) and turns its combined
stdout/stderr into stream events, one line at a time.

The argument vector is passed straight to the process; no shell is ever
involved. Each non-empty line becomes either a `command_data` event (when it
decodes as JSON) or a classified `command_output` event.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from typing import Dict, List, Optional, Sequence

from foundry.base.config import FoundryConfig, get_config
from foundry.engine.classifier import classify_line
from foundry.engine.emitter import EventEmitter
from foundry.errors import ErrorCode, FoundryError

logger = logging.getLogger(__name__)


class ProcessRunner:
    def __init__(self, config: Optional[FoundryConfig] = None):
        self._config = config

    @property
    def config(self) -> FoundryConfig:
        return self._config or get_config()

    def build_argv(self, args: Sequence[str]) -> List[str]:
        return [self.config.host.wp_binary, *args]

    def build_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["WP_CLI_CACHE_DIR"] = str(self.config.storage.cache_path)
        env["PAGER"] = "cat"
        env.setdefault("HOME", str(self.config.storage.base_dir))
        return env

    def spawn(self, args: Sequence[str]) -> subprocess.Popen:
        """
        Start the tool with stderr folded into stdout.

        Raises:
            FoundryError: PROCESS_SPAWN_FAILED when the process cannot start
        """
        argv = self.build_argv(args)
        logger.info(f"[Runner] Executing: {' '.join(argv)}")
        try:
            return subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                errors="replace",
                cwd=str(self.config.host.app_root),
                env=self.build_env(),
            )
        except OSError as exc:
            logger.error(f"[Runner] Failed to start {argv[0]}: {exc}")
            raise FoundryError(
                ErrorCode.PROCESS_SPAWN_FAILED,
                f"Failed to start command: {exc}",
                details={"binary": argv[0]},
            )

    def pump(self, proc: subprocess.Popen, emitter: EventEmitter) -> int:
        """Forward every output line of proc to emitter and return its exit code."""
        cancel = self.config.host.cancel_on_disconnect
        try:
            if proc.stdout:
                for raw in proc.stdout:
                    line = raw.rstrip("\r\n")
                    if not line.strip():
                        continue

                    number = emitter.next_line()
                    try:
                        value = json.loads(line)
                    except ValueError:
                        emitter.output(line, number, classify_line(line))
                    else:
                        emitter.data(value, number, line)
                    emitter.maybe_progress()

                    if cancel and not emitter.connected:
                        logger.info(f"[Runner] Terminating pid {proc.pid} after client disconnect")
                        proc.terminate()
                        break
        finally:
            if proc.stdout:
                proc.stdout.close()
        return proc.wait()

    def run_step(self, args: Sequence[str], emitter: EventEmitter) -> int:
        """Run one process inside an already started stream, without a terminal event."""
        return self.pump(self.spawn(args), emitter)

    def execute(self, args: Sequence[str], emitter: EventEmitter) -> Optional[int]:
        """
        Run a complete command stream: start, lines, then exactly one terminal event.

        Returns the exit code, or None when the process never started.
        """
        try:
            proc = self.spawn(args)
        except FoundryError as exc:
            emitter.fail(exc)
            return None

        emitter.start(pid=proc.pid)
        try:
            exit_code = self.pump(proc, emitter)
        except Exception as exc:
            logger.exception(f"[Runner] Output pump crashed for pid {proc.pid}")
            proc.kill()
            proc.wait()
            emitter.error(ErrorCode.INTERNAL_ERROR, f"Output processing failed: {exc}")
            return None

        logger.info(f"[Runner] Exit code: {exit_code} ({emitter.lines} lines)")
        if exit_code == 0:
            emitter.complete(exit_code)
        else:
            emitter.error(
                ErrorCode.PROCESS_EXIT_NONZERO,
                f"Command exited with code {exit_code}",
                exit_code=exit_code,
            )
        return exit_code
