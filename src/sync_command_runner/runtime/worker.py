"""Worker thread owning the lifecycle of one child process.

This module provides:
- Single-command validation (no ``&&`` or ``;`` chaining)
- Running the command through ``/bin/sh -c``
- Launching under the process-wide :class:`LaunchSerializer`
- Redirection of the child's stdout/stderr into append-mode log files
- Blocking wait (reaping) of the child in a dedicated daemon thread

Key design points:
- POSIX: start_new_session=True puts the shell and everything it starts in
  one process group; signals are sent to that group so they reach the
  command whether or not the shell exec'd it
- The child is reaped under a lock shared with send_signal, so a signal
  never reaches a recycled pid
- The launch lock is released before the blocking wait
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from ..errors import ConfigurationError
from .launcher import LaunchSerializer

__all__ = [
    "ProcessSpec",
    "Worker",
    "parse_command",
]

logger = logging.getLogger(__name__)

# Chaining operators a single command must not contain
FORBIDDEN_OPERATORS = ("&&", ";")

# Shell used to run the command string
SHELL = "/bin/sh"


def parse_command(command: object) -> list[str]:
    """Validate a single shell command and build the argv that runs it.

    Args:
        command: Command string supplied by the command source

    Returns:
        ``[SHELL, "-c", command]``

    Raises:
        ConfigurationError: If the command is missing, chained or unparsable
    """
    if not isinstance(command, str) or not command.strip():
        raise ConfigurationError(f"{command!r} is not a command")
    for operator in FORBIDDEN_OPERATORS:
        if operator in command:
            raise ConfigurationError(f"{command!r} must be a single command")
    try:
        shlex.split(command)
    except ValueError as e:
        raise ConfigurationError(f"{command!r} cannot be parsed: {e}") from e
    return [SHELL, "-c", command]


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a child process to launch.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process
        stdout_path: Append-mode log file receiving stdout
        stderr_path: Append-mode log file receiving stderr
        env: Extra environment variables layered over os.environ
    """

    argv: list[str]
    cwd: Path
    stdout_path: Path
    stderr_path: Path
    env: Mapping[str, str] | None = None


class Worker:
    """Spawns one child process and waits for it in a daemon thread.

    Example:
        worker = Worker(spec, get_launch_serializer(), on_spawn=record_pid)
        worker.start()
        worker.wait_launched()
        ...
        worker.send_signal(signal.SIGTERM)
        worker.join()
    """

    def __init__(
        self,
        spec: ProcessSpec,
        serializer: LaunchSerializer,
        *,
        prepare_env: Callable[[MutableMapping[str, str]], None] | None = None,
        on_spawn: Callable[[int], None] | None = None,
        name: str = "worker",
    ) -> None:
        self.spec = spec
        self._serializer = serializer
        self._prepare_env = prepare_env
        self._on_spawn = on_spawn
        self._name = name

        self._process: subprocess.Popen | None = None
        self._launched = threading.Event()
        # Held while reaping and while signalling
        self._reap_lock = threading.Lock()
        self._thread: threading.Thread | None = None

        self.stdout_log: IO[str] | None = None
        self.stderr_log: IO[str] | None = None
        self.returncode: int | None = None
        self.error: Exception | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, daemon=True, name=f"{self._name}_worker"
        )
        self._thread.start()

    def wait_launched(self, timeout: float | None = None) -> bool:
        """Block until the spawn succeeded or failed.

        Returns:
            False if the timeout elapsed first
        """
        return self._launched.wait(timeout)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def send_signal(self, signum: int) -> bool:
        """Send a signal to the child's process group, best-effort.

        Returns:
            True if the signal was delivered to a live process group
        """
        process = self._process
        if process is None:
            return False
        with self._reap_lock:
            if process.returncode is not None:
                return False
            try:
                os.killpg(process.pid, signum)
            except ProcessLookupError:
                logger.debug(f"Process group already gone pgid={process.pid}")
                return False
        return True

    def _run(self) -> None:
        try:
            process = self._launch()
        except Exception as e:
            self.error = e
            logger.debug(f"{self._name}: launch failed: {e!r}")
            self._launched.set()
            return

        self._launched.set()
        # Wait for exit without reaping; the pid stays reserved until the
        # lock below is taken
        os.waitid(os.P_PID, process.pid, os.WEXITED | os.WNOWAIT)
        with self._reap_lock:
            self.returncode = process.wait()
        logger.debug(
            f"{self._name}: child reaped pid={process.pid} "
            f"returncode={self.returncode}"
        )

    def _launch(self) -> subprocess.Popen:
        spec = self.spec
        with self._serializer.exclusive() as serializer:
            env = dict(os.environ)
            if spec.env:
                env.update(spec.env)
            if self._prepare_env is not None:
                self._prepare_env(env)

            spec.stdout_path.parent.mkdir(parents=True, exist_ok=True)
            spec.stderr_path.parent.mkdir(parents=True, exist_ok=True)
            out = open(spec.stdout_path, "a", encoding="utf-8")
            err = open(spec.stderr_path, "a", encoding="utf-8")
            serializer.track(out, err)
            self.stdout_log, self.stderr_log = out, err

            self._process = subprocess.Popen(
                spec.argv,
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=err,
                cwd=spec.cwd,
                env=env,
                start_new_session=True,
            )

        logger.debug(
            f"{self._name}: started pid={self._process.pid} "
            f"argv={spec.argv!r} cwd={spec.cwd}"
        )
        if self._on_spawn is not None:
            self._on_spawn(self._process.pid)
        return self._process
