"""Process-wide launch serialization and log handle bookkeeping.

Only one child process may be in its launch critical section at a time,
system-wide. The critical section covers the environment hook, opening the
two log files, registering them in the shared log handle list, and the spawn
call itself. Once launched, children run concurrently; the lock is never held
for the lifetime of a child.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

__all__ = [
    "LaunchSerializer",
    "get_launch_serializer",
]

logger = logging.getLogger(__name__)


class LaunchSerializer:
    """Mutual-exclusion gate around child process launches.

    Example:
        serializer = get_launch_serializer()
        with serializer.exclusive():
            out = open(out_path, "a")
            err = open(err_path, "a")
            serializer.track(out, err)
            process = subprocess.Popen(argv, stdout=out, stderr=err)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._log_files: list[IO[str]] = []

    @contextmanager
    def exclusive(self) -> Iterator["LaunchSerializer"]:
        """Hold the launch lock for the duration of the block."""
        with self._lock:
            yield self

    def track(self, *files: IO[str]) -> None:
        """Append log handles to the shared list.

        Must be called while holding :meth:`exclusive`.
        """
        self._log_files.extend(files)

    @property
    def log_files(self) -> list[IO[str]]:
        """Snapshot of every tracked log handle."""
        with self._lock:
            return list(self._log_files)

    def write_marker(self, text: str) -> int:
        """Append one line to every open tracked log file.

        Holds the launch lock while writing, so no handle is closed or
        added mid-way and no child is being spawned onto these files.

        Args:
            text: Line to write (a trailing newline is added)

        Returns:
            Number of files written to
        """
        written = 0
        with self._lock:
            for f in self._log_files:
                if f.closed:
                    continue
                f.flush()
                f.write(f"{text}\n")
                f.flush()
                written += 1
        return written

    def close_log_files(self) -> int:
        """Close and forget every tracked log handle.

        Returns:
            Number of handles closed
        """
        with self._lock:
            files, self._log_files = self._log_files, []

        closed = 0
        for f in files:
            if f.closed:
                continue
            f.close()
            closed += 1
        if closed:
            logger.debug(f"Closed {closed} log file(s)")
        return closed


_serializer: LaunchSerializer | None = None
_serializer_lock = threading.Lock()


def get_launch_serializer() -> LaunchSerializer:
    """Return the process-wide launch serializer."""
    global _serializer
    with _serializer_lock:
        if _serializer is None:
            _serializer = LaunchSerializer()
        return _serializer
