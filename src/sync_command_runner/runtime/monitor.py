"""Monitor thread escalating a stop request into OS signals.

The monitor blocks on the runner's stop event instead of polling a flag.
Once the event is set it sends SIGTERM immediately followed by SIGINT (no
grace period in between), waits for the worker to reap the child, reports
back and exits. This is its only transition; it never resumes waiting.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable

from .worker import Worker

__all__ = ["Monitor", "STOP_SIGNALS"]

logger = logging.getLogger(__name__)

# Sent in this order, back to back
STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class Monitor:
    """Waits for a stop request, then signals and joins the worker.

    Attributes:
        worker: The worker whose child is terminated
        stop_event: Set by the owner to request termination
    """

    def __init__(
        self,
        worker: Worker,
        stop_event: threading.Event,
        *,
        on_finished: Callable[[], None] | None = None,
        describe: Callable[[], str] | None = None,
    ) -> None:
        self.worker = worker
        self.stop_event = stop_event
        self._on_finished = on_finished
        self._describe = describe or (lambda: "monitor")
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        logger.debug(f"{self._describe()} monitoring started")
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="runner_monitor"
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        self.stop_event.wait()

        for signum in STOP_SIGNALS:
            logger.debug(f"{self._describe()}: sending {signum.name[3:]}")
            self.worker.send_signal(signum)

        logger.debug(f"{self._describe()}: waiting on worker")
        self.worker.join()
        logger.debug(f"{self._describe()}: joined")

        if self._on_finished is not None:
            self._on_finished()
