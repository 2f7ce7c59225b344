from __future__ import annotations

import os
import signal
import threading
from typing import Any, Callable

from containership.observability.logging import ServiceLogger


TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class TerminationHandler:
    """Logs the signal, flushes the logger and exits at once.

    In-flight requests are not drained. The exit code is 0 for every handled
    signal: SIGTERM is the orchestrator's normal stop request.
    """

    def __init__(self, logger: ServiceLogger, exit_func: Callable[[int], Any] = os._exit) -> None:
        self.logger = logger
        self.exit_func = exit_func
        self._previous: dict[int, Any] = {}

    def __call__(self, signum: int, frame: Any) -> None:
        _ = frame
        name = signal.Signals(signum).name
        self.logger.info(f"{name} received, shutting down", signal=name)
        self.logger.close()
        self.exit_func(0)

    def install(self) -> bool:
        # signal.signal() is only allowed from the main thread.
        if threading.current_thread() is not threading.main_thread():
            return False
        for signum in TERMINATION_SIGNALS:
            self._previous[signum] = signal.signal(signum, self)
        return True

    def uninstall(self) -> None:
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)
        self._previous.clear()
