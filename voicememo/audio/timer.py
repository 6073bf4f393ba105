"""Restartable periodic callback running on a daemon thread."""

import logging
from threading import Event, Thread
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """Calls ``callback`` every ``interval`` seconds until cancelled.

    The timer can be started again after ``cancel()``; each start spawns a
    fresh thread.
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "RepeatingTimer"):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = Event()
        self._thread = Thread(target=self._run, args=(self._stop_event,), daemon=True)
        self._thread.name = self.name
        self._thread.start()

    def cancel(self, timeout: float = 1.0) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"{self.name} did not stop cleanly")

    def _run(self, stop_event: Event) -> None:
        while not stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Error in {self.name} callback: {e}", exc_info=True)
