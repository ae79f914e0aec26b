import logging
import threading
import time
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class TaskHandle:
    """A deferred callback that can be cancelled before it (next) fires."""

    def __init__(self, name: str = 'task'):
        self.name = name
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


def _spawn_thread(target, *args):
    worker = threading.Thread(target=target, args=args, daemon=True)
    worker.start()
    return worker


class Scheduler:
    """Run callbacks later or periodically on background workers.

    - ``spawn`` starts a background task (``socketio.start_background_task``
      inside the app, a daemon thread otherwise)
    - ``sleep`` must cooperate with ``spawn`` (``socketio.sleep`` under
      eventlet/gevent)
    - ``now_ms`` is a monotonic clock in milliseconds, used for tick deltas
    """

    def __init__(self, spawn: Optional[Callable] = None, sleep: Optional[Callable] = None):
        self._spawn = spawn or _spawn_thread
        self._sleep = sleep or time.sleep

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0

    def call_later(self, delay_sec: float, callback: Callable[[], None], name: str = 'later') -> TaskHandle:
        handle = TaskHandle(name)

        def _runner():
            self._sleep(max(0.0, delay_sec))
            if handle.cancelled:
                return
            handle.cancelled = True
            try:
                callback()
            except Exception:
                logger.exception(f"[scheduler] one-shot task {handle.name} failed")

        self._spawn(_runner)
        return handle

    def call_every(self, period_sec: float, callback: Callable[[], None], name: str = 'every') -> TaskHandle:
        handle = TaskHandle(name)

        def _runner():
            while True:
                self._sleep(period_sec)
                if handle.cancelled:
                    return
                try:
                    callback()
                except Exception:
                    logger.exception(f"[scheduler] periodic task {handle.name} failed")

        self._spawn(_runner)
        return handle
