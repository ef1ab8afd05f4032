import threading
from typing import Any, Callable


class ScheduledTask:
    """Handle for a deferred callback; cancelling it turns the fire into a no-op."""

    def __init__(self, delay: float, callback: Callable[..., Any], args: tuple = ()):
        self.delay = delay
        self.callback = callback
        self.args = args
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def fire(self) -> None:
        if self.cancelled:
            return
        self.callback(*self.args)


class Scheduler:
    """Runs callbacks after a delay on a Socket.IO background task.

    Using the Socket.IO server's own task/sleep primitives keeps timers on
    the same async model (threading, eventlet or gevent) as the handlers.
    """

    def __init__(self, sio):
        self.sio = sio

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> ScheduledTask:
        task = ScheduledTask(delay, callback, args)
        self.sio.start_background_task(self._worker, task)
        return task

    def _worker(self, task: ScheduledTask) -> None:
        if task.delay > 0:
            self.sio.sleep(task.delay)
        task.fire()
