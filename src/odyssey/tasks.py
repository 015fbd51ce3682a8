"""Cancellable background tasks for polling and expiry sweeps."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """Cancellation flag with an interruptible sleep."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return False if cancelled meanwhile."""
        if seconds <= 0:
            return not self.cancelled
        return not self._event.wait(seconds)


class CancellableTask(Generic[T]):
    """Runs ``target(token)`` once, in the caller's thread or a daemon thread.

    ``cancel()`` sets the token; the target is expected to check it after each
    suspension point and return without applying anything it received late.
    """

    def __init__(self, target: Callable[[CancelToken], T], name: str = "odyssey-task"):
        self._target = target
        self.name = name
        self.token = CancelToken()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._result: Optional[T] = None
        self._error: Optional[BaseException] = None

    def start(self) -> CancellableTask[T]:
        if self._thread is not None:
            raise RuntimeError(f"Task {self.name} already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def run(self) -> T:
        """Run in the calling thread and return the result."""
        self._run()
        return self.wait()

    def _run(self) -> None:
        try:
            self._result = self._target(self.token)
        except BaseException as e:
            self._error = e
            logger.debug("Task %s failed: %s", self.name, e)
        finally:
            self._done.set()

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> T:
        if not self._done.wait(timeout):
            raise TimeoutError(f"Task {self.name} still running")
        if self._error is not None:
            raise self._error
        return self._result  # type: ignore[return-value]
