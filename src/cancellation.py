"""
GitLab Backup - Cancellation Module

Cooperative cancellation for blocking waits (rate limiting, polling, storage I/O).

A CancelToken is passed down to every blocking call. Cancelling a token also
cancels every token derived from it; a token created with a timeout reports
DeadlineExceeded once its deadline has passed.
"""

import logging
import signal
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """Raised when a blocking operation is interrupted by cancellation."""


class DeadlineExceeded(OperationCancelled):
    """Raised when a token's deadline passes before the operation completes."""


class CancelToken:
    """Cancellation signal with an optional deadline."""

    def __init__(
        self,
        parent: Optional["CancelToken"] = None,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[CancelToken] = []
        self._parent = parent
        self._deadline = deadline
        self._clock = clock

        if parent is not None:
            parent._attach(self)

    def _attach(self, child: "CancelToken") -> None:
        with self._lock:
            self._children.append(child)
        if self._event.is_set():
            child.cancel()

    def with_timeout(self, seconds: float) -> "CancelToken":
        """Derive a token that expires ``seconds`` from now."""
        return CancelToken(parent=self, deadline=self._clock() + seconds, clock=self._clock)

    def child(self) -> "CancelToken":
        """Derive a token that is cancelled together with this one."""
        return CancelToken(parent=self, clock=self._clock)

    def cancel(self) -> None:
        """Cancel this token and every token derived from it."""
        self._event.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    def error(self) -> Optional[OperationCancelled]:
        """Return the cancellation error, or None while the token is live."""
        if self._event.is_set():
            return OperationCancelled("operation cancelled")
        if self._deadline is not None and self._clock() >= self._deadline:
            return DeadlineExceeded("deadline exceeded")
        if self._parent is not None:
            return self._parent.error()
        return None

    @property
    def cancelled(self) -> bool:
        return self.error() is not None

    def raise_if_cancelled(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    def remaining(self) -> Optional[float]:
        """Seconds until the nearest deadline, or None when there is none."""
        remaining = None
        if self._deadline is not None:
            remaining = self._deadline - self._clock()
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                remaining = parent_remaining if remaining is None else min(remaining, parent_remaining)
        return remaining

    def wait(self, seconds: float) -> None:
        """Block for ``seconds`` unless cancelled first.

        Raises:
            OperationCancelled: If the token is cancelled before or during the wait.
            DeadlineExceeded: If the deadline passes during the wait.
        """
        end = self._clock() + seconds
        while True:
            self.raise_if_cancelled()
            left = end - self._clock()
            if left <= 0:
                return
            remaining = self.remaining()
            if remaining is not None:
                left = min(left, max(remaining, 0.0))
            self._event.wait(left)


class ShutdownHandler:
    """Cancels a root token on SIGINT/SIGTERM.

    Blocking waits return promptly; callers still run their cleanup.
    """

    def __init__(self, token: CancelToken):
        self.token = token

    def request_shutdown(self, signum: int, frame) -> None:
        """Signal handler for shutdown requests."""
        signal_name = signal.Signals(signum).name
        logger.warning(f"Received {signal_name}, interrupting - cleaning up...")
        self.token.cancel()

    def install(self) -> None:
        signal.signal(signal.SIGTERM, self.request_shutdown)
        signal.signal(signal.SIGINT, self.request_shutdown)
