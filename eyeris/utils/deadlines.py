"""Per-request deadlines and cancellation shared by every suspension point."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from ..errors import RequestCancelled


class RequestContext:
    """Deadline plus cancellation flag carried through one analysis request."""

    def __init__(
        self,
        timeout: float | None = None,
        *,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._deadline = None if timeout is None else clock() + timeout
        self._cancel_event = cancel_event or threading.Event()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def bound(self, timeout: float | None) -> float | None:
        """Clamp a stage timeout so it never outlives the request deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def check(self, stage: str) -> None:
        """Raise if the request was cancelled or ran out of time before ``stage``."""
        if self.cancelled:
            raise RequestCancelled(f"Request cancelled during {stage}.")
        if self.expired():
            raise RequestCancelled(f"Request deadline elapsed during {stage}.")

    def sleep(self, seconds: float) -> None:
        """Pause for ``seconds`` unless cancelled first."""
        if seconds <= 0:
            return
        bounded = self.bound(seconds)
        if self._cancel_event.wait(bounded or 0.0):
            raise RequestCancelled("Request cancelled while waiting to retry.")
