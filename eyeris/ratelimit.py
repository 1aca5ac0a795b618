"""Per-provider permits bounding concurrent and per-window outbound calls."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from .config import AppConfig, ProviderSettings, RateLimitMode
from .errors import InvalidRequest, RateLimited, RequestCancelled

logger = logging.getLogger(__name__)

# Waiters re-check their cancellation flag at least this often.
_CANCEL_POLL_SECONDS = 0.05


@dataclass(frozen=True, slots=True)
class RateLimitPolicy:
    """Ceilings applied to one provider."""

    max_concurrency: int
    requests_per_window: int | None = None
    window_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> RateLimitPolicy:
        return cls(
            max_concurrency=settings.max_concurrency,
            requests_per_window=settings.requests_per_window,
            window_seconds=settings.window_seconds,
        )


class Permit:
    """A held slot for one outstanding call to ``provider``.

    Use it as a context manager so the slot is returned on every exit path.
    Releasing more than once is harmless.
    """

    def __init__(self, gate: _ProviderGate) -> None:
        self._gate = gate
        self._released = False

    @property
    def provider(self) -> str:
        return self._gate.name

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Return the slot; False when it had already been returned."""
        return self._gate.release(self)

    def __enter__(self) -> Permit:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class _ProviderGate:
    def __init__(self, name: str, policy: RateLimitPolicy, clock: Callable[[], float]) -> None:
        self.name = name
        self.policy = policy
        self._clock = clock
        self._condition = threading.Condition()
        self._in_flight = 0
        self._starts: deque[float] = deque()
        self.acquired_total = 0
        self.released_total = 0

    @property
    def in_flight(self) -> int:
        with self._condition:
            return self._in_flight

    def _prune(self, now: float) -> None:
        horizon = now - self.policy.window_seconds
        while self._starts and self._starts[0] <= horizon:
            self._starts.popleft()

    def _window_full(self) -> bool:
        limit = self.policy.requests_per_window
        return limit is not None and len(self._starts) >= limit

    def acquire(
        self,
        *,
        block: bool,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> Permit:
        deadline = None if timeout is None else self._clock() + timeout
        with self._condition:
            while True:
                if cancel is not None and cancel.is_set():
                    raise RequestCancelled(f"Cancelled while waiting for a {self.name} permit.")
                now = self._clock()
                self._prune(now)
                concurrency_full = self._in_flight >= self.policy.max_concurrency
                if not concurrency_full and not self._window_full():
                    self._in_flight += 1
                    self.acquired_total += 1
                    if self.policy.requests_per_window is not None:
                        self._starts.append(now)
                    return Permit(self)

                if not block:
                    raise RateLimited(self._describe_limit(concurrency_full))
                remaining = None if deadline is None else deadline - now
                if remaining is not None and remaining <= 0:
                    raise RateLimited(
                        f"Timed out after {timeout}s waiting for a {self.name} permit; "
                        + self._describe_limit(concurrency_full)
                    )

                waits = [_CANCEL_POLL_SECONDS if cancel is not None else None, remaining]
                if not concurrency_full and self._starts:
                    waits.append(self._starts[0] + self.policy.window_seconds - now)
                bounded = [value for value in waits if value is not None]
                self._condition.wait(min(bounded) if bounded else None)

    def release(self, permit: Permit) -> bool:
        with self._condition:
            if permit._released:
                return False
            permit._released = True
            self._in_flight -= 1
            self.released_total += 1
            self._condition.notify_all()
            return True

    def _describe_limit(self, concurrency_full: bool) -> str:
        if concurrency_full:
            return (
                f"provider '{self.name}' already has {self.policy.max_concurrency} "
                "calls in flight."
            )
        return (
            f"provider '{self.name}' allows {self.policy.requests_per_window} calls "
            f"per {self.policy.window_seconds:g}s."
        )


class RateLimiter:
    """Hands out provider permits according to each provider's policy."""

    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy],
        *,
        mode: RateLimitMode = RateLimitMode.WAIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.mode = mode
        self._gates = {name: _ProviderGate(name, policy, clock) for name, policy in policies.items()}

    @classmethod
    def from_config(cls, config: AppConfig) -> RateLimiter:
        policies = {
            name: RateLimitPolicy.from_settings(settings)
            for name, settings in config.providers.items()
        }
        return cls(policies, mode=config.rate_limit_mode)

    def _gate(self, provider: str) -> _ProviderGate:
        try:
            return self._gates[provider]
        except KeyError:
            raise InvalidRequest(f"No rate limit policy for provider '{provider}'.") from None

    def acquire(
        self,
        provider: str,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Permit:
        """Obtain a permit, waiting up to ``timeout`` seconds in wait mode.

        Raises ``RateLimited`` when no slot frees up in time, or immediately
        in reject mode.
        """
        gate = self._gate(provider)
        permit = gate.acquire(
            block=self.mode is RateLimitMode.WAIT,
            timeout=timeout,
            cancel=cancel,
        )
        logger.debug("Acquired %s permit (%d in flight)", provider, gate.in_flight)
        return permit

    def release(self, permit: Permit) -> bool:
        return permit.release()

    def outstanding(self, provider: str) -> int:
        return self._gate(provider).in_flight

    def acquired_total(self, provider: str) -> int:
        return self._gate(provider).acquired_total

    def released_total(self, provider: str) -> int:
        return self._gate(provider).released_total
