"""Core circuit breaker implementation."""

import functools
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import ParamSpec, TypeVar

from contract_core.circuit_breaker.exceptions import CircuitOpenError
from contract_core.circuit_breaker.listeners import BreakerListener
from contract_core.circuit_breaker.state import (
    BreakerSnapshot,
    BreakerStats,
    CircuitState,
)

T = TypeVar("T")
P = ParamSpec("P")

_Transition = tuple[CircuitState, CircuitState]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _TrialGate:
    """Bound the number of in-flight half-open trial calls per breaker."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._in_flight = 0

    def try_acquire(self) -> bool:
        if self._in_flight >= self._limit:
            return False
        self._in_flight += 1
        return True

    def release(self) -> None:
        self._in_flight = max(self._in_flight - 1, 0)


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures while ``CLOSED`` before opening.
        reset_timeout: Seconds to stay ``OPEN`` before allowing trial calls.
        half_open_successes: Consecutive trial successes required to close;
            also the cap on concurrent trial calls.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
    """

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    half_open_successes: int = 3
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")
        if self.half_open_successes < 1:
            raise ValueError("half_open_successes must be >= 1")


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation.

    One instance guards one dependency and is shared by every caller of that
    dependency, so failures aggregate across concurrent requests.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Create a breaker in the ``CLOSED`` state.

        Args:
            name: Identifies the guarded dependency in errors and events.
            config: Thresholds and exception filters; library defaults if
                omitted.
            listeners: Receive state changes and per-call outcomes.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._trial_gate = _TrialGate(self.config.half_open_successes)

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_at: datetime | None = None
        self._next_attempt_at: datetime | None = None

        self._total_requests = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejections = 0
        self._circuit_opens = 0
        self._last_state_change: datetime | None = _utcnow()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        """Return true while calls would be rejected without being attempted."""
        return self._state == CircuitState.OPEN and self._retry_after(_utcnow()) > 0

    def get_state(self) -> BreakerSnapshot:
        """Return a snapshot including the time remaining until a trial call."""
        retry_after = 0.0
        if self._state == CircuitState.OPEN:
            retry_after = self._retry_after(_utcnow())
        return BreakerSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            failure_threshold=self.config.failure_threshold,
            last_failure_at=self._last_failure_at,
            next_attempt_at=self._next_attempt_at,
            retry_after=retry_after,
            stats=BreakerStats(
                total_requests=self._total_requests,
                total_failures=self._total_failures,
                total_successes=self._total_successes,
                total_rejections=self._total_rejections,
                circuit_opens=self._circuit_opens,
                last_state_change=self._last_state_change,
            ),
        )

    async def reset(self) -> None:
        """Force the breaker ``CLOSED`` with zeroed counters."""
        old = self._state
        self._set_state(CircuitState.CLOSED)
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_at = None
        self._next_attempt_at = None
        if old != CircuitState.CLOSED:
            await self._notify("on_state_change", old, CircuitState.CLOSED)

    async def _notify(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                await getattr(listener, hook)(self.name, *args)
            except Exception:
                continue

    def _retry_after(self, now: datetime) -> float:
        if self._next_attempt_at is None:
            return 0.0
        return max((self._next_attempt_at - now).total_seconds(), 0.0)

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        self._last_state_change = _utcnow()

    def _open(self, now: datetime) -> None:
        self._set_state(CircuitState.OPEN)
        self._success_count = 0
        self._next_attempt_at = now + timedelta(seconds=self.config.reset_timeout)
        self._circuit_opens += 1

    def _reject(self, retry_after: float) -> CircuitOpenError:
        self._total_rejections += 1
        return CircuitOpenError(
            self.name,
            retry_after,
            state=self._state,
            next_attempt_at=self._next_attempt_at,
        )

    def _on_success(self) -> _Transition | None:
        self._failure_count = 0
        self._total_successes += 1
        if self._state != CircuitState.HALF_OPEN:
            return None
        self._success_count += 1
        if self._success_count < self.config.half_open_successes:
            return None
        self._set_state(CircuitState.CLOSED)
        self._success_count = 0
        self._next_attempt_at = None
        return (CircuitState.HALF_OPEN, CircuitState.CLOSED)

    def _on_failure(self) -> _Transition | None:
        now = _utcnow()
        self._failure_count += 1
        self._total_failures += 1
        self._last_failure_at = now
        old = self._state
        if old == CircuitState.HALF_OPEN or (
            old == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open(now)
            return (old, CircuitState.OPEN)
        return None

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Await ``func(*args, **kwargs)`` unless the circuit rejects it.

        An ``OPEN`` circuit past its reset timeout moves to ``HALF_OPEN`` and
        the call becomes a trial. Trial calls beyond ``half_open_successes``
        in flight are rejected.

        Raises:
            CircuitOpenError: The call was rejected without invoking ``func``.
            Exception: Whatever ``func`` raised, unchanged.
        """
        self._total_requests += 1
        entered: _Transition | None = None

        if self._state == CircuitState.OPEN:
            retry_after = self._retry_after(_utcnow())
            if retry_after > 0:
                error = self._reject(retry_after)
                await self._notify("on_call_rejected")
                raise error
            self._set_state(CircuitState.HALF_OPEN)
            self._success_count = 0
            entered = (CircuitState.OPEN, CircuitState.HALF_OPEN)

        is_trial = False
        if self._state == CircuitState.HALF_OPEN:
            if not self._trial_gate.try_acquire():
                error = self._reject(0.0)
                await self._notify("on_call_rejected")
                raise error
            is_trial = True

        if entered is not None:
            await self._notify("on_state_change", *entered)

        start = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            transition = self._on_failure()
            await self._notify("on_call_failed", exc, elapsed)
            if transition is not None:
                await self._notify("on_state_change", *transition)
            raise
        else:
            elapsed = max(time.monotonic() - start, 0.0)
            transition = self._on_success()
            await self._notify("on_call_succeeded", elapsed)
            if transition is not None:
                await self._notify("on_state_change", *transition)
            return result
        finally:
            if is_trial:
                self._trial_gate.release()

    def protect(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """Return ``func`` wrapped so every call goes through this breaker."""

        @functools.wraps(func)
        async def _protected(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.call(func, *args, **kwargs)

        return _protected
