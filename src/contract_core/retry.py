"""Bounded retries with capped exponential backoff and jitter."""

from __future__ import annotations

import errno
import functools
import random
import socket
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, ParamSpec, Protocol, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.retry import retry_base
from tenacity.wait import wait_base

from contract_core.circuit_breaker.exceptions import CircuitBreakerError
from contract_core.errors import RetryInfo, TransientError
from contract_core.logging import StructuredLogger, log_warning

_logger = structlog.stdlib.get_logger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

DEFAULT_RETRYABLE_ERROR_CODES = frozenset(
    {"ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "EHOSTUNREACH", "EPIPE", "ENOTFOUND"}
)
RETRYABLE_HTTP_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_MESSAGE_MARKERS = (
    "timeout",
    "connection",
    "network",
    "rate limit",
    "server error",
)
JITTER_RATIO = 0.1


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry budget and backoff boundaries.

    Attributes:
        max_retries: Retries after the first attempt; total tries is one more.
        base_delay: Delay in seconds before the first retry, pre-jitter.
        max_delay: Upper bound in seconds for the pre-jitter delay.
        backoff_multiplier: Growth factor applied per attempt.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < 0:
            raise ValueError("max_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def base_delay_for(self, attempt: int) -> float:
        """Return the capped pre-jitter delay after zero-based ``attempt``."""
        return min(self.base_delay * self.backoff_multiplier**attempt, self.max_delay)


class wait_capped_exponential_jitter(wait_base):
    """Wait ``min(base * multiplier**n, max)`` plus up to 10% random jitter."""

    def __init__(
        self,
        policy: RetryBackoffPolicy,
        *,
        random_fn: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy
        self.random_fn = random_fn

    def __call__(self, retry_state: RetryCallState) -> float:
        attempt = max(retry_state.attempt_number - 1, 0)
        delay = self.policy.base_delay_for(attempt)
        return delay + delay * JITTER_RATIO * self.random_fn()


class RetryListener(Protocol):
    """Observer for retry scheduling and outcomes."""

    def on_retry_scheduled(
        self, *, attempt: int, delay: float, error: BaseException
    ) -> None:
        """Handle a failed attempt that will be retried after ``delay``."""

    def on_retries_finished(self, *, succeeded: bool, attempts: int) -> None:
        """Handle the end of an operation that needed at least one retry."""


def error_code_of(error: BaseException) -> str | None:
    """Return a symbolic transport error code for ``error`` when one is known."""
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code
    if isinstance(error, socket.gaierror):
        return "ENOTFOUND"
    if isinstance(error, OSError) and error.errno is not None:
        return errno.errorcode.get(error.errno)
    return None


def http_status_of(error: BaseException) -> int | None:
    """Return the HTTP status carried by ``error``, if any."""
    status = getattr(error, "http_status", None)
    if isinstance(status, int):
        return status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def is_retryable_error(
    error: BaseException,
    *,
    retryable_error_codes: frozenset[str] = DEFAULT_RETRYABLE_ERROR_CODES,
) -> bool:
    """Classify ``error`` as transient (retry) or permanent (abort)."""
    if isinstance(error, CircuitBreakerError):
        return False
    if isinstance(error, TransientError):
        return True

    code = error_code_of(error)
    if code is not None and code in retryable_error_codes:
        return True

    if isinstance(
        error,
        (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError),
    ):
        return True
    if isinstance(error, TimeoutError):
        return True

    status = http_status_of(error)
    if status is not None:
        return status in RETRYABLE_HTTP_STATUSES

    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


def build_exponential_jitter_retrying(
    *,
    retry: retry_base,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    random_fn: Callable[[], float] = random.random,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with capped exponential jitter backoff."""
    options: dict[str, Any] = {
        "retry": retry,
        "wait": wait_capped_exponential_jitter(policy, random_fn=random_fn),
        "stop": stop_after_attempt(policy.total_attempts),
        "reraise": reraise,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)


class RetryHandler:
    """Run async operations with bounded, classified retries.

    The handler is stateless across calls: each ``call`` owns its own attempt
    counter, so one instance can serve concurrent operations.
    """

    def __init__(
        self,
        *,
        policy: RetryBackoffPolicy | None = None,
        retryable_error_codes: frozenset[str] = DEFAULT_RETRYABLE_ERROR_CODES,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        random_fn: Callable[[], float] = random.random,
        listener: RetryListener | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build a retry handler.

        Args:
            policy: Retry budget and backoff bounds. Defaults to
                ``RetryBackoffPolicy()``.
            retryable_error_codes: Transport error codes treated as transient.
            sleep: Awaitable sleep used between attempts. Defaults to
                ``asyncio.sleep`` via tenacity.
            random_fn: Source of jitter in ``[0, 1)``.
            listener: Optional observer for retry scheduling and outcomes.
            logger: Structured logger for retry events.
        """
        self.policy = RetryBackoffPolicy() if policy is None else policy
        self.retryable_error_codes = retryable_error_codes
        self._sleep = sleep
        self._random_fn = random_fn
        self._listener = listener
        self._logger = _logger if logger is None else logger

    def should_retry(self, error: BaseException) -> bool:
        """Return whether ``error`` is worth another attempt."""
        return is_retryable_error(
            error, retryable_error_codes=self.retryable_error_codes
        )

    def _before_sleep(
        self, context: Mapping[str, object]
    ) -> Callable[[RetryCallState], None]:
        def _on_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome is not None else None
            delay = state.next_action.sleep if state.next_action is not None else 0.0
            log_warning(
                self._logger,
                "retry_scheduled",
                attempt=state.attempt_number,
                max_retries=self.policy.max_retries,
                delay_seconds=round(delay, 3),
                error=str(error),
                **context,
            )
            if self._listener is not None and error is not None:
                self._listener.on_retry_scheduled(
                    attempt=state.attempt_number, delay=delay, error=error
                )

        return _on_retry

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Mapping[str, object] | None = None,
    ) -> T:
        """Invoke ``operation`` until it succeeds or the retry budget is spent.

        Args:
            operation: Zero-argument async callable to run.
            context: Diagnostic metadata attached to the final error.

        Returns:
            The first successful result of ``operation``.

        Raises:
            Exception: The last error from ``operation``, with ``retry_info``
                set, when retries are exhausted or the error is not retryable.
        """
        resolved_context = dict(context or {})
        retrying = build_exponential_jitter_retrying(
            retry=retry_if_exception(self.should_retry),
            policy=self.policy,
            sleep=self._sleep,
            before_sleep=self._before_sleep(resolved_context),
            random_fn=self._random_fn,
            reraise=True,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await operation()
                outcome = attempt.retry_state.outcome
                if outcome is None or outcome.failed:
                    continue
                self._notify_finished(succeeded=True, attempts=attempts)
                return result
        except Exception as exc:
            exc.retry_info = RetryInfo(  # type: ignore[attr-defined]
                attempts=attempts,
                total_retries=max(attempts - 1, 0),
                context=resolved_context,
            )
            self._notify_finished(succeeded=False, attempts=attempts)
            raise

        raise RuntimeError("Retry loop exited unexpectedly.")

    def wrap(
        self,
        func: Callable[P, Awaitable[T]],
        context: Mapping[str, object] | None = None,
    ) -> Callable[P, Awaitable[T]]:
        """Return ``func`` wrapped so every call runs under this handler."""
        resolved_context = dict(context or {})
        resolved_context.setdefault("operation", getattr(func, "__name__", "call"))

        @functools.wraps(func)
        async def _wrapped(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.call(lambda: func(*args, **kwargs), resolved_context)

        return _wrapped

    def _notify_finished(self, *, succeeded: bool, attempts: int) -> None:
        if self._listener is None or attempts <= 1:
            return
        self._listener.on_retries_finished(succeeded=succeeded, attempts=attempts)
