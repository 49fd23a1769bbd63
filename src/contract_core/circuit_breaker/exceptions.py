"""Errors raised by the breaker itself.

Only rejections are wrapped: when a protected call runs and fails, its own
exception reaches the caller untouched.
"""

from datetime import datetime

from contract_core.circuit_breaker.state import CircuitState


class CircuitBreakerError(Exception):
    """Common base for breaker-originated errors."""


class CircuitOpenError(CircuitBreakerError):
    """A call was refused without running the protected operation.

    Attributes:
        breaker_name: Breaker that refused the call.
        state: ``OPEN``, or ``HALF_OPEN`` when the trial slots were full.
        next_attempt_at: When the open circuit admits a trial call, if set.
        retry_after: Seconds until then; ``0`` for a half-open refusal.
    """

    code = "CIRCUIT_BREAKER_OPEN"

    def __init__(
        self,
        breaker_name: str,
        retry_after: float,
        *,
        state: CircuitState = CircuitState.OPEN,
        next_attempt_at: datetime | None = None,
    ) -> None:
        self.breaker_name = breaker_name
        self.retry_after = max(retry_after, 0.0)
        self.state = state
        self.next_attempt_at = next_attempt_at
        super().__init__(
            f"circuit_open: {breaker_name} retry_after={self.retry_after:g}s"
        )
