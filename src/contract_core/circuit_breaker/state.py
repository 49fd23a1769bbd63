"""Breaker states and the read-only snapshots exposed to dashboards."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Breaker states; values are the names shown in status payloads."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class BreakerStats:
    """Lifetime counters for one breaker instance."""

    total_requests: int = 0
    total_failures: int = 0
    total_successes: int = 0
    total_rejections: int = 0
    circuit_opens: int = 0
    last_state_change: datetime | None = None


@dataclass(frozen=True)
class BreakerSnapshot:
    """Copy of one breaker's counters taken by ``CircuitBreaker.get_state``.

    Attributes:
        name: Name of the breaker.
        state: Current breaker state.
        failure_count: Consecutive failures since the last success.
        success_count: Consecutive successes while ``HALF_OPEN``.
        failure_threshold: Failures required while ``CLOSED`` before opening.
        last_failure_at: When the most recent counted failure happened.
        next_attempt_at: Earliest time a trial call is allowed, set while open.
        retry_after: Seconds remaining until ``next_attempt_at``; 0 otherwise.
        stats: Lifetime counters.
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    failure_threshold: int
    last_failure_at: datetime | None
    next_attempt_at: datetime | None
    retry_after: float
    stats: BreakerStats

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-friendly mapping for dashboards."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_threshold": self.failure_threshold,
            "last_failure_at": _isoformat(self.last_failure_at),
            "next_attempt_at": _isoformat(self.next_attempt_at),
            "retry_after": self.retry_after,
            "stats": {
                "total_requests": self.stats.total_requests,
                "total_failures": self.stats.total_failures,
                "total_successes": self.stats.total_successes,
                "total_rejections": self.stats.total_rejections,
                "circuit_opens": self.stats.circuit_opens,
                "last_state_change": _isoformat(self.stats.last_state_change),
            },
        }


def _isoformat(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()
