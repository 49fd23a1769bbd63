"""Async circuit breaker guarding one unreliable dependency.

A breaker counts consecutive failures of the calls it wraps. Once the count
reaches the threshold it fails fast with ``CircuitOpenError`` until the reset
timeout passes, then lets a bounded number of trial calls through. Enough
trial successes close it again; one trial failure reopens it.

State is mutated synchronously around each awaited call, so callers sharing a
breaker on one event loop need no locks.
"""

from contract_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from contract_core.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from contract_core.circuit_breaker.listeners import BreakerListener
from contract_core.circuit_breaker.state import (
    BreakerSnapshot,
    BreakerStats,
    CircuitState,
)

__all__ = [
    "BreakerListener",
    "BreakerSnapshot",
    "BreakerStats",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
]
