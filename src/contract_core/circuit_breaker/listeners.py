"""Event hooks a breaker calls around every protected call."""

from typing import Protocol

from contract_core.circuit_breaker.state import CircuitState


class BreakerListener(Protocol):
    """Receives breaker events; exceptions raised here are ignored.

    ``on_call_failed`` fires before ``on_state_change`` when a failure trips
    the circuit, and ``on_call_rejected`` fires for fast-failed calls only.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None: ...

    async def on_call_rejected(self, name: str) -> None: ...

    async def on_call_succeeded(self, name: str, elapsed: float) -> None: ...

    async def on_call_failed(
        self, name: str, exc: Exception, elapsed: float
    ) -> None: ...
