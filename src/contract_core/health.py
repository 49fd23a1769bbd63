from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import cast

import structlog

from contract_core.logging import StructuredLogger, log_warning

_logger = structlog.stdlib.get_logger(__name__)

HealthCheck = Callable[[], Awaitable[object]] | Callable[[], object]

OVERALL_HEALTHY = "healthy"
OVERALL_DEGRADED = "degraded"


class ServiceStatus(StrEnum):
    """Health status values for one registered service."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    ERROR = "error"


class ServiceNotRegisteredError(KeyError):
    """Raised when a health check is requested for an unknown service."""

    def __init__(self, name: str) -> None:
        self.service_name = name
        super().__init__(f"service not registered: {name}")


class UnhealthyProbeResult(RuntimeError):
    """Raised internally when a probe returns a falsy result."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ServiceCheckResult:
    """Outcome of one service health probe."""

    name: str
    status: ServiceStatus
    result: object = None
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return self.status == ServiceStatus.HEALTHY


@dataclass(frozen=True)
class HealthReport:
    """Aggregated health of every registered service."""

    overall: str
    services: tuple[ServiceCheckResult, ...]
    timestamp: datetime


@dataclass
class ServiceRecord:
    """Mutable registry entry for one service; lives for the process lifetime."""

    name: str
    health_check: HealthCheck
    status: ServiceStatus = ServiceStatus.UNKNOWN
    last_check_at: datetime | None = None
    last_check_monotonic: float | None = None
    consecutive_failures: int = 0
    total_checks: int = 0
    total_successes: int = 0
    last_error: str | None = None
    last_result: ServiceCheckResult | None = None

    @property
    def success_rate(self) -> str:
        if self.total_checks == 0:
            return "N/A"
        return f"{self.total_successes / self.total_checks * 100:.2f}%"


async def _resolve_check(check: HealthCheck) -> object:
    result = check()
    if inspect.isawaitable(result):
        return await cast(Awaitable[object], result)
    return result


class HealthMonitor:
    """Registry of named health probes for dependent services.

    A probe is a side-effect-free callable (sync or async). It passes when it
    returns a truthy value and fails when it returns a falsy value or raises.
    """

    def __init__(
        self,
        *,
        logger: StructuredLogger | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._services: dict[str, ServiceRecord] = {}
        self._in_flight: dict[str, asyncio.Future[ServiceCheckResult]] = {}
        self._logger = _logger if logger is None else logger
        self._monotonic = monotonic

    @property
    def service_names(self) -> tuple[str, ...]:
        return tuple(self._services)

    def register_service(self, name: str, health_check: HealthCheck) -> None:
        """Register ``health_check`` under ``name``, replacing any prior probe."""
        self._services[name] = ServiceRecord(name=name, health_check=health_check)

    def get_record(self, name: str) -> ServiceRecord:
        """Return the registry entry for ``name``."""
        try:
            return self._services[name]
        except KeyError:
            raise ServiceNotRegisteredError(name) from None

    async def check_service(self, name: str) -> ServiceCheckResult:
        """Run the probe for ``name`` and update its registry entry.

        Raises:
            ServiceNotRegisteredError: If ``name`` was never registered.
        """
        record = self.get_record(name)
        record.total_checks += 1
        try:
            outcome = await _resolve_check(record.health_check)
            if not outcome:
                raise UnhealthyProbeResult(f"probe returned {outcome!r}")
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            record.status = ServiceStatus.UNHEALTHY
            record.consecutive_failures += 1
            record.last_error = message
            result = ServiceCheckResult(
                name=name, status=ServiceStatus.UNHEALTHY, error=message
            )
            log_warning(
                self._logger,
                "health_check_failed",
                service=name,
                consecutive_failures=record.consecutive_failures,
                error=message,
            )
        else:
            record.status = ServiceStatus.HEALTHY
            record.consecutive_failures = 0
            record.total_successes += 1
            result = ServiceCheckResult(
                name=name, status=ServiceStatus.HEALTHY, result=outcome
            )

        record.last_check_at = _utcnow()
        record.last_check_monotonic = self._monotonic()
        record.last_result = result
        return result

    async def check_service_cached(
        self, name: str, *, max_age_seconds: float
    ) -> ServiceCheckResult:
        """Return the last result for ``name`` if fresh, otherwise re-probe.

        Concurrent callers that find the result stale share one probe.
        """
        record = self.get_record(name)
        if record.last_result is not None and record.last_check_monotonic is not None:
            age = self._monotonic() - record.last_check_monotonic
            if age <= max_age_seconds:
                return record.last_result

        probe = self._in_flight.get(name)
        if probe is None:
            probe = asyncio.ensure_future(self.check_service(name))
            self._in_flight[name] = probe
            probe.add_done_callback(lambda _: self._in_flight.pop(name, None))
        return await asyncio.shield(probe)

    async def check_all_services(self) -> HealthReport:
        """Probe every registered service concurrently and aggregate results."""
        names = tuple(self._services)
        outcomes = await asyncio.gather(
            *(self.check_service(name) for name in names),
            return_exceptions=True,
        )

        results: list[ServiceCheckResult] = []
        for name, outcome in zip(names, outcomes, strict=True):
            if isinstance(outcome, ServiceCheckResult):
                results.append(outcome)
                continue
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            results.append(
                ServiceCheckResult(
                    name=name,
                    status=ServiceStatus.ERROR,
                    error=f"{outcome.__class__.__name__}: {outcome}",
                )
            )

        overall = (
            OVERALL_HEALTHY
            if all(result.healthy for result in results)
            else OVERALL_DEGRADED
        )
        return HealthReport(
            overall=overall,
            services=tuple(results),
            timestamp=_utcnow(),
        )

    def get_service_stats(self) -> Mapping[str, Mapping[str, object]]:
        """Return per-service status, last check time and success rate."""
        return {
            name: {
                "status": record.status.value,
                "last_check_at": (
                    None
                    if record.last_check_at is None
                    else record.last_check_at.isoformat()
                ),
                "consecutive_failures": record.consecutive_failures,
                "success_rate": record.success_rate,
                "last_error": record.last_error,
            }
            for name, record in self._services.items()
        }
