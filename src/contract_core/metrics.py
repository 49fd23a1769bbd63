"""Process-level analysis metrics and the hooks that feed them.

Nothing here is needed for correctness: the resilience components work the
same with or without a registry attached.
"""

from __future__ import annotations

import asyncio
import math
from collections import Counter
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from contract_core.circuit_breaker import CircuitState
from contract_core.logging import StructuredLogger, log_error, log_info, log_warning
from contract_core.retry import error_code_of
from contract_core.settings import AnalysisSettings

_logger = structlog.stdlib.get_logger(__name__)

SUCCESS_RATE_ALERT_THRESHOLD = 80.0
CIRCUIT_OPENS_ALERT_THRESHOLD = 5
ERROR_RATE_ALERT_THRESHOLD = 20.0


@dataclass
class RequestCounters:
    total: int = 0
    provider: int = 0
    simulate: int = 0
    fallback: int = 0
    failed: int = 0


@dataclass
class PerformanceCounters:
    total_time: float = 0.0
    average_time: float = 0.0
    min_time: float = math.inf
    max_time: float = 0.0


@dataclass
class ErrorCounters:
    network: int = 0
    parse: int = 0
    timeout: int = 0
    rate_limit: int = 0
    circuit_breaker: int = 0
    other: int = 0


@dataclass
class RetryCounters:
    total: int = 0
    successful: int = 0
    failed: int = 0


@dataclass
class CircuitCounters:
    opens: int = 0
    closes: int = 0
    half_opens: int = 0


def _percent(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator * 100, 2)


@dataclass
class AnalysisMetrics:
    """Counters and timers for analysis requests, retries and circuit moves.

    Created once per process (or per test) and passed to the components that
    record into it.
    """

    requests: RequestCounters = field(default_factory=RequestCounters)
    performance: PerformanceCounters = field(default_factory=PerformanceCounters)
    errors: ErrorCounters = field(default_factory=ErrorCounters)
    retries: RetryCounters = field(default_factory=RetryCounters)
    circuit: CircuitCounters = field(default_factory=CircuitCounters)
    fallback_reasons: Counter[str] = field(default_factory=Counter)

    def record_success(self, method: str, duration: float) -> None:
        """Record a completed analysis and its duration in seconds."""
        self.requests.total += 1
        if method == "provider":
            self.requests.provider += 1
        else:
            self.requests.simulate += 1
        perf = self.performance
        perf.total_time += duration
        perf.min_time = min(perf.min_time, duration)
        perf.max_time = max(perf.max_time, duration)
        completed = self.requests.provider + self.requests.simulate
        perf.average_time = perf.total_time / completed

    def record_fallback(self, reason: str) -> None:
        """Record that the local analyzer stood in for the provider."""
        self.requests.fallback += 1
        self.fallback_reasons[reason] += 1

    def record_failure(self, error: BaseException | None) -> None:
        """Record a failed analysis step, categorised by error shape."""
        self.requests.total += 1
        self.requests.failed += 1
        self._categorize_error(error)

    def record_error(self, error: BaseException | None) -> None:
        """Categorise a recovered provider error without failing the request."""
        self._categorize_error(error)

    def record_retry(self, *, succeeded: bool) -> None:
        self.retries.total += 1
        if succeeded:
            self.retries.successful += 1
        else:
            self.retries.failed += 1

    def record_circuit_transition(self, new_state: CircuitState) -> None:
        if new_state == CircuitState.OPEN:
            self.circuit.opens += 1
        elif new_state == CircuitState.CLOSED:
            self.circuit.closes += 1
        elif new_state == CircuitState.HALF_OPEN:
            self.circuit.half_opens += 1

    def _categorize_error(self, error: BaseException | None) -> None:
        if error is None:
            self.errors.other += 1
            return
        message = str(error).lower()
        code = error_code_of(error) or ""
        if code == "CIRCUIT_BREAKER_OPEN":
            self.errors.circuit_breaker += 1
        elif "timeout" in message or "TIMEDOUT" in code or "TIMEOUT" in code:
            self.errors.timeout += 1
        elif "network" in message or code.startswith("ECONN"):
            self.errors.network += 1
        elif "parse" in message or "json" in message:
            self.errors.parse += 1
        elif "rate limit" in message or code == "RATE_LIMIT":
            self.errors.rate_limit += 1
        else:
            self.errors.other += 1

    def summary(self) -> dict[str, object]:
        """Return a JSON-friendly snapshot with derived rates in percent."""
        requests = self.requests
        success_rate = (
            _percent(requests.total - requests.failed, requests.total)
            if requests.total
            else 0.0
        )
        provider_usage = _percent(
            requests.provider, requests.provider + requests.fallback
        )
        error_rate = _percent(requests.failed, requests.total)
        perf = self.performance
        return {
            "requests": vars(requests).copy(),
            "performance": {
                "total_time": perf.total_time,
                "average_time": perf.average_time,
                "min_time": None if math.isinf(perf.min_time) else perf.min_time,
                "max_time": perf.max_time,
            },
            "errors": vars(self.errors).copy(),
            "retries": vars(self.retries).copy(),
            "circuit": vars(self.circuit).copy(),
            "fallback_reasons": dict(self.fallback_reasons),
            "rates": {
                "success": success_rate,
                "provider_usage": provider_usage,
                "fallback": round(100 - provider_usage, 2),
                "error": error_rate,
            },
            "timestamp": datetime.now(UTC).isoformat(),
        }

    def reset(self) -> None:
        self.requests = RequestCounters()
        self.performance = PerformanceCounters()
        self.errors = ErrorCounters()
        self.retries = RetryCounters()
        self.circuit = CircuitCounters()
        self.fallback_reasons = Counter()


class MetricsBreakerListener:
    """Breaker listener that logs transitions and counts them in metrics."""

    def __init__(
        self,
        metrics: AnalysisMetrics,
        *,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._metrics = metrics
        self._logger = _logger if logger is None else logger

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        self._metrics.record_circuit_transition(new)
        log_warning(
            self._logger,
            "circuit_state_change",
            service=name,
            from_state=old.value,
            to_state=new.value,
        )

    async def on_call_rejected(self, name: str) -> None:
        """Rejections are counted by the breaker snapshot."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Provider timings are recorded per analysis, not per call."""

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Failures are categorised once the analysis falls back."""


class MetricsRetryListener:
    """Retry listener that counts retried operations by outcome."""

    def __init__(self, metrics: AnalysisMetrics) -> None:
        self._metrics = metrics

    def on_retry_scheduled(
        self, *, attempt: int, delay: float, error: BaseException
    ) -> None:
        self._metrics.record_error(error)

    def on_retries_finished(self, *, succeeded: bool, attempts: int) -> None:
        self._metrics.record_retry(succeeded=succeeded)


def check_alerts(
    summary: dict[str, object],
    logger: StructuredLogger,
) -> list[str]:
    """Log alert events for a metrics summary and return their names."""
    alerts: list[str] = []
    rates = summary["rates"]
    requests = summary["requests"]
    circuit = summary["circuit"]
    assert isinstance(rates, dict)
    assert isinstance(requests, dict)
    assert isinstance(circuit, dict)

    if requests["total"] == 0:
        return alerts

    if rates["success"] < SUCCESS_RATE_ALERT_THRESHOLD:
        alerts.append("analysis_success_rate_low")
        log_warning(
            logger,
            "analysis_success_rate_low",
            success_rate=rates["success"],
            threshold=SUCCESS_RATE_ALERT_THRESHOLD,
        )
    if circuit["opens"] > CIRCUIT_OPENS_ALERT_THRESHOLD:
        alerts.append("circuit_opens_high")
        log_error(
            logger,
            "circuit_opens_high",
            opens=circuit["opens"],
            threshold=CIRCUIT_OPENS_ALERT_THRESHOLD,
        )
    if rates["error"] > ERROR_RATE_ALERT_THRESHOLD:
        alerts.append("analysis_error_rate_high")
        log_warning(
            logger,
            "analysis_error_rate_high",
            error_rate=rates["error"],
            threshold=ERROR_RATE_ALERT_THRESHOLD,
        )
    return alerts


async def run_report_loop(
    *,
    report_once: Callable[[], Awaitable[object]],
    stop_event: asyncio.Event,
    interval_seconds: float,
) -> None:
    """Run periodic reports until shutdown is requested."""
    interval = max(interval_seconds, 0.01)
    while not stop_event.is_set():
        with suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        if stop_event.is_set():
            return
        await report_once()


class MetricsReporter:
    """Periodically log a metrics summary and any threshold alerts."""

    def __init__(
        self,
        metrics: AnalysisMetrics,
        *,
        interval_seconds: float,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._metrics = metrics
        self._interval_seconds = max(interval_seconds, 0.01)
        self._logger = _logger if logger is None else logger
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def report_once(self) -> list[str]:
        """Log one summary and return the alerts it raised."""
        summary = self._metrics.summary()
        log_info(self._logger, "analysis_metrics_report", summary=summary)
        return check_alerts(summary, self._logger)

    async def start(self) -> None:
        """Start background reporting if not already running."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            run_report_loop(
                report_once=self.report_once,
                stop_event=self._stop_event,
                interval_seconds=self._interval_seconds,
            ),
            name="analysis-metrics-reporter",
        )
        log_info(
            self._logger,
            "analysis_metrics_reporter_started",
            interval_seconds=self._interval_seconds,
        )

    async def stop(self) -> None:
        """Stop background reporting and await task completion."""
        self._stop_event.set()
        task = self._task
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=self._interval_seconds + 5.0)
        except TimeoutError:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._task = None
        log_info(self._logger, "analysis_metrics_reporter_stopped")


def build_metrics_reporter(
    metrics: AnalysisMetrics,
    settings: AnalysisSettings | None = None,
    *,
    logger: StructuredLogger | None = None,
) -> MetricsReporter:
    """Build a reporter using the configured report interval."""
    resolved = AnalysisSettings() if settings is None else settings
    return MetricsReporter(
        metrics,
        interval_seconds=resolved.metrics_report_interval_seconds,
        logger=logger,
    )
