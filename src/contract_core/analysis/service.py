"""Resilient contract analysis: provider call with breaker, retry and fallback."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from types import TracebackType

import httpx
import structlog

from contract_core.analysis.fallback import LocalContractAnalyzer
from contract_core.analysis.models import AnalysisMethod, AnalysisResult
from contract_core.analysis.parser import parse_analysis_response
from contract_core.analysis.provider import ChatCompletionsProvider, build_provider
from contract_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
)
from contract_core.errors import AnalysisServiceUnavailable, AnalysisValidationError
from contract_core.health import HealthMonitor
from contract_core.logging import (
    StructuredLogger,
    log_exception,
    log_info,
    log_warning,
)
from contract_core.metrics import (
    AnalysisMetrics,
    MetricsBreakerListener,
    MetricsRetryListener,
)
from contract_core.retry import RetryBackoffPolicy, RetryHandler
from contract_core.settings import AnalysisSettings

_logger = structlog.stdlib.get_logger(__name__)

PROVIDER_BREAKER_NAME = "deepseek_api"
PROVIDER_HEALTH_SERVICE = "deepseek_api"
TITLE_PREVIEW_LENGTH = 50


class ResilientAnalysisClient:
    """Analyze contract text, degrading to the local analyzer when needed.

    Per call the decision order is: open breaker, missing provider, failed
    health probe, then the provider call through breaker and retry. Every path
    except a failing local analyzer returns a successful ``AnalysisResult``.
    """

    def __init__(
        self,
        *,
        provider: ChatCompletionsProvider | None,
        breaker: CircuitBreaker,
        retry_handler: RetryHandler,
        health_monitor: HealthMonitor,
        fallback: LocalContractAnalyzer | None = None,
        metrics: AnalysisMetrics | None = None,
        logger: StructuredLogger | None = None,
        max_text_length: int = 100_000,
        health_check_max_age_seconds: float = 60.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Compose the resilience components around one provider.

        Args:
            provider: External provider client; ``None`` disables it.
            breaker: Breaker shared by every call to the provider.
            retry_handler: Retry policy for provider calls.
            health_monitor: Registry the provider probe is registered with.
            fallback: Local analyzer used on every degraded path.
            metrics: Metrics registry to record into.
            logger: Structured logger for analysis events.
            max_text_length: Longest accepted contract text.
            health_check_max_age_seconds: How long a probe result is reused.
            monotonic: Clock used for request durations.
        """
        self._provider = provider
        self._breaker = breaker
        self._retry = retry_handler
        self._health = health_monitor
        self._fallback = LocalContractAnalyzer() if fallback is None else fallback
        self._metrics = AnalysisMetrics() if metrics is None else metrics
        self._logger = _logger if logger is None else logger
        self._max_text_length = max_text_length
        self._health_check_max_age_seconds = health_check_max_age_seconds
        self._monotonic = monotonic

        registered = health_monitor.service_names
        if provider is not None and PROVIDER_HEALTH_SERVICE not in registered:
            health_monitor.register_service(
                PROVIDER_HEALTH_SERVICE, lambda: provider.check_health(breaker)
            )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def metrics(self) -> AnalysisMetrics:
        return self._metrics

    async def analyze(self, text: str, title: str = "") -> AnalysisResult:
        """Analyze ``text``; only ``AnalysisServiceUnavailable`` escapes.

        Raises:
            AnalysisValidationError: If ``text`` is not a string or too long.
            AnalysisServiceUnavailable: If the local analyzer itself fails.
        """
        self._validate(text)
        started = self._monotonic()

        if self._breaker.is_open:
            return self._degrade(
                text, title, AnalysisMethod.SIMULATE_FALLBACK, "circuit_open", started
            )
        provider = self._provider
        if provider is None:
            return self._degrade(
                text,
                title,
                AnalysisMethod.SIMULATE_DISABLED,
                "provider_disabled",
                started,
            )
        if not await self._provider_healthy():
            return self._degrade(
                text,
                title,
                AnalysisMethod.SIMULATE_HEALTH_CHECK_FAILED,
                "health_check_failed",
                started,
            )

        context = {
            "operation": "contract_analysis",
            "text_length": len(text),
            "title": title[:TITLE_PREVIEW_LENGTH],
        }
        try:
            raw = await self._breaker.call(
                self._retry.call,
                lambda: provider.complete_analysis(text, title),
                context,
            )
            result = parse_analysis_response(raw, model=provider.model)
        except CircuitOpenError as exc:
            self._metrics.record_error(exc)
            return self._degrade(
                text,
                title,
                AnalysisMethod.SIMULATE_CIRCUIT_OPEN,
                "circuit_open",
                started,
                error=exc,
            )
        except Exception as exc:
            self._metrics.record_error(exc)
            log_warning(
                self._logger,
                "analysis_provider_failed",
                service=provider.service_name,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return self._degrade(
                text,
                title,
                AnalysisMethod.SIMULATE_ERROR_FALLBACK,
                "provider_error",
                started,
                error=exc,
            )

        duration = self._elapsed(started)
        self._metrics.record_success("provider", duration)
        log_info(
            self._logger,
            "analysis_completed",
            analysis_method=AnalysisMethod.PROVIDER.value,
            parsing_method=(
                None
                if result.metadata.parsing_method is None
                else result.metadata.parsing_method.value
            ),
            duration_seconds=round(duration, 3),
        )
        return result.with_metadata(
            analysis_method=AnalysisMethod.PROVIDER,
            fallback_used=False,
            circuit_state=self._breaker.state.value,
        )

    def status(self) -> dict[str, object]:
        """Return a dashboard snapshot of breaker, health, metrics and provider."""
        provider_info: dict[str, object] = (
            {"provider": None, "enabled": False}
            if self._provider is None
            else self._provider.model_info()
        )
        return {
            "provider": provider_info,
            "circuit_breaker": self._breaker.get_state().as_dict(),
            "health": dict(self._health.get_service_stats()),
            "metrics": self._metrics.summary(),
        }

    async def aclose(self) -> None:
        if self._provider is not None:
            await self._provider.aclose()

    async def __aenter__(self) -> ResilientAnalysisClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    def _validate(self, text: object) -> None:
        if not isinstance(text, str):
            raise AnalysisValidationError("text must be a string", field="text")
        if len(text) > self._max_text_length:
            raise AnalysisValidationError(
                f"text exceeds {self._max_text_length} characters", field="text"
            )

    async def _provider_healthy(self) -> bool:
        result = await self._health.check_service_cached(
            PROVIDER_HEALTH_SERVICE,
            max_age_seconds=self._health_check_max_age_seconds,
        )
        return result.healthy

    def _elapsed(self, started: float) -> float:
        return max(self._monotonic() - started, 0.0)

    def _degrade(
        self,
        text: str,
        title: str,
        method: AnalysisMethod,
        reason: str,
        started: float,
        *,
        error: BaseException | None = None,
    ) -> AnalysisResult:
        try:
            result = self._fallback.analyze(text, title)
        except Exception as exc:
            self._metrics.record_failure(exc)
            log_exception(
                self._logger,
                "analysis_fallback_failed",
                analysis_method=method.value,
                reason=reason,
            )
            raise AnalysisServiceUnavailable("analysis service unavailable") from exc

        self._metrics.record_fallback(reason)
        self._metrics.record_success("simulate", self._elapsed(started))
        log_warning(
            self._logger,
            "analysis_fallback_used",
            analysis_method=method.value,
            reason=reason,
            circuit_state=self._breaker.state.value,
        )
        extra = dict(result.metadata.extra)
        extra["fallback_reason"] = reason
        if error is not None:
            extra["provider_error"] = str(error)
        return result.with_metadata(
            analysis_method=method,
            fallback_used=True,
            circuit_state=self._breaker.state.value,
            extra=extra,
        )


def build_analysis_client(
    settings: AnalysisSettings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    metrics: AnalysisMetrics | None = None,
    logger: StructuredLogger | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> ResilientAnalysisClient:
    """Wire a ``ResilientAnalysisClient`` from settings.

    Args:
        settings: Analysis settings. Defaults to reading the environment.
        http_client: Client to use for the provider instead of building one.
        metrics: Metrics registry shared with other components.
        logger: Structured logger passed to every component.
        sleep: Backoff sleep override, mainly for tests.
    """
    resolved = AnalysisSettings() if settings is None else settings
    registry = AnalysisMetrics() if metrics is None else metrics
    breaker = CircuitBreaker(
        PROVIDER_BREAKER_NAME,
        config=CircuitBreakerConfig(
            failure_threshold=resolved.breaker_failure_threshold,
            reset_timeout=resolved.breaker_reset_timeout_seconds,
            half_open_successes=resolved.breaker_half_open_successes,
        ),
        listeners=[MetricsBreakerListener(registry, logger=logger)],
    )
    retry_handler = RetryHandler(
        policy=RetryBackoffPolicy(
            max_retries=resolved.retry_max_retries,
            base_delay=resolved.retry_base_delay_seconds,
            max_delay=resolved.retry_max_delay_seconds,
            backoff_multiplier=resolved.retry_backoff_multiplier,
        ),
        sleep=sleep,
        listener=MetricsRetryListener(registry),
        logger=logger,
    )
    return ResilientAnalysisClient(
        provider=build_provider(resolved, client=http_client, logger=logger),
        breaker=breaker,
        retry_handler=retry_handler,
        health_monitor=HealthMonitor(logger=logger),
        metrics=registry,
        logger=logger,
        max_text_length=resolved.max_text_length,
        health_check_max_age_seconds=resolved.health_check_max_age_seconds,
    )
