"""httpx client for an OpenAI-compatible chat-completions endpoint."""

from __future__ import annotations

from typing import NoReturn, cast

import httpx
import structlog

from contract_core.analysis.prompts import (
    HEALTH_CHECK_PROMPT,
    SYSTEM_PROMPT,
    build_analysis_prompt,
)
from contract_core.circuit_breaker import CircuitBreaker
from contract_core.errors import ExternalServiceError
from contract_core.logging import StructuredLogger, log_warning
from contract_core.settings import AnalysisSettings

_logger = structlog.stdlib.get_logger(__name__)

CHAT_COMPLETIONS_PATH = "/chat/completions"
ANALYSIS_TEMPERATURE = 0.1
ANALYSIS_MAX_TOKENS = 2000
HEALTH_CHECK_MAX_TOKENS = 10
RESPONSE_BODY_PREVIEW = 500

_STATUS_MESSAGES = {
    401: "invalid or expired api key",
    403: "access denied, insufficient permissions",
    408: "request timeout",
    429: "rate limit exceeded, retry later",
    500: "internal server error",
    502: "bad gateway",
    503: "service temporarily unavailable",
    504: "gateway timeout",
}
_DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
)


def _error_detail(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return cast(str, error["message"])
    if isinstance(payload.get("message"), str):
        return cast(str, payload["message"])
    return None


def _transport_error_code(exc: httpx.RequestError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(exc, httpx.ConnectError):
        message = str(exc).lower()
        if any(marker in message for marker in _DNS_FAILURE_MARKERS):
            return "ENOTFOUND"
        return "ECONNREFUSED"
    return "ECONNRESET"


class ChatCompletionsProvider:
    """Submit analysis requests to the external provider.

    Every failure surfaces as ``ExternalServiceError`` with the HTTP status or
    transport ``code`` preserved so the retry classifier can decide on it.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        model: str,
        health_model: str,
        service_name: str = "DeepSeek",
        logger: StructuredLogger | None = None,
        owns_client: bool = False,
    ) -> None:
        """Create a provider client.

        Args:
            client: Async HTTP client with base URL, auth headers and timeout set.
            model: Model used for contract analysis.
            health_model: Model used for the lightweight health probe.
            service_name: Name used in error messages and logs.
            logger: Structured logger for provider events.
            owns_client: Close ``client`` when this provider is closed.
        """
        self._client = client
        self.model = model
        self.health_model = health_model
        self.service_name = service_name
        self._logger = _logger if logger is None else logger
        self._owns_client = owns_client

    async def complete_analysis(self, text: str, title: str = "") -> str:
        """Request an analysis and return the raw message content."""
        payload = await self._post(
            {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_analysis_prompt(text, title)},
                ],
                "temperature": ANALYSIS_TEMPERATURE,
                "max_tokens": ANALYSIS_MAX_TOKENS,
                "response_format": {"type": "json_object"},
            }
        )
        return self._message_content(payload)

    async def ping(self) -> bool:
        """Send a minimal completion request; raise on any failure."""
        await self._post(
            {
                "model": self.health_model,
                "messages": [{"role": "user", "content": HEALTH_CHECK_PROMPT}],
                "max_tokens": HEALTH_CHECK_MAX_TOKENS,
            }
        )
        return True

    async def check_health(self, breaker: CircuitBreaker | None = None) -> bool:
        """Return whether the provider answers a minimal request.

        When ``breaker`` is given the probe goes through it, so probe failures
        count towards opening the circuit.
        """
        try:
            if breaker is None:
                return await self.ping()
            return await breaker.call(self.ping)
        except Exception as exc:
            log_warning(
                self._logger,
                "provider_health_check_failed",
                service=self.service_name,
                error=str(exc),
            )
            return False

    def model_info(self) -> dict[str, object]:
        return {
            "provider": self.service_name,
            "model": self.model,
            "health_model": self.health_model,
            "enabled": True,
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, body: dict[str, object]) -> dict[str, object]:
        try:
            response = await self._client.post(CHAT_COMPLETIONS_PATH, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._raise_for_http_status(exc)
        except httpx.RequestError as exc:
            code = _transport_error_code(exc)
            name = exc.__class__.__name__
            raise ExternalServiceError(
                self.service_name,
                f"{name}: {exc}" if str(exc) else name,
                code=code,
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalServiceError(
                self.service_name,
                "response is not valid JSON",
                http_status=response.status_code,
                response_body=response.text[:RESPONSE_BODY_PREVIEW],
            ) from exc
        if not isinstance(payload, dict):
            raise ExternalServiceError(
                self.service_name,
                "response is not a JSON object",
                http_status=response.status_code,
                response_body=response.text[:RESPONSE_BODY_PREVIEW],
            )
        return cast(dict[str, object], payload)

    def _raise_for_http_status(self, exc: httpx.HTTPStatusError) -> NoReturn:
        response = exc.response
        status = response.status_code
        detail = _error_detail(response)
        if status == 400:
            message = f"bad request: {detail or 'invalid request format'}"
        elif status in _STATUS_MESSAGES:
            message = _STATUS_MESSAGES[status]
        else:
            message = f"unexpected HTTP {status}: {detail or 'unknown error'}"
        raise ExternalServiceError(
            self.service_name,
            message,
            http_status=status,
            response_body=response.text[:RESPONSE_BODY_PREVIEW],
        ) from exc

    def _message_content(self, payload: dict[str, object]) -> str:
        choices = payload.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str) and content:
                    return content
        raise ExternalServiceError(
            self.service_name, "response missing choices[0].message.content"
        )


def build_http_client(settings: AnalysisSettings) -> httpx.AsyncClient:
    """Build the shared async HTTP client for the provider."""
    return httpx.AsyncClient(
        base_url=settings.api_url,
        headers=settings.provider_headers(),
        timeout=httpx.Timeout(settings.request_timeout_seconds),
    )


def build_provider(
    settings: AnalysisSettings,
    *,
    client: httpx.AsyncClient | None = None,
    logger: StructuredLogger | None = None,
) -> ChatCompletionsProvider | None:
    """Return a provider for ``settings``, or ``None`` when no key is configured."""
    if not settings.enabled:
        return None
    return ChatCompletionsProvider(
        client=build_http_client(settings) if client is None else client,
        model=settings.model,
        health_model=settings.health_model,
        logger=logger,
        owns_client=client is None,
    )
