"""Shared error types for contract_core."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class ExternalServiceError(RuntimeError):
    """Raised when the external analysis provider fails or misbehaves."""

    def __init__(
        self,
        service: str,
        message: str,
        *,
        http_status: int | None = None,
        response_body: str | None = None,
        code: str | None = None,
    ) -> None:
        """Initialize provider-failure metadata.

        Args:
            service: Name of the failing external service.
            message: Human-readable error message.
            http_status: Optional HTTP status observed from the provider.
            response_body: Optional response payload text.
            code: Optional transport error code (``ETIMEDOUT`` and friends).
        """
        super().__init__(f"{service} service error: {message}")
        self.service = service
        self.http_status = http_status
        self.response_body = response_body
        self.code = code


class AnalysisValidationError(ValueError):
    """Raised when analysis input is rejected before any work is done."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ResponseParseError(ValueError):
    """Raised when a provider response cannot be treated as text at all."""


class AnalysisServiceUnavailable(RuntimeError):
    """Raised when neither the provider nor the local analyzer produced a result.

    This is the only unrecoverable analysis failure; HTTP layers map it to 503.
    """

    status_code = 503


@dataclass(frozen=True)
class RetryInfo:
    """Diagnostic retry metadata attached to an exhausted operation's error."""

    attempts: int
    total_retries: int
    context: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))
