from __future__ import annotations

import structlog
from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from contract_core.logging import configure_structlog, get_log_level_value

ENV_PREFIX = "CONTRACT_ANALYSIS_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class AnalysisSettings(BaseSettings):
    """Settings for the resilient contract-analysis client."""

    model_config = prefixed_settings_config(ENV_PREFIX)

    api_key: str | None = None
    api_url: str = "https://api.deepseek.com/v1"
    model: str = "deepseek-coder"
    health_model: str = "deepseek-chat"
    request_timeout_seconds: float = 15.0
    max_text_length: int = 100_000

    breaker_failure_threshold: int = 3
    breaker_reset_timeout_seconds: float = 30.0
    breaker_half_open_successes: int = 3

    retry_max_retries: int = 2
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 5.0
    retry_backoff_multiplier: float = 2.0

    health_check_max_age_seconds: float = 60.0
    metrics_report_interval_seconds: float = 3600.0
    log_level: str = "INFO"

    @field_validator("api_key", mode="before")
    @classmethod
    def _blank_api_key_is_missing(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("api_url", "model", "health_model", mode="before")
    @classmethod
    def _validate_required_string(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be non-empty")
        if info.field_name == "api_url":
            normalized = normalized.rstrip("/")
        return normalized

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.strip().upper()

    @model_validator(mode="after")
    def _validate_bounds(self) -> AnalysisSettings:
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")
        if self.max_text_length < 1:
            raise ValueError("max_text_length must be >= 1")
        if self.breaker_failure_threshold < 1:
            raise ValueError("breaker_failure_threshold must be >= 1")
        if self.breaker_reset_timeout_seconds < 0:
            raise ValueError("breaker_reset_timeout_seconds must be >= 0")
        if self.breaker_half_open_successes < 1:
            raise ValueError("breaker_half_open_successes must be >= 1")
        if self.retry_max_retries < 0:
            raise ValueError("retry_max_retries must be >= 0")
        if self.retry_base_delay_seconds < 0:
            raise ValueError("retry_base_delay_seconds must be >= 0")
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                "retry_max_delay_seconds must be >= retry_base_delay_seconds"
            )
        if self.retry_backoff_multiplier < 1:
            raise ValueError("retry_backoff_multiplier must be >= 1")
        if self.health_check_max_age_seconds < 0:
            raise ValueError("health_check_max_age_seconds must be >= 0")
        if self.metrics_report_interval_seconds <= 0:
            raise ValueError("metrics_report_interval_seconds must be > 0")
        return self

    @property
    def enabled(self) -> bool:
        """Return whether the external provider is configured."""
        return self.api_key is not None

    def provider_headers(self) -> dict[str, str]:
        """Build request headers for the external provider."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers


def configure_logging(
    settings: AnalysisSettings, *, json_logs: bool | None = None
) -> structlog.stdlib.BoundLogger:
    """Configure structlog at the level named by ``settings.log_level``."""
    return configure_structlog(log_level=settings.log_level, json_logs=json_logs)
