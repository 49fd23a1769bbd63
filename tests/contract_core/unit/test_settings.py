from __future__ import annotations

import logging
import os
from typing import Any, cast

import pytest
from pydantic import ValidationError

from contract_core.settings import ENV_PREFIX, AnalysisSettings, configure_logging


def _build_settings(**overrides: object) -> AnalysisSettings:
    return AnalysisSettings(**cast(Any, overrides))


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.upper().startswith(ENV_PREFIX):
            monkeypatch.delenv(name)


def test_defaults_match_provider_contract() -> None:
    settings = _build_settings()

    assert settings.api_url == "https://api.deepseek.com/v1"
    assert settings.model == "deepseek-coder"
    assert settings.request_timeout_seconds == 15.0
    assert settings.max_text_length == 100_000
    assert settings.breaker_failure_threshold == 3
    assert settings.breaker_reset_timeout_seconds == 30.0
    assert settings.retry_max_retries == 2
    assert settings.retry_max_delay_seconds == 5.0
    assert settings.enabled is False


def test_reads_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONTRACT_ANALYSIS_API_KEY", "sk-test")
    monkeypatch.setenv("contract_analysis_retry_max_retries", "4")
    monkeypatch.setenv("CONTRACT_ANALYSIS_API_URL", "https://proxy.example/v1/")

    settings = AnalysisSettings()

    assert settings.enabled is True
    assert settings.retry_max_retries == 4
    assert settings.api_url == "https://proxy.example/v1"


def test_blank_api_key_disables_provider() -> None:
    settings = _build_settings(api_key="   ")

    assert settings.api_key is None
    assert settings.enabled is False
    assert "Authorization" not in settings.provider_headers()


def test_provider_headers_use_bearer_credential() -> None:
    settings = _build_settings(api_key="sk-test")

    assert settings.provider_headers() == {
        "Content-Type": "application/json",
        "Authorization": "Bearer sk-test",
    }


def test_log_level_is_normalised() -> None:
    assert _build_settings(log_level=" debug ").log_level == "DEBUG"


def test_unknown_log_level_is_rejected() -> None:
    with pytest.raises(ValidationError, match="log_level must be one of"):
        _build_settings(log_level="TRACE")


def test_configure_logging_applies_configured_level() -> None:
    configure_logging(_build_settings(log_level="warning"), json_logs=True)

    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1


@pytest.mark.parametrize("field", ["api_url", "model", "health_model"])
def test_required_strings_must_be_non_empty(field: str) -> None:
    with pytest.raises(ValidationError, match=f"{field} must be non-empty"):
        _build_settings(**{field: "  "})


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"request_timeout_seconds": 0}, "request_timeout_seconds must be > 0"),
        ({"max_text_length": 0}, "max_text_length must be >= 1"),
        ({"breaker_failure_threshold": 0}, "breaker_failure_threshold must be >= 1"),
        (
            {"breaker_reset_timeout_seconds": -1},
            "breaker_reset_timeout_seconds must be >= 0",
        ),
        (
            {"breaker_half_open_successes": 0},
            "breaker_half_open_successes must be >= 1",
        ),
        ({"retry_max_retries": -1}, "retry_max_retries must be >= 0"),
        ({"retry_base_delay_seconds": -1}, "retry_base_delay_seconds must be >= 0"),
        (
            {"retry_base_delay_seconds": 10, "retry_max_delay_seconds": 5},
            "retry_max_delay_seconds must be >= retry_base_delay_seconds",
        ),
        ({"retry_backoff_multiplier": 0.5}, "retry_backoff_multiplier must be >= 1"),
        (
            {"health_check_max_age_seconds": -1},
            "health_check_max_age_seconds must be >= 0",
        ),
        (
            {"metrics_report_interval_seconds": 0},
            "metrics_report_interval_seconds must be > 0",
        ),
    ],
)
def test_numeric_bounds_are_validated(
    overrides: dict[str, object], message: str
) -> None:
    with pytest.raises(ValidationError, match=message):
        _build_settings(**overrides)
