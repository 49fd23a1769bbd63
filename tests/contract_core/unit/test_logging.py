from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable

import pytest
import structlog

from contract_core.logging import (
    MASK,
    build_redaction_processor,
    configure_structlog,
    get_log_level_value,
    log_error,
    log_exception,
    log_info,
    log_warning,
)
from tests.contract_core.support.fakes import FakeLogger


def _root_renderer() -> object:
    formatter = logging.getLogger().handlers[0].formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("debug", logging.DEBUG),
        (" Info ", logging.INFO),
        ("WARNING", logging.WARNING),
        ("error", logging.ERROR),
        ("critical", logging.CRITICAL),
    ],
)
def test_log_level_names_are_case_insensitive(name: str, value: int) -> None:
    assert get_log_level_value(name) == value


def test_unknown_log_level_lists_choices() -> None:
    with pytest.raises(ValueError, match="log_level must be one of: CRITICAL"):
        get_log_level_value("VERBOSE")


def test_reconfiguring_replaces_root_handler() -> None:
    configure_structlog(log_level="INFO", json_logs=True)
    configure_structlog(log_level="DEBUG", json_logs=True)

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.DEBUG


@pytest.mark.parametrize(
    ("isatty", "renderer"),
    [
        (True, structlog.dev.ConsoleRenderer),
        (False, structlog.processors.JSONRenderer),
    ],
)
def test_renderer_follows_terminal_by_default(
    monkeypatch: pytest.MonkeyPatch, isatty: bool, renderer: type
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: isatty, raising=False)

    configure_structlog(log_level="INFO")

    assert isinstance(_root_renderer(), renderer)


def test_json_logs_flag_overrides_terminal(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: True, raising=False)

    configure_structlog(log_level="INFO", json_logs=True)

    assert isinstance(_root_renderer(), structlog.processors.JSONRenderer)


def test_redaction_replaces_contract_text_with_length() -> None:
    redact = build_redaction_processor()
    text = "甲方：ABC公司"

    event = redact(
        None,
        "info",
        {
            "event": "analysis_started",
            "text": text,
            "api_key": "sk-secret",
            "authorization": "Bearer sk-secret",
        },
    )

    assert event == {
        "event": "analysis_started",
        "text_length": len(text),
        "api_key": MASK,
        "authorization": MASK,
    }


def test_redaction_keeps_existing_length_field() -> None:
    redact = build_redaction_processor()

    event = redact(None, "info", {"event": "e", "text": "abc", "text_length": 42})

    assert event == {"event": "e", "text_length": 42}


def test_redaction_scrubs_stdlib_extra_mapping() -> None:
    redact = build_redaction_processor(
        text_fields=("body",), credential_fields=("token",)
    )

    event = redact(
        None,
        "info",
        {"event": "provider_request", "extra": {"body": "xy", "token": "t", "id": 1}},
    )

    assert event["extra"] == {"body_length": 2, "token": MASK, "id": 1}


def test_configured_pipeline_never_writes_contract_text(
    capsys: pytest.CaptureFixture[str],
) -> None:
    configure_structlog(log_level="INFO", json_logs=True)
    text = "保密条款内容"

    structlog.stdlib.get_logger("tests.redaction").info(
        "analysis_started", text=text, api_key="sk-secret"
    )

    line = capsys.readouterr().err.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["event"] == "analysis_started"
    assert payload["text_length"] == len(text)
    assert payload["api_key"] == MASK
    assert text not in line


@pytest.mark.parametrize(
    ("helper", "level"),
    [
        (log_info, "info"),
        (log_warning, "warning"),
        (log_error, "error"),
        (log_exception, "exception"),
    ],
)
def test_helpers_forward_keyword_fields(
    helper: Callable[..., None], level: str
) -> None:
    logger = FakeLogger()

    helper(logger, "retry_scheduled", service="DeepSeek", attempt=3)

    assert logger.calls == [
        (level, "retry_scheduled", {"service": "DeepSeek", "attempt": 3})
    ]


def test_helpers_pass_fields_as_stdlib_extra(
    caplog: pytest.LogCaptureFixture,
) -> None:
    logger = logging.getLogger("tests.contract_core.helpers")

    with caplog.at_level(logging.WARNING, logger=logger.name):
        log_warning(logger, "health_check_failed", service="deepseek_api")

    record = caplog.records[-1]
    assert record.getMessage() == "health_check_failed"
    assert record.service == "deepseek_api"  # type: ignore[attr-defined]
