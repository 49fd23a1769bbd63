from __future__ import annotations

import pytest

from tests.contract_core.support.fakes import FakeClock, FakeLogger, RecordingSleep


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Provide an async sleep double that never waits."""
    return RecordingSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a controllable UTC clock."""
    return FakeClock()
