from __future__ import annotations

import asyncio

import pytest

import contract_core.health as health_mod
from contract_core.health import (
    OVERALL_DEGRADED,
    OVERALL_HEALTHY,
    HealthMonitor,
    ServiceNotRegisteredError,
    ServiceStatus,
)
from tests.contract_core.support.fakes import FakeClock, FakeLogger

pytestmark = pytest.mark.asyncio


class _MonotonicClock:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def monitor(
    monkeypatch: pytest.MonkeyPatch, fake_clock: FakeClock, fake_logger: FakeLogger
) -> HealthMonitor:
    monkeypatch.setattr(health_mod, "_utcnow", fake_clock.now)
    return HealthMonitor(logger=fake_logger)


async def test_check_service_marks_healthy_for_async_probe(
    monitor: HealthMonitor, fake_clock: FakeClock
) -> None:
    async def _probe() -> bool:
        return True

    monitor.register_service("provider", _probe)
    result = await monitor.check_service("provider")

    assert result.name == "provider"
    assert result.status == ServiceStatus.HEALTHY
    assert result.result is True
    assert result.error is None
    record = monitor.get_record("provider")
    assert record.consecutive_failures == 0
    assert record.last_check_at == fake_clock.now()


async def test_check_service_accepts_sync_probe(monitor: HealthMonitor) -> None:
    monitor.register_service("cache", lambda: {"ping": "pong"})

    result = await monitor.check_service("cache")

    assert result.healthy
    assert result.result == {"ping": "pong"}


async def test_failing_probe_marks_unhealthy_and_counts(
    monitor: HealthMonitor, fake_logger: FakeLogger
) -> None:
    async def _probe() -> bool:
        raise ConnectionError("refused")

    monitor.register_service("provider", _probe)
    await monitor.check_service("provider")
    result = await monitor.check_service("provider")

    assert result.status == ServiceStatus.UNHEALTHY
    assert result.error == "refused"
    record = monitor.get_record("provider")
    assert record.consecutive_failures == 2
    assert record.last_error == "refused"
    assert fake_logger.fields_for("health_check_failed")["consecutive_failures"] == 2


async def test_falsy_probe_result_is_unhealthy(monitor: HealthMonitor) -> None:
    monitor.register_service("provider", lambda: False)

    result = await monitor.check_service("provider")

    assert result.status == ServiceStatus.UNHEALTHY
    assert result.error == "probe returned False"


async def test_recovery_resets_consecutive_failures(monitor: HealthMonitor) -> None:
    outcomes = iter([False, True])
    monitor.register_service("provider", lambda: next(outcomes))

    await monitor.check_service("provider")
    await monitor.check_service("provider")

    record = monitor.get_record("provider")
    assert record.status == ServiceStatus.HEALTHY
    assert record.consecutive_failures == 0
    assert record.total_checks == 2
    assert record.total_successes == 1


async def test_unregistered_service_is_an_error(monitor: HealthMonitor) -> None:
    with pytest.raises(ServiceNotRegisteredError, match="service not registered"):
        await monitor.check_service("missing")


async def test_check_all_services_runs_probes_concurrently(
    monitor: HealthMonitor, fake_clock: FakeClock
) -> None:
    both_started = asyncio.Event()
    started = 0

    async def _probe() -> bool:
        nonlocal started
        started += 1
        if started == 2:
            both_started.set()
        await asyncio.wait_for(both_started.wait(), timeout=1.0)
        return True

    monitor.register_service("a", _probe)
    monitor.register_service("b", _probe)

    report = await monitor.check_all_services()

    assert report.overall == OVERALL_HEALTHY
    assert [result.name for result in report.services] == ["a", "b"]
    assert report.timestamp == fake_clock.now()


async def test_one_failing_probe_degrades_without_aborting(
    monitor: HealthMonitor,
) -> None:
    async def _broken() -> bool:
        raise RuntimeError("down")

    monitor.register_service("ok", lambda: True)
    monitor.register_service("broken", _broken)

    report = await monitor.check_all_services()

    assert report.overall == OVERALL_DEGRADED
    statuses = {result.name: result.status for result in report.services}
    assert statuses == {
        "ok": ServiceStatus.HEALTHY,
        "broken": ServiceStatus.UNHEALTHY,
    }


async def test_check_all_services_with_no_services_is_healthy(
    monitor: HealthMonitor,
) -> None:
    report = await monitor.check_all_services()

    assert report.overall == OVERALL_HEALTHY
    assert report.services == ()


async def test_cached_check_reuses_fresh_result() -> None:
    clock = _MonotonicClock()
    monitor = HealthMonitor(logger=FakeLogger(), monotonic=clock)
    calls = 0

    def _probe() -> bool:
        nonlocal calls
        calls += 1
        return True

    monitor.register_service("provider", _probe)

    await monitor.check_service_cached("provider", max_age_seconds=60.0)
    clock.value += 59.0
    await monitor.check_service_cached("provider", max_age_seconds=60.0)
    assert calls == 1

    clock.value += 2.0
    result = await monitor.check_service_cached("provider", max_age_seconds=60.0)
    assert calls == 2
    assert result.healthy


async def test_concurrent_stale_callers_share_one_probe() -> None:
    monitor = HealthMonitor(logger=FakeLogger(), monotonic=_MonotonicClock())
    release = asyncio.Event()
    calls = 0

    async def _probe() -> bool:
        nonlocal calls
        calls += 1
        await release.wait()
        return True

    monitor.register_service("provider", _probe)

    waiters = [
        asyncio.create_task(
            monitor.check_service_cached("provider", max_age_seconds=0.0)
        )
        for _ in range(3)
    ]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert all(result is results[0] for result in results)
    assert monitor.get_record("provider").total_checks == 1


async def test_service_stats_report_success_rate(monitor: HealthMonitor) -> None:
    outcomes = iter([True, False, True])
    monitor.register_service("provider", lambda: next(outcomes))
    monitor.register_service("idle", lambda: True)

    for _ in range(3):
        await monitor.check_service("provider")

    stats = monitor.get_service_stats()
    assert stats["provider"]["status"] == "healthy"
    assert stats["provider"]["success_rate"] == "66.67%"
    assert stats["provider"]["last_check_at"] == "2024-01-01T00:00:00+00:00"
    assert stats["idle"]["success_rate"] == "N/A"
    assert stats["idle"]["status"] == "unknown"
    assert stats["idle"]["last_check_at"] is None
