from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta


class FakeLogger:
    """Capture structured logger events for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    @property
    def events(self) -> list[str]:
        return [event for _, event, _ in self.calls]

    def _record(self, level: str, event: str, **kwargs: object) -> None:
        self.calls.append((level, event, kwargs))

    def info(self, event: str, **kwargs: object) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: object) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: object) -> None:
        self._record("error", event, **kwargs)

    def exception(self, event: str, **kwargs: object) -> None:
        self._record("exception", event, **kwargs)

    def fields_for(self, event: str) -> dict[str, object]:
        for _, name, fields in reversed(self.calls):
            if name == event:
                return fields
        raise AssertionError(f"event not logged: {event}")


class RecordingSleep:
    """Async sleep double that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    """Controllable UTC clock for modules exposing a ``_utcnow`` hook."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = datetime(2024, 1, 1, tzinfo=UTC) if start is None else start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)


class ScriptedOperation:
    """Async operation that raises or returns scripted outcomes in order.

    The last outcome repeats once the script is exhausted.
    """

    def __init__(self, outcomes: Sequence[object]) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> object:
        index = min(self.calls, len(self._outcomes) - 1)
        self.calls += 1
        outcome = self._outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome
