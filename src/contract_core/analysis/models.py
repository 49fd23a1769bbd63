"""Immutable analysis result envelope."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class AnalysisMethod(StrEnum):
    """How an analysis result was produced."""

    PROVIDER = "deepseek"
    SIMULATE = "simulate"
    SIMULATE_FALLBACK = "simulate_fallback"
    SIMULATE_DISABLED = "simulate_disabled"
    SIMULATE_HEALTH_CHECK_FAILED = "simulate_health_check_failed"
    SIMULATE_CIRCUIT_OPEN = "simulate_circuit_open"
    SIMULATE_ERROR_FALLBACK = "simulate_error_fallback"


class ParsingMethod(StrEnum):
    """How a provider response was turned into structured data."""

    STANDARD = "standard"
    COMPATIBILITY_MODE = "compatibility_mode"
    LENIENT_REGEX = "lenient_regex"
    LOCAL = "local"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        frozen = {str(key): _freeze(item) for key, item in value.items()}
        return MappingProxyType(frozen)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, StrEnum):
        return value.value
    return value


def _freeze_items(items: Iterable[Mapping[str, Any]]) -> tuple[Mapping[str, Any], ...]:
    return tuple(_freeze(item) for item in items)


@dataclass(frozen=True)
class AnalysisData:
    """Structured contract findings."""

    key_terms: tuple[Mapping[str, Any], ...] = ()
    risk_points: tuple[Mapping[str, Any], ...] = ()
    key_dates: tuple[Mapping[str, Any], ...] = ()
    summary: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "key_terms", _freeze_items(self.key_terms))
        object.__setattr__(self, "risk_points", _freeze_items(self.risk_points))
        object.__setattr__(self, "key_dates", _freeze_items(self.key_dates))
        object.__setattr__(self, "summary", _freeze(self.summary))

    def as_dict(self) -> dict[str, Any]:
        return {
            "key_terms": _thaw(self.key_terms),
            "risk_points": _thaw(self.risk_points),
            "key_dates": _thaw(self.key_dates),
            "summary": _thaw(self.summary),
        }


@dataclass(frozen=True)
class AnalysisMetadata:
    """Provenance of an analysis result.

    ``analysis_method``, ``fallback_used`` and ``circuit_state`` are filled in
    by the resilient client; parsers leave them at their defaults.
    """

    model: str
    confidence: float
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    analysis_method: AnalysisMethod | None = None
    fallback_used: bool = False
    circuit_state: str | None = None
    parsing_method: ParsingMethod | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", _freeze(self.extra))

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "analyzed_at": self.analyzed_at.isoformat(),
            "confidence": self.confidence,
            "analysis_method": _thaw(self.analysis_method),
            "fallback_used": self.fallback_used,
            "circuit_state": self.circuit_state,
        }
        if self.parsing_method is not None:
            payload["parsing_method"] = self.parsing_method.value
        payload.update(_thaw(self.extra))
        return payload


@dataclass(frozen=True)
class AnalysisResult:
    """Envelope returned for every analysis attempt."""

    success: bool
    data: AnalysisData
    metadata: AnalysisMetadata

    def with_metadata(self, **changes: Any) -> AnalysisResult:
        """Return a copy with ``metadata`` fields replaced."""
        return replace(self, metadata=replace(self.metadata, **changes))

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data.as_dict(),
            "metadata": self.metadata.as_dict(),
        }
