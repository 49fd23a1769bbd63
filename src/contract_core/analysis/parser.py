"""Turn raw provider output into an ``AnalysisResult``.

Parsing is a ladder:

1. Repair the text (see ``repair``) and parse it as JSON.
2. Pick the payload. A ``data`` object carrying any of the finding arrays wins
   (``compatibility_mode``); otherwise the top-level object is used when it
   carries any of them (``standard``).
3. If no payload is found, extract well-known fragments with regular
   expressions (``lenient_regex``). This step always succeeds.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from contract_core.analysis.models import (
    AnalysisData,
    AnalysisMetadata,
    AnalysisResult,
    ParsingMethod,
)
from contract_core.analysis.repair import repair_json_text
from contract_core.errors import ResponseParseError

FINDING_FIELDS = ("key_terms", "risk_points", "key_dates")
DEFAULT_CONFIDENCE = 0.5
LENIENT_TERM_CONFIDENCE = 0.8
LENIENT_RISK_CONFIDENCE = 0.75
LENIENT_OVERALL_CONFIDENCE = 0.75
RAW_PREVIEW_LENGTH = 200

LENIENT_SUMMARY = {
    "contract_type": "商业合同",
    "main_obligations": "需进一步分析",
    "special_terms": "需进一步分析",
    "compliance_notes": "建议专业法律审核",
}
LENIENT_RISK_SUGGESTION = "请进一步评估此风险"

_TERM_RE = re.compile(
    r'\{[^}]*"term"\s*:\s*"([^"]+)"[^}]*"value"\s*:\s*"([^"]+)"[^}]*\}',
    re.IGNORECASE,
)
_RISK_RE = re.compile(
    r'\{[^}]*"risk"\s*:\s*"([^"]+)"[^}]*"description"\s*:\s*"([^"]+)"'
    r'[^}]*"level"\s*:\s*"([^"]+)"[^}]*\}',
    re.IGNORECASE,
)
_DATE_RE = re.compile(
    r'\{[^}]*"date_type"\s*:\s*"([^"]+)"[^}]*"date_value"\s*:\s*"([^"]+)"[^}]*\}',
    re.IGNORECASE,
)


def _round_confidence(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def calculate_overall_confidence(items: Iterable[Mapping[str, Any]]) -> float:
    """Average the numeric ``confidence`` of ``items``; 0.5 when none have one."""
    values = [
        float(item["confidence"])
        for item in items
        if isinstance(item.get("confidence"), (int, float))
        and not isinstance(item.get("confidence"), bool)
    ]
    if not values:
        return DEFAULT_CONFIDENCE
    return _round_confidence(sum(values) / len(values))


def _has_findings(candidate: object) -> bool:
    return isinstance(candidate, Mapping) and any(
        field in candidate for field in FINDING_FIELDS
    )


def select_payload(parsed: object) -> tuple[Mapping[str, Any], ParsingMethod] | None:
    """Return the findings payload and how it was located, or ``None``."""
    if not isinstance(parsed, Mapping):
        return None
    nested = parsed.get("data")
    if _has_findings(nested):
        assert isinstance(nested, Mapping)
        return nested, ParsingMethod.COMPATIBILITY_MODE
    if _has_findings(parsed):
        return parsed, ParsingMethod.STANDARD
    return None


def _items(value: object) -> list[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def build_analysis_data(payload: Mapping[str, Any]) -> AnalysisData:
    """Normalise a findings payload; missing arrays become empty."""
    summary = payload.get("summary")
    return AnalysisData(
        key_terms=tuple(_items(payload.get("key_terms"))),
        risk_points=tuple(_items(payload.get("risk_points"))),
        key_dates=tuple(_items(payload.get("key_dates"))),
        summary=summary if isinstance(summary, Mapping) else {},
    )


def lenient_extract(raw: str) -> AnalysisData:
    """Pull term, risk and date fragments straight out of ``raw``."""
    key_terms = [
        {"term": term, "value": value, "confidence": LENIENT_TERM_CONFIDENCE}
        for term, value in _TERM_RE.findall(raw)
    ]
    risk_points = [
        {
            "risk": risk,
            "description": description,
            "level": level,
            "confidence": LENIENT_RISK_CONFIDENCE,
            "suggestion": LENIENT_RISK_SUGGESTION,
        }
        for risk, description, level in _RISK_RE.findall(raw)
    ]
    key_dates = [
        {
            "date_type": date_type,
            "date_value": date_value,
            "description": date_type,
            "importance": "medium",
        }
        for date_type, date_value in _DATE_RE.findall(raw)
    ]
    return AnalysisData(
        key_terms=tuple(key_terms),
        risk_points=tuple(risk_points),
        key_dates=tuple(key_dates),
        summary=LENIENT_SUMMARY,
    )


def parse_analysis_response(raw: object, *, model: str) -> AnalysisResult:
    """Parse one provider response into a result envelope.

    Raises:
        ResponseParseError: If ``raw`` is not a string.
    """
    if not isinstance(raw, str):
        raise ResponseParseError(
            f"provider response must be text, got {type(raw).__name__}"
        )

    parse_error = "response does not contain analysis fields"
    try:
        parsed = json.loads(repair_json_text(raw))
    except ValueError as exc:
        parsed = None
        parse_error = str(exc)

    selected = select_payload(parsed)
    if selected is not None:
        payload, method = selected
        data = build_analysis_data(payload)
        return AnalysisResult(
            success=True,
            data=data,
            metadata=AnalysisMetadata(
                model=model,
                confidence=calculate_overall_confidence(
                    (*data.key_terms, *data.risk_points, *data.key_dates)
                ),
                parsing_method=method,
            ),
        )

    return AnalysisResult(
        success=True,
        data=lenient_extract(raw),
        metadata=AnalysisMetadata(
            model=f"{model}-lenient",
            confidence=LENIENT_OVERALL_CONFIDENCE,
            parsing_method=ParsingMethod.LENIENT_REGEX,
            extra={
                "parsing_error": parse_error,
                "fallback_reason": "json_parsing_failed",
                "raw_response_preview": raw[:RAW_PREVIEW_LENGTH],
            },
        ),
    )
