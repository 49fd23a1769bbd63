"""Deterministic keyword analyzer used when the provider is unavailable."""

from __future__ import annotations

import re
from dataclasses import dataclass

from contract_core.analysis.models import (
    AnalysisData,
    AnalysisMetadata,
    AnalysisMethod,
    AnalysisResult,
    ParsingMethod,
)

LOCAL_MODEL_NAME = "simulate"
LOCAL_CONFIDENCE = 0.6

_AMOUNT_RE = re.compile(r"[\d,]+元|USD\s*[\d,]+|\$[\d,]+")
_DATE_RE = re.compile(r"\d{4}[-年]\d{1,2}[-月]\d{1,2}日?|\d{1,2}/\d{1,2}/\d{4}")
_DATE_PART_REPLACEMENTS = str.maketrans({"年": "-", "月": "-", "日": None})
_PARTY_NAME_RE = r"\s*[:：]\s*([^\s,，。;；\n]{2,40})"


@dataclass(frozen=True)
class _PartyRule:
    term: str
    markers: tuple[str, ...]
    default_value: str


@dataclass(frozen=True)
class _RiskRule:
    risk: str
    markers: tuple[str, ...]
    description: str
    level: str
    suggestion: str


_PARTY_RULES = (
    _PartyRule("甲方", ("甲方", "party a"), "示例甲方公司"),
    _PartyRule("乙方", ("乙方", "party b"), "示例乙方公司"),
)
_TERM_MARKERS = ("服务期限", "term")
_TERM_DEFAULT = "12个月"
_TERM_VALUE_RE = re.compile(
    r"(?:服务期限|term)[^\d\n]{0,10}(\d+\s*(?:个月|年|天|months?|years?|days?))",
    re.IGNORECASE,
)

_RISK_RULES = (
    _RiskRule(
        "自动续约风险",
        ("自动续约", "auto-renew"),
        "合同可能自动续约，需注意取消条款",
        "medium",
        "确认续约通知期限并设置提醒",
    ),
    _RiskRule(
        "高额违约金",
        ("违约金", "penalty"),
        "违约金比例较高，请谨慎履约",
        "high",
        "核实违约金比例是否符合法律规定",
    ),
    _RiskRule(
        "独家限制",
        ("独家", "exclusive"),
        "合同包含独家条款，可能限制与其他方合作",
        "medium",
        "评估独家条款的范围与期限",
    ),
)
_CONTRACT_TYPES = (
    ("服务", "服务合同"),
    ("采购", "采购合同"),
    ("租赁", "租赁合同"),
)
_DEFAULT_CONTRACT_TYPE = "商业合同"


def _date_type(index: int, count: int) -> str:
    if index == 0:
        return "签订日期"
    if index == count - 1:
        return "到期日期"
    return "重要日期"


class LocalContractAnalyzer:
    """Keyword-rule analyzer with no I/O and no randomness.

    The same text always yields the same findings, so results produced while
    the provider is down are reproducible.
    """

    def analyze(self, text: str, title: str = "") -> AnalysisResult:
        lowered = text.lower()
        key_terms = self._key_terms(text, lowered)
        risk_points = [
            {
                "risk": rule.risk,
                "description": rule.description,
                "level": rule.level,
                "suggestion": rule.suggestion,
                "confidence": LOCAL_CONFIDENCE,
            }
            for rule in _RISK_RULES
            if any(marker in lowered for marker in rule.markers)
        ]
        key_dates = self._key_dates(text)

        data = AnalysisData(
            key_terms=tuple(key_terms),
            risk_points=tuple(risk_points),
            key_dates=tuple(key_dates),
            summary={
                "contract_type": self._contract_type(f"{title} {text}"),
                "main_obligations": "需进一步分析",
                "special_terms": "、".join(risk["risk"] for risk in risk_points)
                or "未识别到特殊条款",
                "compliance_notes": "本地规则分析结果，建议专业法律审核",
            },
        )
        return AnalysisResult(
            success=True,
            data=data,
            metadata=AnalysisMetadata(
                model=LOCAL_MODEL_NAME,
                confidence=LOCAL_CONFIDENCE,
                analysis_method=AnalysisMethod.SIMULATE,
                parsing_method=ParsingMethod.LOCAL,
            ),
        )

    @staticmethod
    def _key_terms(text: str, lowered: str) -> list[dict[str, object]]:
        terms: list[dict[str, object]] = []
        for rule in _PARTY_RULES:
            if not any(marker in lowered for marker in rule.markers):
                continue
            match = re.search(re.escape(rule.term) + _PARTY_NAME_RE, text)
            value = match.group(1) if match else rule.default_value
            terms.append(
                {"term": rule.term, "value": value, "confidence": LOCAL_CONFIDENCE}
            )

        amount = _AMOUNT_RE.search(text)
        if amount is not None:
            terms.append(
                {
                    "term": "合同金额",
                    "value": amount.group(0),
                    "confidence": LOCAL_CONFIDENCE,
                }
            )

        if any(marker in lowered for marker in _TERM_MARKERS):
            duration = _TERM_VALUE_RE.search(text)
            terms.append(
                {
                    "term": "服务期限",
                    "value": duration.group(1) if duration else _TERM_DEFAULT,
                    "confidence": LOCAL_CONFIDENCE,
                }
            )
        return terms

    @staticmethod
    def _key_dates(text: str) -> list[dict[str, object]]:
        dates = _DATE_RE.findall(text)
        return [
            {
                "date_type": _date_type(index, len(dates)),
                "date_value": raw.translate(_DATE_PART_REPLACEMENTS),
                "description": _date_type(index, len(dates)),
                "importance": "high" if index in (0, len(dates) - 1) else "medium",
            }
            for index, raw in enumerate(dates)
        ]

    @staticmethod
    def _contract_type(text: str) -> str:
        for marker, contract_type in _CONTRACT_TYPES:
            if marker in text:
                return contract_type
        return _DEFAULT_CONTRACT_TYPE
