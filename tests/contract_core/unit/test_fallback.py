from __future__ import annotations

from contract_core.analysis.fallback import LocalContractAnalyzer
from contract_core.analysis.models import AnalysisMethod, ParsingMethod

CONTRACT_TEXT = (
    "服务合同。甲方：ABC公司，乙方：XYZ公司。合同金额100,000元。"
    "本合同到期后自动续约。签订日期2024年1月15日，付款日期2024-06-01，"
    "到期日期2025年1月14日。服务期限12个月。"
)


def _terms(text: str) -> dict[str, object]:
    result = LocalContractAnalyzer().analyze(text)
    return {term["term"]: term["value"] for term in result.data.key_terms}


def test_auto_renewal_risk_is_deterministic() -> None:
    analyzer = LocalContractAnalyzer()

    first = analyzer.analyze(CONTRACT_TEXT)
    second = analyzer.analyze(CONTRACT_TEXT)

    assert [risk["risk"] for risk in first.data.risk_points] == ["自动续约风险"]
    assert first.data.as_dict() == second.data.as_dict()


def test_extracts_parties_amount_and_duration() -> None:
    assert _terms(CONTRACT_TEXT) == {
        "甲方": "ABC公司",
        "乙方": "XYZ公司",
        "合同金额": "100,000元",
        "服务期限": "12个月",
    }


def test_parties_without_names_use_placeholders() -> None:
    terms = _terms("Party A and Party B agree on a fixed term.")

    assert terms == {
        "甲方": "示例甲方公司",
        "乙方": "示例乙方公司",
        "服务期限": "12个月",
    }


def test_english_keywords_match_case_insensitively() -> None:
    result = LocalContractAnalyzer().analyze(
        "This agreement will Auto-Renew. A PENALTY applies. Exclusive supplier."
    )

    assert [(risk["risk"], risk["level"]) for risk in result.data.risk_points] == [
        ("自动续约风险", "medium"),
        ("高额违约金", "high"),
        ("独家限制", "medium"),
    ]
    assert result.data.summary["special_terms"] == "自动续约风险、高额违约金、独家限制"


def test_dates_are_typed_by_position_and_normalised() -> None:
    result = LocalContractAnalyzer().analyze(CONTRACT_TEXT)

    assert [(d["date_type"], d["date_value"]) for d in result.data.key_dates] == [
        ("签订日期", "2024-1-15"),
        ("重要日期", "2024-06-01"),
        ("到期日期", "2025-1-14"),
    ]
    assert [d["importance"] for d in result.data.key_dates] == [
        "high",
        "medium",
        "high",
    ]


def test_single_date_is_the_signing_date() -> None:
    result = LocalContractAnalyzer().analyze("signed on 3/15/2024")

    assert [(d["date_type"], d["date_value"]) for d in result.data.key_dates] == [
        ("签订日期", "3/15/2024")
    ]


def test_contract_type_comes_from_title_or_text() -> None:
    analyzer = LocalContractAnalyzer()

    assert analyzer.analyze(CONTRACT_TEXT).data.summary["contract_type"] == "服务合同"
    assert (
        analyzer.analyze("设备清单", title="办公设备采购").data.summary["contract_type"]
        == "采购合同"
    )
    assert analyzer.analyze("").data.summary["contract_type"] == "商业合同"


def test_empty_text_yields_empty_findings_and_local_metadata() -> None:
    result = LocalContractAnalyzer().analyze("")

    assert result.success is True
    assert result.data.key_terms == ()
    assert result.data.risk_points == ()
    assert result.data.key_dates == ()
    assert result.data.summary["special_terms"] == "未识别到特殊条款"
    assert result.metadata.model == "simulate"
    assert result.metadata.analysis_method == AnalysisMethod.SIMULATE
    assert result.metadata.parsing_method == ParsingMethod.LOCAL
