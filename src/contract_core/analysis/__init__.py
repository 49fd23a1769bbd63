"""Contract analysis behind a circuit breaker, retries and a local fallback.

``build_analysis_client`` wires every component from ``AnalysisSettings``;
``ResilientAnalysisClient.analyze`` never fails because the provider is down,
it returns a result tagged with how it was produced instead.
"""

from contract_core.analysis.fallback import LocalContractAnalyzer
from contract_core.analysis.models import (
    AnalysisData,
    AnalysisMetadata,
    AnalysisMethod,
    AnalysisResult,
    ParsingMethod,
)
from contract_core.analysis.parser import (
    calculate_overall_confidence,
    lenient_extract,
    parse_analysis_response,
)
from contract_core.analysis.provider import (
    ChatCompletionsProvider,
    build_http_client,
    build_provider,
)
from contract_core.analysis.repair import REPAIR_STEPS, repair_json_text
from contract_core.analysis.service import (
    ResilientAnalysisClient,
    build_analysis_client,
)

__all__ = [
    "REPAIR_STEPS",
    "AnalysisData",
    "AnalysisMetadata",
    "AnalysisMethod",
    "AnalysisResult",
    "ChatCompletionsProvider",
    "LocalContractAnalyzer",
    "ParsingMethod",
    "ResilientAnalysisClient",
    "build_analysis_client",
    "build_http_client",
    "build_provider",
    "calculate_overall_confidence",
    "lenient_extract",
    "parse_analysis_response",
    "repair_json_text",
]
