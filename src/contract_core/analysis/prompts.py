"""Prompt text sent to the external chat-completions provider."""

from __future__ import annotations

SYSTEM_PROMPT = """你是一位资深的合同法律专家，精通中国民法典及相关法律法规，熟悉各类商业合同的标准条款和风险点。

分析原则：
- 严格遵循客观性，不做主观臆断
- 重点关注违约责任、付款条款、保密条款等关键内容
- 识别模糊表述、不对等条款和潜在风险
- 对不确定的信息标注合适的置信度"""

RESPONSE_SCHEMA = """{
  "key_terms": [
    {"term": "合同当事人类型", "value": "具体公司名称或个人", "confidence": 0.95}
  ],
  "risk_points": [
    {
      "risk": "风险类型名称",
      "description": "详细风险描述和法律影响",
      "level": "high",
      "suggestion": "风险规避建议",
      "confidence": 0.9,
      "related_clause": "相关合同条款"
    }
  ],
  "key_dates": [
    {
      "date_type": "签订日期、生效日期、到期日期、付款日期等",
      "date_value": "YYYY-MM-DD",
      "description": "日期说明",
      "importance": "high"
    }
  ],
  "summary": {
    "contract_type": "服务合同、采购合同、租赁合同等",
    "main_obligations": "主要义务概述",
    "special_terms": "特殊条款说明",
    "compliance_notes": "合规注意事项"
  }
}"""

HEALTH_CHECK_PROMPT = "ping"


def build_analysis_prompt(text: str, title: str = "") -> str:
    """Build the user prompt asking for a JSON analysis of ``text``."""
    subject = f"《{title}》" if title else "合同"
    return (
        f"请对以下{subject}进行全面的专业分析。\n\n"
        f"合同文本：\n{text}\n\n"
        f"请严格按照以下JSON格式返回分析结果，不要添加注释：\n\n{RESPONSE_SCHEMA}\n\n"
        "confidence字段表示置信度（0-1之间的数值）。"
    )
