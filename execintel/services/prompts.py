from __future__ import annotations

import json
from typing import Any

from execintel.domain.enums import SECTION_TITLES
from execintel.domain.models import StrategicReport


_AUDIENCE_PROMPTS: dict[str, str] = {
    "ceo": (
        "You are a chief of staff writing for the CEO. Lead with decisions, be direct, "
        "and keep every paragraph actionable."
    ),
    "c_suite": (
        "You are a strategy advisor writing for the C-suite. Balance cross-functional "
        "impact with clear ownership of next steps."
    ),
    "board": (
        "You are preparing board materials. Emphasize governance, risk oversight and "
        "long-term value; avoid operational detail."
    ),
    "investors": (
        "You are an investor relations lead. Frame findings around growth, risk and "
        "market positioning in measured language."
    ),
    "senior_leadership": (
        "You are briefing senior leadership. Connect strategy to execution priorities "
        "for the coming quarter."
    ),
    "all_executives": (
        "You are writing a broad executive briefing. Keep it accessible and focused on "
        "shared priorities."
    ),
}

_LENGTH_GUIDANCE = {
    "brief": "Keep it under 150 words.",
    "standard": "Aim for 250-400 words.",
    "comprehensive": "Be thorough; up to 800 words.",
}

_SECTION_FOCUS: dict[str, str] = {
    "executive_summary": "Summarize the period's strategic position and the three most important takeaways.",
    "strategic_outlook": "Describe the outlook for the next period with leading indicators.",
    "market_dynamics": "Explain market shifts and their implications.",
    "competitive_positioning": "Assess position against top competitors, strengths and weaknesses.",
    "risk_opportunity_matrix": "List the top risks and opportunities with likelihood and impact.",
    "messaging_alignment": "Evaluate how well external coverage matches intended messaging.",
    "ceo_talking_points": "Write concise talking points the CEO can use this week.",
    "quarter_changes": "Highlight what changed since the previous period.",
    "key_kpis_narrative": "Narrate the KPIs and what moved them.",
    "prioritized_initiatives": "Rank initiatives by expected impact.",
    "brand_health_overview": "Summarize brand health and reputation drivers.",
    "crisis_posture": "Describe crisis readiness and active exposures.",
    "governance_compliance": "Summarize governance, compliance and ESG status.",
    "investor_sentiment": "Summarize investor and analyst sentiment.",
    "media_performance_summary": "Summarize media reach, sentiment and top coverage.",
    "strategic_recommendations": "Give prioritized, concrete recommendations.",
    "appendix": "List supporting data points and methodology notes.",
    "custom": "Cover the topic requested in the custom instructions.",
}


def system_prompt_for(audience: str) -> str:
    base = _AUDIENCE_PROMPTS.get(audience, _AUDIENCE_PROMPTS["c_suite"])
    return f"{base} Write in markdown using headings and bullet points."


def build_section_prompt(
    report: StrategicReport,
    section_type: str,
    insights: dict[str, Any],
    *,
    custom_instructions: str | None = None,
) -> str:
    lines = [
        f"Report: {report.title}",
        f"Section: {SECTION_TITLES.get(section_type, section_type)}",
        f"Period: {report.period_start.isoformat()} to {report.period_end.isoformat()}",
    ]
    if report.fiscal_quarter or report.fiscal_year:
        lines.append(f"Fiscal period: {report.fiscal_quarter or ''} {report.fiscal_year or ''}".rstrip())
    lines.extend(
        [
            f"Audience: {report.audience}",
            f"Tone: {report.tone}",
            f"Length: {_LENGTH_GUIDANCE.get(report.target_length, _LENGTH_GUIDANCE['standard'])}",
            f"Focus: {_SECTION_FOCUS.get(section_type, _SECTION_FOCUS['custom'])}",
        ]
    )
    if not report.include_recommendations and section_type != "strategic_recommendations":
        lines.append("Do not include recommendations.")
    lines.append("Insights:")
    lines.append(json.dumps(insights, sort_keys=True, default=str))
    if custom_instructions:
        lines.append(f"Additional instructions: {custom_instructions}")
    return "\n".join(lines)
