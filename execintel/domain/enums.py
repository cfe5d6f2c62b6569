from __future__ import annotations

from typing import Literal


ReportFormat = Literal[
    "quarterly_strategic_review",
    "annual_strategic_assessment",
    "board_strategy_brief",
    "ceo_intelligence_brief",
    "investor_strategy_update",
    "crisis_strategic_response",
    "competitive_strategy_report",
    "custom",
]
ReportStatus = Literal["draft", "generating", "review", "approved", "published", "archived"]
ReportAudience = Literal["ceo", "c_suite", "board", "investors", "senior_leadership", "all_executives"]
ReportTone = Literal["executive", "formal", "strategic"]
TargetLength = Literal["brief", "standard", "comprehensive"]
ExportFormat = Literal["pdf", "pptx", "html", "markdown"]

SectionType = Literal[
    "executive_summary",
    "strategic_outlook",
    "market_dynamics",
    "competitive_positioning",
    "risk_opportunity_matrix",
    "messaging_alignment",
    "ceo_talking_points",
    "quarter_changes",
    "key_kpis_narrative",
    "prioritized_initiatives",
    "brand_health_overview",
    "crisis_posture",
    "governance_compliance",
    "investor_sentiment",
    "media_performance_summary",
    "strategic_recommendations",
    "appendix",
    "custom",
]
SectionStatus = Literal["pending", "generated", "edited", "approved"]

SourceSystem = Literal[
    "pr_generator",
    "media_monitoring",
    "media_alerts",
    "media_performance",
    "competitive_intel",
    "crisis_engine",
    "brand_reputation",
    "brand_alerts",
    "governance",
    "risk_radar",
    "exec_command_center",
    "exec_digest",
    "board_reports",
    "investor_relations",
    "journalist_graph",
    "media_lists",
    "outreach_engine",
    "custom",
]

AuditEventType = Literal[
    "created",
    "updated",
    "status_changed",
    "generated",
    "generation_failed",
    "regenerated",
    "section_generated",
    "section_regenerated",
    "section_edited",
    "insights_refreshed",
    "source_added",
    "source_removed",
    "approved",
    "published",
    "archived",
    "deleted",
    "exported",
]
ActorType = Literal["user", "system", "ai"]

DeliveryPeriod = Literal["daily", "weekly", "monthly"]
TimeWindow = Literal["24h", "7d", "30d"]
DeliveryStatus = Literal["pending", "sending", "success", "partial_success", "error"]

RiskLevel = Literal["low", "medium", "high", "critical"]
ReplayStatus = Literal["queued", "running", "success", "failed"]

SECTION_TITLES: dict[str, str] = {
    "executive_summary": "Executive Summary",
    "strategic_outlook": "Strategic Outlook",
    "market_dynamics": "Market Dynamics",
    "competitive_positioning": "Competitive Positioning",
    "risk_opportunity_matrix": "Risk & Opportunity Matrix",
    "messaging_alignment": "Messaging Alignment",
    "ceo_talking_points": "CEO Talking Points",
    "quarter_changes": "Quarter-over-Quarter Changes",
    "key_kpis_narrative": "Key KPIs Narrative",
    "prioritized_initiatives": "Prioritized Initiatives",
    "brand_health_overview": "Brand Health Overview",
    "crisis_posture": "Crisis Posture",
    "governance_compliance": "Governance & Compliance",
    "investor_sentiment": "Investor Sentiment",
    "media_performance_summary": "Media Performance Summary",
    "strategic_recommendations": "Strategic Recommendations",
    "appendix": "Appendix",
    "custom": "Custom Section",
}

DEFAULT_SECTION_TYPES: list[str] = [
    "executive_summary",
    "strategic_outlook",
    "competitive_positioning",
    "risk_opportunity_matrix",
    "strategic_recommendations",
]
