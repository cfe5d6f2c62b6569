from __future__ import annotations

from typing import Iterable

from execintel.providers.insights.base import InsightProvider
from execintel.providers.insights.upstream import SnapshotInsightProvider


def default_providers() -> list[InsightProvider]:
    """Upstream feature areas aggregated into report insights, in query order."""
    return [
        SnapshotInsightProvider(
            source_system="media_performance",
            block_key="media_performance",
            source_type="performance_summary",
            default_relevance=85,
            fields={
                "overall_score": 0,
                "reach": 0,
                "impressions": 0,
                "sentiment": 0,
                "top_mentions": [],
                "trends": [],
            },
        ),
        SnapshotInsightProvider(
            source_system="competitive_intel",
            block_key="competitive_intel",
            source_type="competitive_analysis",
            default_relevance=90,
            fields={
                "position_index": 0,
                "top_competitors": [],
                "strengths": [],
                "weaknesses": [],
                "market_trends": [],
            },
        ),
        SnapshotInsightProvider(
            source_system="crisis_engine",
            block_key="crisis_status",
            source_type="crisis_readiness",
            default_relevance=95,
            fields={
                "readiness_score": 75,
                "active_crises": 0,
                "recent_crises": [],
                "risk_factors": [],
            },
            primary=True,
        ),
        SnapshotInsightProvider(
            source_system="brand_reputation",
            block_key="brand_health",
            source_type="reputation_summary",
            default_relevance=85,
            fields={
                "overall_score": 0,
                "awareness_index": 0,
                "sentiment_trend": "stable",
                "key_attributes": [],
                "reputation_risks": [],
            },
        ),
        SnapshotInsightProvider(
            source_system="governance",
            block_key="governance",
            source_type="compliance_summary",
            default_relevance=80,
            fields={
                "compliance_score": 0,
                "esg_score": 0,
                "open_issues": 0,
                "upcoming_deadlines": [],
            },
        ),
        SnapshotInsightProvider(
            source_system="investor_relations",
            block_key="investor_sentiment",
            source_type="investor_summary",
            default_relevance=90,
            fields={
                "overall_score": 0,
                "analyst_coverage": 0,
                "recent_earnings": None,
                "key_questions": [],
            },
        ),
        SnapshotInsightProvider(
            source_system="exec_command_center",
            block_key="executive_metrics",
            source_type="command_center_summary",
            default_relevance=95,
            fields={
                "overall_health_score": 0,
                "priority_alerts": [],
                "pending_decisions": [],
                "recent_digests": [],
            },
            primary=True,
        ),
    ]


def select_providers(
    providers: Iterable[InsightProvider],
    *,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
) -> list[InsightProvider]:
    included = set(include) if include else None
    excluded = set(exclude or ())
    return [
        provider
        for provider in providers
        if (included is None or provider.source_system in included)
        and provider.source_system not in excluded
    ]
