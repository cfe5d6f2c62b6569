from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
import logging
from typing import Any, Iterable, Sequence
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.core.errors import NotFoundError, ValidationError
from execintel.domain.models import ReportSection, ReportSource, StrategicReport
from execintel.persistence.repos import reports as reports_repo
from execintel.persistence.repos import sections as sections_repo
from execintel.persistence.repos import sources as sources_repo
from execintel.providers.insights.base import InsightProvider, InsightResult
from execintel.providers.insights.registry import default_providers, select_providers
from execintel.services.report_audit import Actor, append_entry


logger = logging.getLogger(__name__)

_SCORE_FIELDS = (
    "overall_strategic_score",
    "risk_posture_score",
    "opportunity_score",
    "messaging_alignment_score",
    "competitive_position_score",
    "brand_health_score",
)


@dataclass
class AggregatedInsights:
    """Request-time composite of upstream summaries; every block is optional."""

    media_performance: dict[str, Any] | None = None
    competitive_intel: dict[str, Any] | None = None
    crisis_status: dict[str, Any] | None = None
    brand_health: dict[str, Any] | None = None
    governance: dict[str, Any] | None = None
    investor_sentiment: dict[str, Any] | None = None
    executive_metrics: dict[str, Any] | None = None
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class AggregationOutcome:
    insights: AggregatedInsights
    results: list[InsightResult]


async def aggregate_insights(
    session: AsyncSession,
    *,
    tenant_id: str,
    period_start: date | None,
    period_end: date | None,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
    providers: Sequence[InsightProvider] | None = None,
) -> AggregationOutcome:
    """Query every selected upstream independently.

    A provider that raises or has no data contributes no block; the failure is
    logged and recorded under ``errors`` and the remaining providers still run.
    """
    selected = select_providers(providers or default_providers(), include=include, exclude=exclude)
    insights = AggregatedInsights()
    results: list[InsightResult] = []
    for provider in selected:
        try:
            result = await provider.fetch(
                session,
                tenant_id=tenant_id,
                period_start=period_start,
                period_end=period_end,
            )
        except Exception as exc:  # noqa: BLE001 - one upstream must not block the others
            logger.warning(
                "insight_provider_failed source_system=%s tenant_id=%s",
                provider.source_system,
                tenant_id,
                exc_info=exc,
            )
            insights.errors[provider.source_system] = str(exc) or type(exc).__name__
            continue
        if result is None:
            continue
        setattr(insights, result.block_key, result.block)
        results.append(result)
    return AggregationOutcome(insights=insights, results=results)


def _num(block: dict[str, Any] | None, key: str) -> float:
    if not block:
        return 0.0
    value = block.get(key)
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _opt(block: dict[str, Any] | None, key: str) -> float | None:
    if not block or block.get(key) is None:
        return None
    return _num(block, key)


def compute_kpis_snapshot(insights: AggregatedInsights) -> dict[str, Any]:
    kpis: dict[str, Any] = {}
    if insights.media_performance:
        block = insights.media_performance
        kpis["media_reach"] = block.get("reach", 0)
        kpis["media_impressions"] = block.get("impressions", 0)
        kpis["media_sentiment"] = block.get("sentiment", 0)
        kpis["media_score"] = block.get("overall_score", 0)
    if insights.competitive_intel:
        kpis["competitive_position_index"] = insights.competitive_intel.get("position_index", 0)
        kpis["competitors_tracked"] = len(insights.competitive_intel.get("top_competitors") or [])
    if insights.crisis_status:
        kpis["crisis_readiness"] = insights.crisis_status.get("readiness_score", 75)
        kpis["active_crises"] = insights.crisis_status.get("active_crises", 0)
    if insights.brand_health:
        kpis["brand_score"] = insights.brand_health.get("overall_score", 0)
        kpis["brand_awareness"] = insights.brand_health.get("awareness_index", 0)
    if insights.governance:
        kpis["compliance_score"] = insights.governance.get("compliance_score", 0)
        kpis["esg_score"] = insights.governance.get("esg_score", 0)
        kpis["open_governance_issues"] = insights.governance.get("open_issues", 0)
    if insights.investor_sentiment:
        kpis["investor_sentiment"] = insights.investor_sentiment.get("overall_score", 0)
        kpis["analyst_coverage"] = insights.investor_sentiment.get("analyst_coverage", 0)
    if insights.executive_metrics:
        kpis["executive_health"] = insights.executive_metrics.get("overall_health_score", 0)
        kpis["priority_alerts"] = len(insights.executive_metrics.get("priority_alerts") or [])
    return kpis


def compute_strategic_scores(insights: AggregatedInsights) -> dict[str, float | None]:
    # Overall is the mean of the populated headline scores; zeros count as missing.
    headline = [
        _num(insights.media_performance, "overall_score"),
        _num(insights.competitive_intel, "position_index"),
        _num(insights.brand_health, "overall_score"),
        _num(insights.governance, "compliance_score"),
    ]
    populated = [value for value in headline if value > 0]
    overall = round(sum(populated) / len(populated)) if populated else None
    position = _opt(insights.competitive_intel, "position_index")
    return {
        "overall_strategic_score": overall,
        "risk_posture_score": _opt(insights.crisis_status, "readiness_score"),
        "opportunity_score": position,
        "messaging_alignment_score": _opt(insights.media_performance, "sentiment"),
        "competitive_position_score": position,
        "brand_health_score": _opt(insights.brand_health, "overall_score"),
    }


def build_summary(
    sections: Sequence[ReportSection],
    insights: AggregatedInsights,
) -> dict[str, Any]:
    executive = next((s for s in sections if s.section_type == "executive_summary"), None)
    key_insights: list[str] = []
    for section in sections:
        key_insights.extend((section.key_points or [])[:2])
    risks: list[Any] = []
    if insights.crisis_status:
        risks.extend(insights.crisis_status.get("risk_factors") or [])
    if insights.brand_health:
        risks.extend(insights.brand_health.get("reputation_risks") or [])
    opportunities: list[Any] = []
    if insights.competitive_intel:
        opportunities.extend(insights.competitive_intel.get("market_trends") or [])
        opportunities.extend(insights.competitive_intel.get("strengths") or [])
    return {
        "executive_summary_text": (executive.content_md or "")[:500] if executive else "",
        "key_insights": key_insights[:10],
        "top_risks": risks[:5],
        "top_opportunities": opportunities[:5],
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


def apply_scores(report: StrategicReport, scores: dict[str, float | None]) -> None:
    for key in _SCORE_FIELDS:
        setattr(report, key, scores.get(key))


def upsert_sources(
    report: StrategicReport,
    results: Sequence[InsightResult],
    existing: dict[tuple[str, str], ReportSource],
    session: AsyncSession,
) -> tuple[int, int]:
    """Attach provider results as sources, deduplicated by (system, source id).

    Returns ``(sources_updated, new_data_points)``.
    """
    touched = 0
    data_points = 0
    now = datetime.now(timezone.utc)
    for result in results:
        key = (result.source_system, result.source_id)
        source = existing.get(key)
        if source is None:
            source = ReportSource(
                id=str(uuid4()),
                tenant_id=report.tenant_id,
                report_id=report.id,
                source_system=result.source_system,
                source_id=result.source_id,
            )
            session.add(source)
            existing[key] = source
        source.source_type = result.source_type
        source.source_title = result.source_title
        source.source_url = result.source_url
        source.extracted_data = result.extracted_data
        source.data_points_count = result.data_points_count
        source.relevance_score = result.relevance_score
        source.quality_score = result.quality_score
        source.is_primary = result.is_primary
        source.extracted_at = now
        touched += 1
        data_points += result.data_points_count
    return touched, data_points


async def existing_sources(
    session: AsyncSession, *, tenant_id: str, report_id: str
) -> dict[tuple[str, str], ReportSource]:
    rows = await sources_repo.list_sources(session, tenant_id=tenant_id, report_id=report_id)
    return {(row.source_system, row.source_id): row for row in rows}


async def refresh_insights(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    actor: Actor,
    force_refresh: bool = False,
    update_kpis: bool = True,
    update_summary: bool = False,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
    providers: Sequence[InsightProvider] | None = None,
) -> dict[str, Any] | None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    outcome = await aggregate_insights(
        session,
        tenant_id=tenant_id,
        period_start=report.period_start,
        period_end=report.period_end,
        include=include,
        exclude=exclude,
        providers=providers,
    )
    try:
        if force_refresh:
            await sources_repo.delete_for_report(session, tenant_id=tenant_id, report_id=report_id)
            existing: dict[tuple[str, str], ReportSource] = {}
        else:
            existing = await existing_sources(session, tenant_id=tenant_id, report_id=report_id)
        sources_updated, new_data_points = upsert_sources(report, outcome.results, existing, session)
        if update_kpis:
            report.kpis_snapshot = compute_kpis_snapshot(outcome.insights)
            apply_scores(report, compute_strategic_scores(outcome.insights))
        if update_summary:
            sections = await sections_repo.list_sections(session, tenant_id=tenant_id, report_id=report_id)
            report.summary_json = build_summary(sections, outcome.insights)
        report.updated_by = actor.actor_id
        append_entry(
            session,
            tenant_id=tenant_id,
            report_id=report_id,
            event_type="insights_refreshed",
            actor=actor,
            description=f"Refreshed insights from {sources_updated} sources",
            changes={
                "sources_updated": sources_updated,
                "new_data_points": new_data_points,
                "force_refresh": force_refresh,
                "failed_systems": sorted(outcome.insights.errors),
            },
        )
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    await session.refresh(report)
    return {
        "report": report,
        "insights": outcome.insights.to_dict(),
        "sources_updated": sources_updated,
        "new_data_points": new_data_points,
        "errors": dict(outcome.insights.errors),
    }


async def add_source(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    actor: Actor,
    source_system: str,
    source_id: str | None = None,
    source_type: str | None = None,
    source_title: str | None = None,
    source_url: str | None = None,
    extracted_data: dict[str, Any] | None = None,
    relevance_score: float | None = None,
    quality_score: float | None = None,
    is_primary: bool = False,
    used_in_sections: list[str] | None = None,
) -> ReportSource:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        raise NotFoundError("Report not found")
    upstream_id = source_id or str(uuid4())
    duplicate = await sources_repo.get_by_reference(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        source_system=source_system,
        upstream_id=upstream_id,
    )
    if duplicate is not None:
        raise ValidationError("source_id", "Source already attached to this report")
    data = extracted_data or {}
    source = ReportSource(
        id=str(uuid4()),
        tenant_id=tenant_id,
        report_id=report_id,
        source_system=source_system,
        source_id=upstream_id,
        source_type=source_type,
        source_title=source_title,
        source_url=source_url,
        extracted_data=data,
        data_points_count=len(data),
        relevance_score=relevance_score,
        quality_score=quality_score,
        is_primary=is_primary,
        used_in_sections=list(used_in_sections or []),
    )
    session.add(source)
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        event_type="source_added",
        actor=actor,
        description=f"Added {source_system} source",
        changes={"source_id": source.id, "source_system": source_system},
    )
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return source


async def update_source_scores(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    source_id: str,
    actor: Actor,
    relevance_score: float | None = None,
    quality_score: float | None = None,
    is_primary: bool | None = None,
) -> ReportSource | None:
    # Sources are read-only once attached apart from their scores.
    source = await sources_repo.get_source(session, tenant_id=tenant_id, report_id=report_id, source_id=source_id)
    if source is None:
        return None
    requested = {"relevance_score": relevance_score, "quality_score": quality_score, "is_primary": is_primary}
    changes: dict[str, Any] = {}
    for field, value in requested.items():
        if value is not None and getattr(source, field) != value:
            changes[field] = {"from": getattr(source, field), "to": value}
            setattr(source, field, value)
    if not changes:
        return source
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        event_type="updated",
        actor=actor,
        description=f"Updated {source.source_system} source scores",
        changes={"source_id": source.id, **changes},
    )
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return source


async def delete_source(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    source_id: str,
    actor: Actor,
) -> bool:
    source = await sources_repo.get_source(session, tenant_id=tenant_id, report_id=report_id, source_id=source_id)
    if source is None:
        return False
    await session.delete(source)
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        event_type="source_removed",
        actor=actor,
        description=f"Removed {source.source_system} source",
        changes={"source_id": source.id, "source_system": source.source_system},
    )
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return True
