from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
import logging
import time
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.core.errors import ConflictError, ExecIntelError, UpstreamFailure, ValidationError
from execintel.domain.enums import DEFAULT_SECTION_TYPES
from execintel.domain.lifecycle import assert_editable, assert_transition, is_noop
from execintel.domain.mapping import report_to_dict
from execintel.domain.models import DigestDeliveryLog, ReportSection, StrategicReport
from execintel.persistence.repos import reports as reports_repo
from execintel.persistence.repos import sections as sections_repo
from execintel.persistence.repos import sources as sources_repo
from execintel.providers.insights.base import InsightProvider
from execintel.providers.llm.base import LLMProvider
from execintel.services import delivery as delivery_service
from execintel.services import insights as insights_service
from execintel.services.exporter import ExportRenderer, StoragePathRenderer, build_export_link
from execintel.services.report_audit import Actor, append_entry
from execintel.services.section_generator import SectionOutcome, generate_section


logger = logging.getLogger(__name__)

MUTABLE_FIELDS = (
    "title",
    "description",
    "format",
    "audience",
    "period_start",
    "period_end",
    "fiscal_quarter",
    "fiscal_year",
    "section_types",
    "tone",
    "target_length",
    "include_charts",
    "include_recommendations",
)

_COMPARED_SCORES = (
    "overall_strategic_score",
    "risk_posture_score",
    "opportunity_score",
    "messaging_alignment_score",
    "competitive_position_score",
    "brand_health_score",
)


def _defaults(today: date) -> dict[str, Any]:
    return {
        "description": None,
        "format": "quarterly_strategic_review",
        "audience": "c_suite",
        "period_start": today - timedelta(days=90),
        "period_end": today,
        "fiscal_quarter": None,
        "fiscal_year": None,
        "section_types": list(DEFAULT_SECTION_TYPES),
        "tone": "executive",
        "target_length": "standard",
        "include_charts": True,
        "include_recommendations": True,
    }


def _validate(values: dict[str, Any]) -> None:
    if "title" in values:
        title = values["title"]
        if title is None or not str(title).strip():
            raise ValidationError("title", "title is required")
    start, end = values.get("period_start"), values.get("period_end")
    if start is not None and end is not None and start > end:
        raise ValidationError("period_end", "period_end must not be before period_start")
    if "section_types" in values and values["section_types"] is not None:
        if len(set(values["section_types"])) != len(values["section_types"]):
            raise ValidationError("section_types", "section_types must not repeat")


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise


async def create_report(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    data: dict[str, Any],
) -> StrategicReport:
    """Persist a draft report and its ``created`` audit entry in one transaction."""
    _validate({**data, "title": data.get("title")})
    values = _defaults(datetime.now(timezone.utc).date())
    values.update({key: value for key, value in data.items() if key in MUTABLE_FIELDS and value is not None})
    _validate(values)
    values["title"] = values["title"].strip()

    report = StrategicReport(
        id=str(uuid4()),
        tenant_id=tenant_id,
        status="draft",
        kpis_snapshot={},
        summary_json={},
        total_tokens_used=0,
        version=1,
        created_by=actor.actor_id,
        updated_by=actor.actor_id,
        **values,
    )
    session.add(report)
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report.id,
        event_type="created",
        actor=actor,
        description=f"Created report {report.title}",
        new_status="draft",
    )
    await _commit(session)
    return report


async def get_report(session: AsyncSession, *, tenant_id: str, report_id: str) -> StrategicReport | None:
    return await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)


async def get_report_detail(
    session: AsyncSession, *, tenant_id: str, report_id: str
) -> tuple[StrategicReport, list[ReportSection], list[Any]] | None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    sections = await sections_repo.list_sections(session, tenant_id=tenant_id, report_id=report_id)
    sources = await sources_repo.list_sources(session, tenant_id=tenant_id, report_id=report_id)
    return report, sections, sources


async def list_reports(
    session: AsyncSession,
    *,
    tenant_id: str,
    limit: int = 20,
    offset: int = 0,
    **filters: Any,
) -> dict[str, Any]:
    rows, total = await reports_repo.list_reports(
        session, tenant_id=tenant_id, limit=limit, offset=offset, **filters
    )
    return {
        "items": [report_to_dict(report, section_count=count) for report, count in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(rows) < total,
    }


async def update_report(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    actor: Actor,
    patch: dict[str, Any],
    expected_version: int | None = None,
) -> StrategicReport | None:
    """Apply a partial update; returns None when the report is not visible to the tenant."""
    changes = {key: value for key, value in patch.items() if key in MUTABLE_FIELDS}
    _validate(changes)
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    if expected_version is not None and expected_version != report.version:
        raise ConflictError("Report was modified by another request; reload and retry")
    assert_editable(report.status, "update the report")
    merged_start = changes.get("period_start", report.period_start)
    merged_end = changes.get("period_end", report.period_end)
    _validate({"period_start": merged_start, "period_end": merged_end})
    if "title" in changes:
        changes["title"] = changes["title"].strip()

    changed = {key: value for key, value in changes.items() if getattr(report, key) != value}
    if not changed:
        return report
    ok = await reports_repo.guarded_update(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        expected_version=report.version,
        values={**changed, "updated_by": actor.actor_id},
    )
    if not ok:
        await session.rollback()
        raise ConflictError("Report was modified by another request; reload and retry")
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        event_type="updated",
        actor=actor,
        description="Updated report fields",
        changes={"fields": sorted(changed)},
    )
    await _commit(session)
    await session.refresh(report)
    return report


async def _transition(
    session: AsyncSession,
    report: StrategicReport,
    *,
    target: str,
    actor: Actor,
    event_type: str,
    description: str,
    extra_values: dict[str, Any] | None = None,
    changes: dict[str, Any] | None = None,
) -> StrategicReport:
    # Status writes are version-guarded; a lost race surfaces as a conflict.
    previous = report.status
    assert_transition(previous, target)
    ok = await reports_repo.guarded_update(
        session,
        tenant_id=report.tenant_id,
        report_id=report.id,
        expected_version=report.version,
        values={"status": target, "updated_by": actor.actor_id, **(extra_values or {})},
    )
    if not ok:
        await session.rollback()
        raise ConflictError(f"Report status changed concurrently; could not move to {target}")
    append_entry(
        session,
        tenant_id=report.tenant_id,
        report_id=report.id,
        event_type=event_type,
        actor=actor,
        description=description,
        previous_status=previous,
        new_status=target,
        changes=changes,
    )
    await _commit(session)
    await session.refresh(report)
    return report


@dataclass
class GenerationResult:
    report: StrategicReport
    sections: list[ReportSection]
    failed_sections: list[dict[str, str]] = field(default_factory=list)
    insight_errors: dict[str, str] = field(default_factory=dict)
    tokens_used: int = 0
    duration_ms: int = 0


async def generate_report(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    actor: Actor,
    llm: LLMProvider,
    section_types: Sequence[str] | None = None,
    regenerate_existing: bool = False,
    custom_instructions: str | None = None,
    force_refresh_insights: bool = False,
    providers: Sequence[InsightProvider] | None = None,
) -> GenerationResult | None:
    """Run draft -> generating -> review.

    Sections are best-effort: one failing section is reported in
    ``failed_sections`` while the others are kept. Anything else that fails
    (aggregation bookkeeping, every section failing, the final status write)
    rolls the report back to draft with a ``generation_failed`` entry, so a
    report is never left in ``generating``.
    """
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    assert_transition(report.status, "generating")
    requested = list(section_types or report.section_types or DEFAULT_SECTION_TYPES)
    if not requested:
        raise ValidationError("section_types", "At least one section type is required")

    ok = await reports_repo.guarded_update(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        expected_version=report.version,
        values={"status": "generating", "last_error": None, "updated_by": actor.actor_id},
    )
    if not ok:
        await session.rollback()
        raise ConflictError("Report is already being generated")
    await _commit(session)
    await session.refresh(report)

    start = time.monotonic()
    try:
        result = await _run_generation(
            session,
            report=report,
            actor=actor,
            llm=llm,
            requested=requested,
            regenerate_existing=regenerate_existing,
            custom_instructions=custom_instructions,
            force_refresh=force_refresh_insights,
            providers=providers,
            start=start,
        )
    except Exception as exc:  # noqa: BLE001 - any failure must release the generating state
        await session.rollback()
        logger.exception("report_generation_failed report_id=%s tenant_id=%s", report_id, tenant_id)
        await _rollback_to_draft(
            session,
            tenant_id=tenant_id,
            report_id=report_id,
            actor=actor,
            error=str(exc) or type(exc).__name__,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        if isinstance(exc, ExecIntelError):
            raise
        raise UpstreamFailure("Failed to generate report", exc) from exc
    return result


async def _run_generation(
    session: AsyncSession,
    *,
    report: StrategicReport,
    actor: Actor,
    llm: LLMProvider,
    requested: list[str],
    regenerate_existing: bool,
    custom_instructions: str | None,
    force_refresh: bool,
    providers: Sequence[InsightProvider] | None,
    start: float,
) -> GenerationResult:
    tenant_id = report.tenant_id
    aggregation = await insights_service.aggregate_insights(
        session,
        tenant_id=tenant_id,
        period_start=report.period_start,
        period_end=report.period_end,
        providers=providers,
    )
    if force_refresh:
        await sources_repo.delete_for_report(session, tenant_id=tenant_id, report_id=report.id)
        existing_sources = {}
    else:
        existing_sources = await insights_service.existing_sources(
            session, tenant_id=tenant_id, report_id=report.id
        )
    sources_updated, _ = insights_service.upsert_sources(report, aggregation.results, existing_sources, session)

    insights_payload = aggregation.insights.to_dict()
    current = await sections_repo.list_sections(session, tenant_id=tenant_id, report_id=report.id)
    by_type = {section.section_type: section for section in current}
    outcomes: list[SectionOutcome] = []
    next_index = max((section.order_index for section in current), default=-1) + 1
    for section_type in requested:
        existing = by_type.get(section_type)
        if existing is not None and existing.status != "pending" and not regenerate_existing:
            continue
        order_index = None
        if existing is None:
            order_index = next_index
            next_index += 1
        outcome = await generate_section(
            session,
            report=report,
            section_type=section_type,
            insights=insights_payload,
            llm=llm,
            custom_instructions=custom_instructions,
            existing=existing,
            order_index=order_index,
        )
        outcomes.append(outcome)
        by_type[section_type] = outcome.section

    failed = [
        {"section_type": outcome.section.section_type, "error": outcome.error or ""}
        for outcome in outcomes
        if not outcome.ok
    ]
    if outcomes and len(failed) == len(outcomes):
        raise UpstreamFailure("Failed to generate report", "every section failed to generate")

    tokens_used = sum(outcome.section.tokens_used or 0 for outcome in outcomes if outcome.ok)
    llm_model = next((outcome.section.llm_model for outcome in outcomes if outcome.ok), report.llm_model)
    sections = sorted(by_type.values(), key=lambda section: section.order_index)
    for source in existing_sources.values():
        source.used_in_sections = [section.id for section in sections if section.status != "pending"]

    report.kpis_snapshot = insights_service.compute_kpis_snapshot(aggregation.insights)
    insights_service.apply_scores(report, insights_service.compute_strategic_scores(aggregation.insights))
    report.summary_json = insights_service.build_summary(sections, aggregation.insights)
    report.section_types = requested
    duration_ms = int((time.monotonic() - start) * 1000)

    ok = await reports_repo.guarded_update(
        session,
        tenant_id=tenant_id,
        report_id=report.id,
        expected_version=report.version,
        values={
            "status": "review",
            "total_tokens_used": (report.total_tokens_used or 0) + tokens_used,
            "generation_duration_ms": duration_ms,
            "llm_model": llm_model,
            "last_error": None,
            "updated_by": actor.actor_id,
        },
    )
    if not ok:
        raise ConflictError("Report changed while generating")
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report.id,
        event_type="generated",
        actor=Actor(actor_type="ai", actor_id=actor.actor_id, email=actor.email),
        description=f"Generated {len(outcomes) - len(failed)} of {len(outcomes)} sections",
        previous_status="draft",
        new_status="review",
        changes={
            "sections_generated": len(outcomes) - len(failed),
            "failed_sections": failed,
            "sources_updated": sources_updated,
            "failed_systems": sorted(aggregation.insights.errors),
        },
        llm_model=llm_model,
        tokens_used=tokens_used,
        duration_ms=duration_ms,
    )
    await _commit(session)
    await session.refresh(report)
    return GenerationResult(
        report=report,
        sections=sections,
        failed_sections=failed,
        insight_errors=dict(aggregation.insights.errors),
        tokens_used=tokens_used,
        duration_ms=duration_ms,
    )


async def _rollback_to_draft(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    actor: Actor,
    error: str,
    duration_ms: int,
) -> None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None or report.status != "generating":
        return
    ok = await reports_repo.guarded_update(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        expected_version=report.version,
        values={"status": "draft", "last_error": error[:2000], "updated_by": actor.actor_id},
    )
    if not ok:
        await session.rollback()
        logger.warning("report_generation_rollback_conflict report_id=%s", report_id)
        return
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        event_type="generation_failed",
        actor=actor,
        description="Generation failed; report returned to draft",
        previous_status="generating",
        new_status="draft",
        changes={"error": error[:500]},
        duration_ms=duration_ms,
    )
    await _commit(session)
    await session.refresh(report)


async def approve_report(
    session: AsyncSession, *, tenant_id: str, report_id: str, actor: Actor
) -> StrategicReport | None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    return await _transition(
        session,
        report,
        target="approved",
        actor=actor,
        event_type="approved",
        description="Report approved",
    )


@dataclass
class PublishResult:
    report: StrategicReport
    delivery: DigestDeliveryLog | None = None


async def publish_report(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    actor: Actor,
    generate_pdf: bool = False,
    generate_pptx: bool = False,
    renderer: ExportRenderer | None = None,
    notify_digest_id: str | None = None,
    dispatcher: delivery_service.DigestDispatcher | None = None,
) -> PublishResult | None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    assert_transition(report.status, "published")
    renderer = renderer or StoragePathRenderer()
    extra: dict[str, Any] = {
        "published_at": datetime.now(timezone.utc),
        "published_by": actor.actor_id,
    }
    if generate_pdf or generate_pptx:
        sections = await sections_repo.list_sections(session, tenant_id=tenant_id, report_id=report_id)
        if generate_pdf:
            extra["pdf_storage_path"] = await renderer.render(report, sections, "pdf")
        if generate_pptx:
            extra["pptx_storage_path"] = await renderer.render(report, sections, "pptx")
    report = await _transition(
        session,
        report,
        target="published",
        actor=actor,
        event_type="published",
        description="Report published",
        extra_values=extra,
        changes={"generate_pdf": generate_pdf, "generate_pptx": generate_pptx},
    )
    delivery = None
    if notify_digest_id:
        # Delivery runs after the publish commit; a failed hand-off does not unpublish.
        try:
            delivery = await delivery_service.deliver_digest(
                session,
                tenant_id=tenant_id,
                digest_id=notify_digest_id,
                dispatcher=dispatcher or delivery_service.LoggingDispatcher(),
            )
        except ExecIntelError as exc:
            logger.warning(
                "publish_delivery_failed report_id=%s digest_id=%s error=%s",
                report_id,
                notify_digest_id,
                exc,
            )
    return PublishResult(report=report, delivery=delivery)


async def archive_report(
    session: AsyncSession, *, tenant_id: str, report_id: str, actor: Actor
) -> StrategicReport | None:
    """Move any report to archived; repeating the call is a silent no-op."""
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    if is_noop(report.status, "archived"):
        return report
    return await _transition(
        session,
        report,
        target="archived",
        actor=actor,
        event_type="archived",
        description="Report archived",
    )


async def delete_report(
    session: AsyncSession, *, tenant_id: str, report_id: str, actor: Actor, hard: bool = False
) -> bool:
    """Archive by default; ``hard`` removes the report and every child row.

    Audit entries are kept after a hard delete and end with a ``deleted`` entry.
    """
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return False
    if not hard:
        await archive_report(session, tenant_id=tenant_id, report_id=report_id, actor=actor)
        return True
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        event_type="deleted",
        actor=actor,
        description=f"Hard-deleted report {report.title}",
        previous_status=report.status,
        changes={"hard": True, "title": report.title},
    )
    await reports_repo.hard_delete(session, tenant_id=tenant_id, report_id=report_id)
    await _commit(session)
    session.expunge(report)
    return True


def _trend(change: float) -> str:
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "stable"


def score_changes(current: StrategicReport, previous: StrategicReport | None) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for key in _COMPARED_SCORES:
        now_value = getattr(current, key)
        before = getattr(previous, key) if previous is not None else None
        if now_value is None or before is None:
            changes[key] = {
                "current": now_value,
                "previous": before,
                "change": None,
                "change_percent": None,
                "trend": "stable",
            }
            continue
        change = float(now_value) - float(before)
        changes[key] = {
            "current": now_value,
            "previous": before,
            "change": round(change, 2),
            "change_percent": round(change / float(before) * 100, 1) if before else None,
            "trend": _trend(change),
        }
    return changes


async def compare_periods(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    previous_id: str | None = None,
) -> dict[str, Any] | None:
    current = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if current is None:
        return None
    if previous_id:
        previous = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=previous_id)
    else:
        previous = await reports_repo.find_previous_period(session, tenant_id=tenant_id, report=current)
    return {
        "current": report_to_dict(current),
        "previous": report_to_dict(previous) if previous is not None else None,
        "changes": score_changes(current, previous),
    }


async def export_report(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    export_format: str,
    actor: Actor,
    renderer: ExportRenderer | None = None,
) -> dict[str, Any] | None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    sections = await sections_repo.list_sections(session, tenant_id=tenant_id, report_id=report_id)
    storage_path = await (renderer or StoragePathRenderer()).render(report, sections, export_format)
    link = build_export_link(report_id, export_format)
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        event_type="exported",
        actor=actor,
        description=f"Exported report as {export_format}",
        changes={"format": export_format, "storage_path": storage_path},
    )
    await _commit(session)
    return {"url": link.url, "format": link.format, "expires_at": link.expires_at.isoformat()}


async def get_stats(session: AsyncSession, *, tenant_id: str) -> dict[str, Any]:
    by_status = await reports_repo.count_by(session, tenant_id=tenant_id, column=StrategicReport.status)
    by_format = await reports_repo.count_by(session, tenant_id=tenant_id, column=StrategicReport.format)
    by_audience = await reports_repo.count_by(session, tenant_id=tenant_id, column=StrategicReport.audience)
    averages = await reports_repo.average_scores(session, tenant_id=tenant_id)
    recent = await reports_repo.recent_reports(session, tenant_id=tenant_id, limit=5)
    total_sections, total_sources = await reports_repo.child_totals(session, tenant_id=tenant_id)
    return {
        "total_reports": sum(by_status.values()),
        "by_status": by_status,
        "by_format": by_format,
        "by_audience": by_audience,
        "average_scores": averages,
        "recent_reports": [report_to_dict(report) for report in recent],
        "total_sections": total_sections,
        "total_sources": total_sources,
    }
