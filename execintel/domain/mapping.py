from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from execintel.domain.models import (
    AuditReplayRun,
    DigestDeliveryLog,
    DigestRecipient,
    ExecDigest,
    ReportAuditLog,
    ReportRecipient,
    ReportSection,
    ReportSource,
    RiskRadarSnapshot,
    StrategicReport,
)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on read; every stored timestamp is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value.isoformat()


def report_to_dict(report: StrategicReport, *, section_count: int | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": report.id,
        "tenant_id": report.tenant_id,
        "title": report.title,
        "description": report.description,
        "format": report.format,
        "status": report.status,
        "audience": report.audience,
        "period_start": _iso(report.period_start),
        "period_end": _iso(report.period_end),
        "fiscal_quarter": report.fiscal_quarter,
        "fiscal_year": report.fiscal_year,
        "section_types": list(report.section_types or []),
        "kpis_snapshot": report.kpis_snapshot or {},
        "summary_json": report.summary_json or {},
        "overall_strategic_score": report.overall_strategic_score,
        "risk_posture_score": report.risk_posture_score,
        "opportunity_score": report.opportunity_score,
        "messaging_alignment_score": report.messaging_alignment_score,
        "competitive_position_score": report.competitive_position_score,
        "brand_health_score": report.brand_health_score,
        "tone": report.tone,
        "target_length": report.target_length,
        "include_charts": report.include_charts,
        "include_recommendations": report.include_recommendations,
        "total_tokens_used": report.total_tokens_used,
        "generation_duration_ms": report.generation_duration_ms,
        "llm_model": report.llm_model,
        "last_error": report.last_error,
        "published_at": _iso(report.published_at),
        "published_by": report.published_by,
        "pdf_storage_path": report.pdf_storage_path,
        "pptx_storage_path": report.pptx_storage_path,
        "version": report.version,
        "created_by": report.created_by,
        "updated_by": report.updated_by,
        "created_at": _iso(report.created_at),
        "updated_at": _iso(report.updated_at),
    }
    if section_count is not None:
        payload["section_count"] = section_count
    return payload


def section_to_dict(section: ReportSection) -> dict[str, Any]:
    return {
        "id": section.id,
        "report_id": section.report_id,
        "section_type": section.section_type,
        "title": section.title,
        "order_index": section.order_index,
        "content_md": section.content_md,
        "content_html": section.content_html,
        "summary": section.summary,
        "key_points": list(section.key_points or []),
        "metrics": section.metrics or {},
        "chart_config": section.chart_config,
        "status": section.status,
        "is_edited": section.is_edited,
        "edit_count": section.edit_count,
        "edited_by": section.edited_by,
        "edited_at": _iso(section.edited_at),
        "regeneration_count": section.regeneration_count,
        "last_error": section.last_error,
        "tokens_used": section.tokens_used,
        "generation_duration_ms": section.generation_duration_ms,
        "llm_model": section.llm_model,
        "created_at": _iso(section.created_at),
        "updated_at": _iso(section.updated_at),
    }


def source_to_dict(source: ReportSource) -> dict[str, Any]:
    return {
        "id": source.id,
        "report_id": source.report_id,
        "source_system": source.source_system,
        "source_id": source.source_id,
        "source_type": source.source_type,
        "source_title": source.source_title,
        "source_url": source.source_url,
        "extracted_data": source.extracted_data or {},
        "data_points_count": source.data_points_count,
        "relevance_score": source.relevance_score,
        "quality_score": source.quality_score,
        "is_primary": source.is_primary,
        "used_in_sections": list(source.used_in_sections or []),
        "extracted_at": _iso(source.extracted_at),
        "created_at": _iso(source.created_at),
    }


def audit_entry_to_dict(entry: ReportAuditLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "report_id": entry.report_id,
        "section_id": entry.section_id,
        "event_type": entry.event_type,
        "description": entry.description,
        "previous_status": entry.previous_status,
        "new_status": entry.new_status,
        "changes": entry.changes or {},
        "actor_type": entry.actor_type,
        "actor_id": entry.actor_id,
        "actor_email": entry.actor_email,
        "llm_model": entry.llm_model,
        "tokens_used": entry.tokens_used,
        "duration_ms": entry.duration_ms,
        "created_at": _iso(entry.created_at),
    }


def digest_to_dict(digest: ExecDigest) -> dict[str, Any]:
    return {
        "id": digest.id,
        "tenant_id": digest.tenant_id,
        "title": digest.title,
        "description": digest.description,
        "delivery_period": digest.delivery_period,
        "time_window": digest.time_window,
        "schedule_day_of_week": digest.schedule_day_of_week,
        "schedule_hour": digest.schedule_hour,
        "timezone": digest.timezone,
        "include_recommendations": digest.include_recommendations,
        "include_kpis": digest.include_kpis,
        "include_narrative": digest.include_narrative,
        "include_risk_summary": digest.include_risk_summary,
        "include_competitive": digest.include_competitive,
        "is_active": digest.is_active,
        "is_archived": digest.is_archived,
        "storage_bucket": digest.storage_bucket,
        "pdf_storage_path": digest.pdf_storage_path,
        "next_delivery_at": _iso(digest.next_delivery_at),
        "last_delivered_at": _iso(digest.last_delivered_at),
        "created_by": digest.created_by,
        "created_at": _iso(digest.created_at),
        "updated_at": _iso(digest.updated_at),
    }


def recipient_to_dict(recipient: DigestRecipient | ReportRecipient) -> dict[str, Any]:
    parent_key = "report_id" if isinstance(recipient, ReportRecipient) else "digest_id"
    return {
        "id": recipient.id,
        parent_key: getattr(recipient, parent_key),
        "email": recipient.email,
        "name": recipient.name,
        "role": recipient.role,
        "include_pdf": recipient.include_pdf,
        "include_inline_summary": recipient.include_inline_summary,
        "is_active": recipient.is_active,
        "is_validated": recipient.is_validated,
        "created_at": _iso(recipient.created_at),
    }


def delivery_log_to_dict(log: DigestDeliveryLog) -> dict[str, Any]:
    return {
        "id": log.id,
        "digest_id": log.digest_id,
        "delivery_period": log.delivery_period,
        "scheduled_at": _iso(log.scheduled_at),
        "started_at": _iso(log.started_at),
        "completed_at": _iso(log.completed_at),
        "status": log.status,
        "recipients_count": log.recipients_count,
        "successful_deliveries": log.successful_deliveries,
        "failed_deliveries": log.failed_deliveries,
        "error_message": log.error_message,
        "recipient_results": list(log.recipient_results or []),
        "is_test": log.is_test,
    }


def snapshot_to_dict(snapshot: RiskRadarSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "snapshot_date": _iso(snapshot.snapshot_date),
        "title": snapshot.title,
        "description": snapshot.description,
        "overall_risk_index": snapshot.overall_risk_index,
        "risk_level": snapshot.risk_level,
        "confidence_score": snapshot.confidence_score,
        "sentiment_score": snapshot.sentiment_score,
        "velocity_score": snapshot.velocity_score,
        "propagation_score": snapshot.propagation_score,
        "competitive_score": snapshot.competitive_score,
        "governance_score": snapshot.governance_score,
        "persona_score": snapshot.persona_score,
        "key_concerns": list(snapshot.key_concerns or []),
        "emerging_risks": list(snapshot.emerging_risks or []),
        "positive_factors": list(snapshot.positive_factors or []),
        "is_active": snapshot.is_active,
        "is_archived": snapshot.is_archived,
        "computation_method": snapshot.computation_method,
        "created_at": _iso(snapshot.created_at),
    }


def replay_run_to_dict(run: AuditReplayRun) -> dict[str, Any]:
    return {
        "id": run.id,
        "report_id": run.report_id,
        "status": run.status,
        "total_events": run.total_events,
        "processed_events": run.processed_events,
        "result": run.result_json,
        "error_message": run.error_message,
        "started_at": _iso(run.started_at),
        "completed_at": _iso(run.completed_at),
        "created_at": _iso(run.created_at),
    }
