from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import time
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.core.config import get_settings
from execintel.core.errors import (
    ExecIntelError,
    LLMTimeoutError,
    UpstreamFailure,
    ValidationError,
)
from execintel.domain.enums import SECTION_TITLES
from execintel.domain.lifecycle import assert_editable
from execintel.domain.models import ReportSection, StrategicReport
from execintel.persistence.repos import reports as reports_repo
from execintel.persistence.repos import sections as sections_repo
from execintel.providers.insights.base import InsightProvider
from execintel.providers.llm.base import LLMCompletion, LLMProvider
from execintel.services.insights import aggregate_insights
from execintel.services.prompts import build_section_prompt, system_prompt_for
from execintel.services.rendering import extract_key_points, extract_metrics, first_paragraph, markdown_to_html
from execintel.services.report_audit import Actor, append_entry


logger = logging.getLogger(__name__)

@dataclass
class SectionOutcome:
    section: ReportSection
    error: str | None = None
    regenerated: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


async def _call_llm(llm: LLMProvider, *, system_prompt: str, user_prompt: str) -> LLMCompletion:
    # Bound the whole call, retries included, so a stalled provider fails instead of hanging.
    settings = get_settings()
    deadline_s = settings.llm_timeout_ms * max(1, settings.ext_retry_max_attempts) / 1000.0
    try:
        return await asyncio.wait_for(
            llm.generate(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature,
            ),
            timeout=deadline_s,
        )
    except asyncio.TimeoutError as exc:
        raise LLMTimeoutError(f"Generation exceeded {int(deadline_s * 1000)}ms") from exc


async def generate_section(
    session: AsyncSession,
    *,
    report: StrategicReport,
    section_type: str,
    insights: dict[str, Any],
    llm: LLMProvider,
    custom_instructions: str | None = None,
    existing: ReportSection | None = None,
    order_index: int | None = None,
) -> SectionOutcome:
    """Generate or regenerate one section; never raises for provider failures.

    The section row is staged in ``session`` (created as ``pending`` when the
    first attempt fails) and the error is returned so callers can keep going
    with the remaining sections. Committing is left to the caller.
    """
    section = existing
    if section is None:
        if order_index is None:
            order_index = await sections_repo.next_order_index(
                session, tenant_id=report.tenant_id, report_id=report.id
            )
        section = ReportSection(
            id=str(uuid4()),
            tenant_id=report.tenant_id,
            report_id=report.id,
            section_type=section_type,
            title=SECTION_TITLES.get(section_type, section_type.replace("_", " ").title()),
            order_index=order_index,
            status="pending",
            key_points=[],
            metrics={},
        )
        session.add(section)

    start = time.monotonic()
    try:
        completion = await _call_llm(
            llm,
            system_prompt=system_prompt_for(report.audience),
            user_prompt=build_section_prompt(
                report, section_type, insights, custom_instructions=custom_instructions
            ),
        )
    except ExecIntelError as exc:
        logger.warning(
            "section_generation_failed report_id=%s section_type=%s error=%s",
            report.id,
            section_type,
            type(exc).__name__,
        )
        section.last_error = str(exc) or type(exc).__name__
        return SectionOutcome(section=section, error=section.last_error)
    except Exception as exc:  # noqa: BLE001 - isolate unexpected provider failures per section
        logger.exception("section_generation_crashed report_id=%s section_type=%s", report.id, section_type)
        section.last_error = f"Unexpected generation error: {type(exc).__name__}"
        return SectionOutcome(section=section, error=section.last_error)

    duration_ms = int((time.monotonic() - start) * 1000)
    regenerated = existing is not None and existing.status != "pending"
    content = completion.content.strip()
    section.content_md = content
    section.content_html = markdown_to_html(content)
    section.summary = first_paragraph(content)
    section.key_points = extract_key_points(content)
    section.metrics = extract_metrics(content)
    section.status = "generated"
    section.is_edited = False
    section.last_error = None
    section.tokens_used = completion.total_tokens
    section.generation_duration_ms = duration_ms
    section.llm_model = completion.model
    if regenerated:
        section.regeneration_count = (section.regeneration_count or 0) + 1
    return SectionOutcome(section=section, regenerated=regenerated)


async def regenerate_section(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    section_id: str,
    llm: LLMProvider,
    actor: Actor,
    custom_instructions: str | None = None,
    providers: Sequence[InsightProvider] | None = None,
) -> ReportSection | None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    section = await sections_repo.get_section(
        session, tenant_id=tenant_id, report_id=report_id, section_id=section_id
    )
    if section is None:
        return None
    assert_editable(report.status, "regenerate sections")

    aggregation = await aggregate_insights(
        session,
        tenant_id=tenant_id,
        period_start=report.period_start,
        period_end=report.period_end,
        providers=providers,
    )
    outcome = await generate_section(
        session,
        report=report,
        section_type=section.section_type,
        insights=aggregation.insights.to_dict(),
        llm=llm,
        custom_instructions=custom_instructions,
        existing=section,
    )
    if outcome.ok:
        append_entry(
            session,
            tenant_id=tenant_id,
            report_id=report_id,
            section_id=section.id,
            event_type="regenerated",
            actor=actor,
            description=f"Regenerated {section.title}",
            changes={"regeneration_count": section.regeneration_count},
            llm_model=section.llm_model,
            tokens_used=section.tokens_used,
            duration_ms=section.generation_duration_ms,
        )
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    if not outcome.ok:
        raise UpstreamFailure("Failed to regenerate section", outcome.error or "unknown error")
    return section


async def update_section_manually(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    section_id: str,
    editor: Actor,
    content_md: str | None = None,
    title: str | None = None,
    summary: str | None = None,
) -> ReportSection | None:
    # Validate before touching the data layer.
    if content_md is not None and not content_md.strip():
        raise ValidationError("content_md", "content_md must not be empty")
    if title is not None and not title.strip():
        raise ValidationError("title", "title must not be empty")
    if content_md is None and title is None and summary is None:
        raise ValidationError("content_md", "Provide content_md, title or summary to update")

    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    section = await sections_repo.get_section(
        session, tenant_id=tenant_id, report_id=report_id, section_id=section_id
    )
    if section is None:
        return None
    assert_editable(report.status, "edit sections")
    changed: list[str] = []
    if content_md is not None:
        section.content_md = content_md
        section.content_html = markdown_to_html(content_md)
        section.key_points = extract_key_points(content_md)
        changed.append("content_md")
    if title is not None:
        section.title = title.strip()
        changed.append("title")
    if summary is not None:
        section.summary = summary
        changed.append("summary")
    section.status = "edited"
    section.is_edited = True
    section.edit_count = (section.edit_count or 0) + 1
    section.edited_by = editor.actor_id
    section.edited_at = datetime.now(timezone.utc)
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        section_id=section.id,
        event_type="section_edited",
        actor=editor,
        description=f"Edited {section.title}",
        changes={"fields": changed, "edit_count": section.edit_count},
    )
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return section


async def approve_section(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    section_id: str,
    actor: Actor,
) -> ReportSection | None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    section = await sections_repo.get_section(
        session, tenant_id=tenant_id, report_id=report_id, section_id=section_id
    )
    if section is None:
        return None
    assert_editable(report.status, "approve sections")
    if section.status == "pending":
        raise ValidationError("status", "Pending sections must be generated before approval")
    if section.status == "approved":
        return section
    previous = section.status
    section.status = "approved"
    append_entry(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        section_id=section.id,
        event_type="status_changed",
        actor=actor,
        description=f"Approved {section.title}",
        previous_status=previous,
        new_status="approved",
    )
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return section


async def reorder_sections(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    ordered_ids: Sequence[str],
    actor: Actor,
) -> list[ReportSection] | None:
    """Rewrite ``order_index`` for the full section set in one transaction.

    ``ordered_ids`` must name every section of the report exactly once;
    anything else is rejected before a single row is touched.
    """
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    sections = await sections_repo.list_sections(session, tenant_id=tenant_id, report_id=report_id)
    assert_editable(report.status, "reorder sections")
    by_id = {section.id: section for section in sections}
    if len(set(ordered_ids)) != len(ordered_ids):
        raise ValidationError("ordered_ids", "ordered_ids contains duplicates")
    if set(ordered_ids) != set(by_id):
        raise ValidationError("ordered_ids", "ordered_ids must list every section of the report exactly once")

    try:
        for index, section_id in enumerate(ordered_ids):
            by_id[section_id].order_index = index
        append_entry(
            session,
            tenant_id=tenant_id,
            report_id=report_id,
            event_type="updated",
            actor=actor,
            description="Reordered sections",
            changes={"section_order": list(ordered_ids)},
        )
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return [by_id[section_id] for section_id in ordered_ids]
