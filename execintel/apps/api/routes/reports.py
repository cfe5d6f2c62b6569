from __future__ import annotations

from datetime import date
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.apps.api.deps import (
    Principal,
    actor_from_principal,
    ensure_role,
    get_db,
    get_llm,
    reject_tenant_id_in_body,
    require_role,
)
from execintel.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from execintel.apps.api.response import success_response
from execintel.apps.api.routes.digests import RecipientCreateRequest, RecipientPatchRequest
from execintel.core.errors import UpstreamFailure
from execintel.domain.enums import (
    ExportFormat,
    ReportAudience,
    ReportFormat,
    ReportStatus,
    ReportTone,
    SectionType,
    TargetLength,
)
from execintel.domain.mapping import recipient_to_dict, report_to_dict, section_to_dict, source_to_dict
from execintel.providers.llm.base import LLMProvider
from execintel.services import report_recipients as recipients_service
from execintel.services import reports as reports_service
from execintel.services.insights import refresh_insights


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"], responses=DEFAULT_ERROR_RESPONSES)


class ReportCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    format: ReportFormat | None = None
    audience: ReportAudience | None = None
    period_start: date | None = None
    period_end: date | None = None
    fiscal_quarter: str | None = None
    fiscal_year: int | None = None
    section_types: list[SectionType] | None = None
    tone: ReportTone | None = None
    target_length: TargetLength | None = None
    include_charts: bool | None = None
    include_recommendations: bool | None = None

    model_config = {"extra": "forbid"}


class ReportPatchRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    format: ReportFormat | None = None
    audience: ReportAudience | None = None
    period_start: date | None = None
    period_end: date | None = None
    fiscal_quarter: str | None = None
    fiscal_year: int | None = None
    section_types: list[SectionType] | None = None
    tone: ReportTone | None = None
    target_length: TargetLength | None = None
    include_charts: bool | None = None
    include_recommendations: bool | None = None
    expected_version: int | None = None

    model_config = {"extra": "forbid"}


class GenerateRequest(BaseModel):
    section_types: list[SectionType] | None = None
    regenerate_existing: bool = False
    custom_instructions: str | None = Field(default=None, max_length=4000)
    force_refresh_insights: bool = False

    model_config = {"extra": "forbid"}


class PublishRequest(BaseModel):
    generate_pdf: bool = False
    generate_pptx: bool = False
    notify_digest_id: str | None = None

    model_config = {"extra": "forbid"}


class RefreshInsightsRequest(BaseModel):
    force_refresh: bool = False
    update_kpis: bool = True
    update_summary: bool = False
    include_systems: list[str] | None = None
    exclude_systems: list[str] | None = None

    model_config = {"extra": "forbid"}


class ExportRequest(BaseModel):
    format: ExportFormat = "pdf"

    model_config = {"extra": "forbid"}


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")


def _db_error(action: str, exc: SQLAlchemyError) -> HTTPException:
    logger.warning("reports_db_error action=%s", action, exc_info=exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Database error while {action}")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_report(
    request: Request,
    payload: ReportCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    _tenant_guard: None = Depends(reject_tenant_id_in_body),
) -> dict:
    try:
        report = await reports_service.create_report(
            db,
            tenant_id=principal.tenant_id,
            actor=actor_from_principal(principal),
            data=payload.model_dump(exclude_none=True),
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to create report", exc) from exc
    return success_response(request=request, data=report_to_dict(report))


@router.get("")
async def list_reports(
    request: Request,
    status_filter: list[ReportStatus] | None = Query(default=None, alias="status"),
    format: ReportFormat | None = None,
    audience: ReportAudience | None = None,
    fiscal_quarter: str | None = None,
    fiscal_year: int | None = None,
    period_from: date | None = None,
    period_to: date | None = None,
    search: str | None = Query(default=None, max_length=200),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        page = await reports_service.list_reports(
            db,
            tenant_id=principal.tenant_id,
            statuses=status_filter,
            format=format,
            audience=audience,
            fiscal_quarter=fiscal_quarter,
            fiscal_year=fiscal_year,
            period_from=period_from,
            period_to=period_to,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
    except SQLAlchemyError as exc:
        raise _db_error("listing reports", exc) from exc
    return success_response(request=request, data=page)


@router.get("/stats")
async def report_stats(
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        stats = await reports_service.get_stats(db, tenant_id=principal.tenant_id)
    except SQLAlchemyError as exc:
        raise _db_error("computing report stats", exc) from exc
    return success_response(request=request, data=stats)


@router.get("/{report_id}")
async def get_report(
    report_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        detail = await reports_service.get_report_detail(db, tenant_id=principal.tenant_id, report_id=report_id)
    except SQLAlchemyError as exc:
        raise _db_error("fetching report", exc) from exc
    if detail is None:
        raise _not_found()
    report, sections, sources = detail
    payload = report_to_dict(report, section_count=len(sections))
    payload["sections"] = [section_to_dict(section) for section in sections]
    payload["sources"] = [source_to_dict(source) for source in sources]
    return success_response(request=request, data=payload)


@router.patch("/{report_id}")
async def update_report(
    report_id: str,
    request: Request,
    payload: ReportPatchRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    _tenant_guard: None = Depends(reject_tenant_id_in_body),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    expected_version = patch.pop("expected_version", None)
    try:
        report = await reports_service.update_report(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            actor=actor_from_principal(principal),
            patch=patch,
            expected_version=expected_version,
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to update report", exc) from exc
    if report is None:
        raise _not_found()
    return success_response(request=request, data=report_to_dict(report))


@router.delete("/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report(
    report_id: str,
    request: Request,
    hard: bool = Query(default=False),
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    if hard:
        # Hard delete needs admin even though archiving only needs editor.
        ensure_role(principal, "admin", path=request.url.path)
    try:
        deleted = await reports_service.delete_report(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            actor=actor_from_principal(principal),
            hard=hard,
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to delete report", exc) from exc
    if not deleted:
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{report_id}/generate")
async def generate_report(
    report_id: str,
    request: Request,
    payload: GenerateRequest | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    llm: LLMProvider = Depends(get_llm),
) -> dict:
    payload = payload or GenerateRequest()
    result = await reports_service.generate_report(
        db,
        tenant_id=principal.tenant_id,
        report_id=report_id,
        actor=actor_from_principal(principal),
        llm=llm,
        section_types=payload.section_types,
        regenerate_existing=payload.regenerate_existing,
        custom_instructions=payload.custom_instructions,
        force_refresh_insights=payload.force_refresh_insights,
    )
    if result is None:
        raise _not_found()
    return success_response(
        request=request,
        data={
            "report": report_to_dict(result.report, section_count=len(result.sections)),
            "sections": [section_to_dict(section) for section in result.sections],
            "failed_sections": result.failed_sections,
            "insight_errors": result.insight_errors,
            "tokens_used": result.tokens_used,
            "duration_ms": result.duration_ms,
        },
    )


@router.post("/{report_id}/approve")
async def approve_report(
    report_id: str,
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await reports_service.approve_report(
        db, tenant_id=principal.tenant_id, report_id=report_id, actor=actor_from_principal(principal)
    )
    if report is None:
        raise _not_found()
    return success_response(request=request, data=report_to_dict(report))


@router.post("/{report_id}/publish")
async def publish_report(
    report_id: str,
    request: Request,
    payload: PublishRequest | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    payload = payload or PublishRequest()
    result = await reports_service.publish_report(
        db,
        tenant_id=principal.tenant_id,
        report_id=report_id,
        actor=actor_from_principal(principal),
        generate_pdf=payload.generate_pdf,
        generate_pptx=payload.generate_pptx,
        notify_digest_id=payload.notify_digest_id,
    )
    if result is None:
        raise _not_found()
    data = report_to_dict(result.report)
    data["delivery_status"] = result.delivery.status if result.delivery is not None else None
    return success_response(request=request, data=data)


@router.post("/{report_id}/archive")
async def archive_report(
    report_id: str,
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await reports_service.archive_report(
        db, tenant_id=principal.tenant_id, report_id=report_id, actor=actor_from_principal(principal)
    )
    if report is None:
        raise _not_found()
    return success_response(request=request, data=report_to_dict(report))


@router.post("/{report_id}/refresh-insights")
async def refresh_report_insights(
    report_id: str,
    request: Request,
    payload: RefreshInsightsRequest | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    payload = payload or RefreshInsightsRequest()
    try:
        result = await refresh_insights(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            actor=actor_from_principal(principal),
            force_refresh=payload.force_refresh,
            update_kpis=payload.update_kpis,
            update_summary=payload.update_summary,
            include=payload.include_systems,
            exclude=payload.exclude_systems,
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to refresh insights", exc) from exc
    if result is None:
        raise _not_found()
    result["report"] = report_to_dict(result["report"])
    return success_response(request=request, data=result)


@router.post("/{report_id}/export")
async def export_report(
    report_id: str,
    request: Request,
    payload: ExportRequest | None = None,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    payload = payload or ExportRequest()
    try:
        link = await reports_service.export_report(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            export_format=payload.format,
            actor=actor_from_principal(principal),
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to export report", exc) from exc
    if link is None:
        raise _not_found()
    return success_response(request=request, data=link)


@router.get("/{report_id}/compare")
async def compare_periods(
    report_id: str,
    request: Request,
    previous_id: str | None = None,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        comparison = await reports_service.compare_periods(
            db, tenant_id=principal.tenant_id, report_id=report_id, previous_id=previous_id
        )
    except SQLAlchemyError as exc:
        raise _db_error("comparing reports", exc) from exc
    if comparison is None:
        raise _not_found()
    return success_response(request=request, data=comparison)


@router.post("/{report_id}/recipients", status_code=status.HTTP_201_CREATED)
async def add_recipient(
    report_id: str,
    request: Request,
    payload: RecipientCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    recipient = await recipients_service.add_recipient(
        db, tenant_id=principal.tenant_id, report_id=report_id, **payload.model_dump()
    )
    return success_response(request=request, data=recipient_to_dict(recipient))


@router.get("/{report_id}/recipients")
async def list_recipients(
    report_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        recipients = await recipients_service.list_recipients(
            db, tenant_id=principal.tenant_id, report_id=report_id
        )
    except SQLAlchemyError as exc:
        raise _db_error("listing recipients", exc) from exc
    if recipients is None:
        raise _not_found()
    return success_response(request=request, data=[recipient_to_dict(item) for item in recipients])


@router.patch("/{report_id}/recipients/{recipient_id}")
async def update_recipient(
    report_id: str,
    recipient_id: str,
    request: Request,
    payload: RecipientPatchRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    recipient = await recipients_service.update_recipient(
        db,
        tenant_id=principal.tenant_id,
        report_id=report_id,
        recipient_id=recipient_id,
        patch=payload.model_dump(exclude_unset=True),
    )
    if recipient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
    return success_response(request=request, data=recipient_to_dict(recipient))


@router.delete("/{report_id}/recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_recipient(
    report_id: str,
    recipient_id: str,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    removed = await recipients_service.remove_recipient(
        db, tenant_id=principal.tenant_id, report_id=report_id, recipient_id=recipient_id
    )
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
