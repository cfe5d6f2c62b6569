from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.apps.api.deps import Principal, actor_from_principal, get_db, get_llm, require_role
from execintel.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from execintel.apps.api.response import success_response
from execintel.core.errors import UpstreamFailure
from execintel.domain.mapping import section_to_dict
from execintel.persistence.repos import reports as reports_repo
from execintel.persistence.repos import sections as sections_repo
from execintel.providers.llm.base import LLMProvider
from execintel.services import section_generator


router = APIRouter(prefix="/reports/{report_id}/sections", tags=["sections"], responses=DEFAULT_ERROR_RESPONSES)


class SectionPatchRequest(BaseModel):
    content_md: str | None = None
    title: str | None = Field(default=None, max_length=500)
    summary: str | None = None

    model_config = {"extra": "forbid"}


class RegenerateRequest(BaseModel):
    custom_instructions: str | None = Field(default=None, max_length=4000)

    model_config = {"extra": "forbid"}


class ReorderRequest(BaseModel):
    ordered_ids: list[str] = Field(min_length=1)

    model_config = {"extra": "forbid"}


def _not_found(what: str = "Section") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


@router.get("")
async def list_sections(
    report_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        report = await reports_repo.get_report(db, tenant_id=principal.tenant_id, report_id=report_id)
        if report is None:
            raise _not_found("Report")
        sections = await sections_repo.list_sections(db, tenant_id=principal.tenant_id, report_id=report_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing sections") from exc
    return success_response(request=request, data=[section_to_dict(section) for section in sections])


@router.post("/reorder")
async def reorder_sections(
    report_id: str,
    request: Request,
    payload: ReorderRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        sections = await section_generator.reorder_sections(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            ordered_ids=payload.ordered_ids,
            actor=actor_from_principal(principal),
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to reorder sections", exc) from exc
    if sections is None:
        raise _not_found("Report")
    return success_response(request=request, data=[section_to_dict(section) for section in sections])


@router.patch("/{section_id}")
async def update_section(
    report_id: str,
    section_id: str,
    request: Request,
    payload: SectionPatchRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        section = await section_generator.update_section_manually(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            section_id=section_id,
            editor=actor_from_principal(principal),
            content_md=payload.content_md,
            title=payload.title,
            summary=payload.summary,
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to update section", exc) from exc
    if section is None:
        raise _not_found()
    return success_response(request=request, data=section_to_dict(section))


@router.post("/{section_id}/regenerate")
async def regenerate_section(
    report_id: str,
    section_id: str,
    request: Request,
    payload: RegenerateRequest | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    llm: LLMProvider = Depends(get_llm),
) -> dict:
    section = await section_generator.regenerate_section(
        db,
        tenant_id=principal.tenant_id,
        report_id=report_id,
        section_id=section_id,
        llm=llm,
        actor=actor_from_principal(principal),
        custom_instructions=payload.custom_instructions if payload else None,
    )
    if section is None:
        raise _not_found()
    return success_response(request=request, data=section_to_dict(section))


@router.post("/{section_id}/approve")
async def approve_section(
    report_id: str,
    section_id: str,
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        section = await section_generator.approve_section(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            section_id=section_id,
            actor=actor_from_principal(principal),
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to approve section", exc) from exc
    if section is None:
        raise _not_found()
    return success_response(request=request, data=section_to_dict(section))
