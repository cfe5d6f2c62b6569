from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.apps.api.deps import (
    Principal,
    actor_from_principal,
    get_db,
    reject_tenant_id_in_body,
    require_role,
)
from execintel.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from execintel.apps.api.response import success_response
from execintel.core.errors import UpstreamFailure
from execintel.domain.enums import SourceSystem
from execintel.domain.mapping import source_to_dict
from execintel.persistence.repos import reports as reports_repo
from execintel.persistence.repos import sources as sources_repo
from execintel.services import insights as insights_service


router = APIRouter(prefix="/reports/{report_id}/sources", tags=["sources"], responses=DEFAULT_ERROR_RESPONSES)


class SourceCreateRequest(BaseModel):
    source_system: SourceSystem
    source_id: str | None = None
    source_type: str | None = None
    source_title: str | None = Field(default=None, max_length=500)
    source_url: str | None = None
    extracted_data: dict[str, Any] | None = None
    relevance_score: float | None = Field(default=None, ge=0, le=100)
    quality_score: float | None = Field(default=None, ge=0, le=100)
    is_primary: bool = False
    used_in_sections: list[str] | None = None

    model_config = {"extra": "forbid"}


class SourceScoresRequest(BaseModel):
    relevance_score: float | None = Field(default=None, ge=0, le=100)
    quality_score: float | None = Field(default=None, ge=0, le=100)
    is_primary: bool | None = None

    model_config = {"extra": "forbid"}


def _not_found(what: str = "Source") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


@router.get("")
async def list_sources(
    report_id: str,
    request: Request,
    source_system: SourceSystem | None = None,
    is_primary: bool | None = None,
    min_relevance: float | None = Query(default=None, ge=0, le=100),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        report = await reports_repo.get_report(db, tenant_id=principal.tenant_id, report_id=report_id)
        if report is None:
            raise _not_found("Report")
        sources = await sources_repo.list_sources(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            source_system=source_system,
            is_primary=is_primary,
            min_relevance=min_relevance,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing sources") from exc
    return success_response(request=request, data=[source_to_dict(source) for source in sources])


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_source(
    report_id: str,
    request: Request,
    payload: SourceCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    _tenant_guard: None = Depends(reject_tenant_id_in_body),
) -> dict:
    try:
        source = await insights_service.add_source(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            actor=actor_from_principal(principal),
            **payload.model_dump(),
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to add source", exc) from exc
    return success_response(request=request, data=source_to_dict(source))


@router.patch("/{source_id}")
async def update_source_scores(
    report_id: str,
    source_id: str,
    request: Request,
    payload: SourceScoresRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        source = await insights_service.update_source_scores(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            source_id=source_id,
            actor=actor_from_principal(principal),
            **payload.model_dump(),
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to update source", exc) from exc
    if source is None:
        raise _not_found()
    return success_response(request=request, data=source_to_dict(source))


@router.delete("/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_source(
    report_id: str,
    source_id: str,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    try:
        deleted = await insights_service.delete_source(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            source_id=source_id,
            actor=actor_from_principal(principal),
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to delete source", exc) from exc
    if not deleted:
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
