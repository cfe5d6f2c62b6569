from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from execintel.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from execintel.apps.api.response import success_response
from execintel.core.errors import UpstreamFailure
from execintel.domain.enums import RiskLevel
from execintel.domain.mapping import snapshot_to_dict
from execintel.services import risk_radar as risk_service


router = APIRouter(prefix="/risk-radar", tags=["risk-radar"], responses=DEFAULT_ERROR_RESPONSES)

_Score = Field(default=None, ge=0, le=100)


class SnapshotCreateRequest(BaseModel):
    overall_risk_index: float = Field(ge=0, le=100)
    risk_level: RiskLevel | None = None
    snapshot_date: datetime | None = None
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    confidence_score: float | None = _Score
    sentiment_score: float | None = _Score
    velocity_score: float | None = _Score
    propagation_score: float | None = _Score
    competitive_score: float | None = _Score
    governance_score: float | None = _Score
    persona_score: float | None = _Score
    key_concerns: list[Any] | None = None
    emerging_risks: list[Any] | None = None
    positive_factors: list[Any] | None = None
    computation_method: str | None = None

    model_config = {"extra": "forbid"}


@router.post("/snapshots", status_code=status.HTTP_201_CREATED)
async def create_snapshot(
    request: Request,
    payload: SnapshotCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    _tenant_guard: None = Depends(reject_tenant_id_in_body),
) -> dict:
    try:
        snapshot = await risk_service.create_snapshot(
            db,
            tenant_id=principal.tenant_id,
            actor_id=principal.subject_id,
            data=payload.model_dump(exclude_none=True),
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to create risk snapshot", exc) from exc
    return success_response(request=request, data=snapshot_to_dict(snapshot))


@router.get("/snapshots")
async def list_snapshots(
    request: Request,
    risk_level: list[RiskLevel] | None = Query(default=None),
    is_active: bool | None = None,
    is_archived: bool | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    min_risk_index: float | None = Query(default=None, ge=0, le=100),
    max_risk_index: float | None = Query(default=None, ge=0, le=100),
    sort_by: str = "snapshot_date",
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # A single level is an equality filter; repeated levels match any of them.
    level_filter: str | list[str] | None = risk_level
    if risk_level and len(risk_level) == 1:
        level_filter = risk_level[0]
    try:
        page = await risk_service.list_snapshots(
            db,
            tenant_id=principal.tenant_id,
            risk_level=level_filter,
            is_active=is_active,
            is_archived=is_archived,
            start_date=start_date,
            end_date=end_date,
            min_risk_index=min_risk_index,
            max_risk_index=max_risk_index,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to list risk snapshots", exc) from exc
    return success_response(request=request, data=page)


@router.get("/snapshots/{snapshot_id}")
async def get_snapshot(
    snapshot_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    snapshot = await risk_service.get_snapshot(db, tenant_id=principal.tenant_id, snapshot_id=snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Risk snapshot not found")
    return success_response(request=request, data=snapshot_to_dict(snapshot))


@router.post("/snapshots/{snapshot_id}/archive")
async def archive_snapshot(
    snapshot_id: str,
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        snapshot = await risk_service.archive_snapshot(db, tenant_id=principal.tenant_id, snapshot_id=snapshot_id)
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to archive risk snapshot", exc) from exc
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Risk snapshot not found")
    return success_response(request=request, data=snapshot_to_dict(snapshot))
