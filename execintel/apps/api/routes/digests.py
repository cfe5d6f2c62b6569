from __future__ import annotations

from typing import Any, Sequence

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from execintel.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from execintel.apps.api.response import success_response
from execintel.core.errors import UpstreamFailure
from execintel.domain.enums import DeliveryPeriod, TimeWindow
from execintel.domain.mapping import delivery_log_to_dict, digest_to_dict, recipient_to_dict
from execintel.services import delivery as delivery_service


router = APIRouter(prefix="/digests", tags=["digests"], responses=DEFAULT_ERROR_RESPONSES)


class DigestCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    delivery_period: DeliveryPeriod | None = None
    time_window: TimeWindow | None = None
    schedule_day_of_week: int | None = Field(default=None, ge=0, le=6)
    schedule_hour: int | None = Field(default=None, ge=0, le=23)
    timezone: str | None = None
    include_recommendations: bool | None = None
    include_kpis: bool | None = None
    include_narrative: bool | None = None
    include_risk_summary: bool | None = None
    include_competitive: bool | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class DigestPatchRequest(BaseModel):
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    delivery_period: DeliveryPeriod | None = None
    time_window: TimeWindow | None = None
    schedule_day_of_week: int | None = Field(default=None, ge=0, le=6)
    schedule_hour: int | None = Field(default=None, ge=0, le=23)
    timezone: str | None = None
    include_recommendations: bool | None = None
    include_kpis: bool | None = None
    include_narrative: bool | None = None
    include_risk_summary: bool | None = None
    include_competitive: bool | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class RecipientCreateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    name: str | None = None
    role: str | None = None
    include_pdf: bool | None = None
    include_inline_summary: bool | None = None

    model_config = {"extra": "forbid"}


class RecipientPatchRequest(BaseModel):
    name: str | None = None
    role: str | None = None
    include_pdf: bool | None = None
    include_inline_summary: bool | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class DeliverRequest(BaseModel):
    test_mode: bool = False

    model_config = {"extra": "forbid"}


def _not_found(what: str = "Digest") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


def _page(items: Sequence[Any], total: int, limit: int, offset: int, mapper) -> dict[str, Any]:
    return {
        "items": [mapper(item) for item in items],
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(items) < total,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_digest(
    request: Request,
    payload: DigestCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    _tenant_guard: None = Depends(reject_tenant_id_in_body),
) -> dict:
    digest = await delivery_service.create_digest(
        db,
        tenant_id=principal.tenant_id,
        actor_id=principal.subject_id,
        data=payload.model_dump(exclude_none=True),
    )
    return success_response(request=request, data=digest_to_dict(digest))


@router.get("")
async def list_digests(
    request: Request,
    include_archived: bool = False,
    is_active: bool | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        digests, total = await delivery_service.list_digests(
            db,
            tenant_id=principal.tenant_id,
            include_archived=include_archived,
            is_active=is_active,
            limit=limit,
            offset=offset,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing digests") from exc
    return success_response(request=request, data=_page(digests, total, limit, offset, digest_to_dict))


@router.get("/stats")
async def digest_stats(
    request: Request,
    digest_id: str | None = None,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Degrades to zeros rather than failing the dashboard.
    stats = await delivery_service.get_stats(db, tenant_id=principal.tenant_id, digest_id=digest_id)
    return success_response(request=request, data=stats)


@router.get("/{digest_id}")
async def get_digest(
    digest_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        digest = await delivery_service.get_digest(db, tenant_id=principal.tenant_id, digest_id=digest_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching digest") from exc
    if digest is None:
        raise _not_found()
    return success_response(request=request, data=digest_to_dict(digest))


@router.patch("/{digest_id}")
async def update_digest(
    digest_id: str,
    request: Request,
    payload: DigestPatchRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
    _tenant_guard: None = Depends(reject_tenant_id_in_body),
) -> dict:
    digest = await delivery_service.update_digest(
        db,
        tenant_id=principal.tenant_id,
        digest_id=digest_id,
        patch=payload.model_dump(exclude_unset=True),
    )
    if digest is None:
        raise _not_found()
    return success_response(request=request, data=digest_to_dict(digest))


@router.delete("/{digest_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_digest(
    digest_id: str,
    hard: bool = Query(default=False),
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    deleted = await delivery_service.delete_digest(
        db, tenant_id=principal.tenant_id, digest_id=digest_id, hard=hard
    )
    if not deleted:
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{digest_id}/recipients", status_code=status.HTTP_201_CREATED)
async def add_recipient(
    digest_id: str,
    request: Request,
    payload: RecipientCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    recipient = await delivery_service.add_recipient(
        db,
        tenant_id=principal.tenant_id,
        digest_id=digest_id,
        **payload.model_dump(),
    )
    return success_response(request=request, data=recipient_to_dict(recipient))


@router.get("/{digest_id}/recipients")
async def list_recipients(
    digest_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        recipients = await delivery_service.list_recipients(
            db, tenant_id=principal.tenant_id, digest_id=digest_id
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing recipients") from exc
    if recipients is None:
        raise _not_found()
    return success_response(request=request, data=[recipient_to_dict(item) for item in recipients])


@router.patch("/{digest_id}/recipients/{recipient_id}")
async def update_recipient(
    digest_id: str,
    recipient_id: str,
    request: Request,
    payload: RecipientPatchRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    recipient = await delivery_service.update_recipient(
        db,
        tenant_id=principal.tenant_id,
        digest_id=digest_id,
        recipient_id=recipient_id,
        patch=payload.model_dump(exclude_unset=True),
    )
    if recipient is None:
        raise _not_found("Recipient")
    return success_response(request=request, data=recipient_to_dict(recipient))


@router.delete("/{digest_id}/recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_recipient(
    digest_id: str,
    recipient_id: str,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    removed = await delivery_service.remove_recipient(
        db, tenant_id=principal.tenant_id, digest_id=digest_id, recipient_id=recipient_id
    )
    if not removed:
        raise _not_found("Recipient")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{digest_id}/deliver")
async def deliver_digest(
    digest_id: str,
    request: Request,
    payload: DeliverRequest | None = None,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    log = await delivery_service.deliver_digest(
        db,
        tenant_id=principal.tenant_id,
        digest_id=digest_id,
        dispatcher=delivery_service.LoggingDispatcher(),
        test_mode=payload.test_mode if payload else False,
    )
    return success_response(request=request, data=delivery_log_to_dict(log))


@router.get("/{digest_id}/deliveries")
async def list_delivery_logs(
    digest_id: str,
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        digest = await delivery_service.get_digest(db, tenant_id=principal.tenant_id, digest_id=digest_id)
        if digest is None:
            raise _not_found()
        logs, total = await delivery_service.list_delivery_logs(
            db, tenant_id=principal.tenant_id, digest_id=digest_id, limit=limit, offset=offset
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to list deliveries", exc) from exc
    return success_response(request=request, data=_page(logs, total, limit, offset, delivery_log_to_dict))
