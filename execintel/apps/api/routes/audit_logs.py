from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.apps.api.deps import Principal, get_db, require_role
from execintel.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from execintel.apps.api.response import success_response
from execintel.domain.enums import AuditEventType
from execintel.services import report_audit


router = APIRouter(tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


# The trail outlives a hard-deleted report, so no existence check on the report.
@router.get("/reports/{report_id}/audit-logs")
async def list_audit_logs(
    report_id: str,
    request: Request,
    event_type: AuditEventType | None = None,
    actor_id: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        page = await report_audit.list_entries(
            db,
            tenant_id=principal.tenant_id,
            report_id=report_id,
            event_type=event_type,
            actor_id=actor_id,
            created_from=created_from,
            created_to=created_to,
            limit=limit,
            offset=offset,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing audit logs") from exc
    return success_response(request=request, data=page)
