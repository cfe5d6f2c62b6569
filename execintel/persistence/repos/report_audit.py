from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import ReportAuditLog
from execintel.persistence.guards import tenant_predicate


async def list_entries(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    event_type: str | None = None,
    actor_id: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    offset: int = 0,
    limit: int | None = 50,
) -> tuple[list[ReportAuditLog], int]:
    # Scope all audit queries to a tenant to prevent cross-tenant leakage.
    filters = [tenant_predicate(ReportAuditLog, tenant_id), ReportAuditLog.report_id == report_id]
    if event_type:
        filters.append(ReportAuditLog.event_type == event_type)
    if actor_id:
        filters.append(ReportAuditLog.actor_id == actor_id)
    if created_from:
        filters.append(ReportAuditLog.created_at >= created_from)
    if created_to:
        filters.append(ReportAuditLog.created_at <= created_to)

    total = await session.scalar(select(func.count()).select_from(ReportAuditLog).where(*filters))
    # Chronological order for timeline display; id breaks same-timestamp ties.
    stmt = (
        select(ReportAuditLog)
        .where(*filters)
        .order_by(ReportAuditLog.created_at.asc(), ReportAuditLog.id.asc())
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total or 0)
