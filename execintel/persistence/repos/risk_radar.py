from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import RiskRadarSnapshot
from execintel.persistence.guards import owned_by, tenant_predicate


_SORTABLE = {
    "snapshot_date": RiskRadarSnapshot.snapshot_date,
    "overall_risk_index": RiskRadarSnapshot.overall_risk_index,
    "created_at": RiskRadarSnapshot.created_at,
}


async def get_snapshot(
    session: AsyncSession, *, tenant_id: str, snapshot_id: str
) -> RiskRadarSnapshot | None:
    result = await session.execute(
        select(RiskRadarSnapshot).where(owned_by(RiskRadarSnapshot, tenant_id, snapshot_id))
    )
    return result.scalar_one_or_none()


async def list_snapshots(
    session: AsyncSession,
    *,
    tenant_id: str,
    risk_level: str | Sequence[str] | None = None,
    is_active: bool | None = None,
    is_archived: bool | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    min_risk_index: float | None = None,
    max_risk_index: float | None = None,
    sort_by: str = "snapshot_date",
    sort_order: str = "desc",
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[RiskRadarSnapshot], int]:
    filters = [tenant_predicate(RiskRadarSnapshot, tenant_id)]
    # A single level is an equality match; several levels become IN.
    if isinstance(risk_level, str):
        filters.append(RiskRadarSnapshot.risk_level == risk_level)
    elif risk_level:
        filters.append(RiskRadarSnapshot.risk_level.in_(list(risk_level)))
    if is_active is not None:
        filters.append(RiskRadarSnapshot.is_active.is_(is_active))
    if is_archived is not None:
        filters.append(RiskRadarSnapshot.is_archived.is_(is_archived))
    if start_date is not None:
        filters.append(RiskRadarSnapshot.snapshot_date >= start_date)
    if end_date is not None:
        filters.append(RiskRadarSnapshot.snapshot_date <= end_date)
    if min_risk_index is not None:
        filters.append(RiskRadarSnapshot.overall_risk_index >= min_risk_index)
    if max_risk_index is not None:
        filters.append(RiskRadarSnapshot.overall_risk_index <= max_risk_index)

    total = await session.scalar(select(func.count()).select_from(RiskRadarSnapshot).where(*filters))
    column = _SORTABLE.get(sort_by, RiskRadarSnapshot.snapshot_date)
    ordering = asc(column) if sort_order == "asc" else desc(column)
    result = await session.execute(
        select(RiskRadarSnapshot)
        .where(*filters)
        .order_by(ordering, RiskRadarSnapshot.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)
