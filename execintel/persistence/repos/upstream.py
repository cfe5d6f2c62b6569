from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import UpstreamSnapshot
from execintel.persistence.guards import tenant_predicate


async def latest_snapshot(
    session: AsyncSession,
    *,
    tenant_id: str,
    source_system: str,
    captured_before: datetime | None = None,
) -> UpstreamSnapshot | None:
    # Newest summary published by one feature area, optionally bounded by the report period.
    stmt = select(UpstreamSnapshot).where(
        tenant_predicate(UpstreamSnapshot, tenant_id),
        UpstreamSnapshot.source_system == source_system,
    )
    if captured_before is not None:
        stmt = stmt.where(UpstreamSnapshot.captured_at <= captured_before)
    stmt = stmt.order_by(UpstreamSnapshot.captured_at.desc(), UpstreamSnapshot.id.desc()).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
