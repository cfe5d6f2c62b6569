from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import ReportSource
from execintel.persistence.guards import owned_by, tenant_predicate


async def list_sources(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    source_system: str | None = None,
    is_primary: bool | None = None,
    min_relevance: float | None = None,
) -> list[ReportSource]:
    stmt = select(ReportSource).where(
        tenant_predicate(ReportSource, tenant_id), ReportSource.report_id == report_id
    )
    if source_system:
        stmt = stmt.where(ReportSource.source_system == source_system)
    if is_primary is not None:
        stmt = stmt.where(ReportSource.is_primary == is_primary)
    if min_relevance is not None:
        stmt = stmt.where(ReportSource.relevance_score >= min_relevance)
    # Most relevant first; nulls sort last on both dialects via coalesce.
    stmt = stmt.order_by(func.coalesce(ReportSource.relevance_score, -1).desc(), ReportSource.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_source(
    session: AsyncSession, *, tenant_id: str, report_id: str, source_id: str
) -> ReportSource | None:
    result = await session.execute(
        select(ReportSource).where(
            owned_by(ReportSource, tenant_id, source_id),
            ReportSource.report_id == report_id,
        )
    )
    return result.scalar_one_or_none()


async def get_by_reference(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    source_system: str,
    upstream_id: str,
) -> ReportSource | None:
    # Dedup key for upstream references attached to one report.
    result = await session.execute(
        select(ReportSource).where(
            tenant_predicate(ReportSource, tenant_id),
            ReportSource.report_id == report_id,
            ReportSource.source_system == source_system,
            ReportSource.source_id == upstream_id,
        )
    )
    return result.scalar_one_or_none()


async def delete_for_report(session: AsyncSession, *, tenant_id: str, report_id: str) -> int:
    result = await session.execute(
        delete(ReportSource).where(
            tenant_predicate(ReportSource, tenant_id), ReportSource.report_id == report_id
        )
    )
    return int(result.rowcount or 0)
