from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import ReportSection
from execintel.persistence.guards import owned_by, tenant_predicate


async def list_sections(session: AsyncSession, *, tenant_id: str, report_id: str) -> list[ReportSection]:
    result = await session.execute(
        select(ReportSection)
        .where(tenant_predicate(ReportSection, tenant_id), ReportSection.report_id == report_id)
        .order_by(ReportSection.order_index, ReportSection.created_at, ReportSection.id)
    )
    return list(result.scalars().all())


async def get_section(
    session: AsyncSession, *, tenant_id: str, report_id: str, section_id: str
) -> ReportSection | None:
    # Require the parent report id so a section cannot be addressed through another report.
    result = await session.execute(
        select(ReportSection).where(
            owned_by(ReportSection, tenant_id, section_id),
            ReportSection.report_id == report_id,
        )
    )
    return result.scalar_one_or_none()


async def get_section_by_type(
    session: AsyncSession, *, tenant_id: str, report_id: str, section_type: str
) -> ReportSection | None:
    result = await session.execute(
        select(ReportSection)
        .where(
            tenant_predicate(ReportSection, tenant_id),
            ReportSection.report_id == report_id,
            ReportSection.section_type == section_type,
        )
        .order_by(ReportSection.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def next_order_index(session: AsyncSession, *, tenant_id: str, report_id: str) -> int:
    current = await session.scalar(
        select(func.max(ReportSection.order_index)).where(
            tenant_predicate(ReportSection, tenant_id), ReportSection.report_id == report_id
        )
    )
    return 0 if current is None else int(current) + 1
