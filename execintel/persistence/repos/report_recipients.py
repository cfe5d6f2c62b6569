from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import ReportRecipient
from execintel.persistence.guards import owned_by, tenant_predicate


async def list_recipients(
    session: AsyncSession, *, tenant_id: str, report_id: str, active_only: bool = False
) -> list[ReportRecipient]:
    stmt = select(ReportRecipient).where(
        tenant_predicate(ReportRecipient, tenant_id), ReportRecipient.report_id == report_id
    )
    if active_only:
        stmt = stmt.where(ReportRecipient.is_active.is_(True))
    result = await session.execute(stmt.order_by(ReportRecipient.created_at, ReportRecipient.id))
    return list(result.scalars().all())


async def get_recipient(
    session: AsyncSession, *, tenant_id: str, report_id: str, recipient_id: str
) -> ReportRecipient | None:
    result = await session.execute(
        select(ReportRecipient).where(
            owned_by(ReportRecipient, tenant_id, recipient_id),
            ReportRecipient.report_id == report_id,
        )
    )
    return result.scalar_one_or_none()


async def get_recipient_by_email(
    session: AsyncSession, *, tenant_id: str, report_id: str, email: str
) -> ReportRecipient | None:
    result = await session.execute(
        select(ReportRecipient).where(
            tenant_predicate(ReportRecipient, tenant_id),
            ReportRecipient.report_id == report_id,
            ReportRecipient.email == email,
        )
    )
    return result.scalar_one_or_none()
