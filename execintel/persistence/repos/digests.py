from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import DigestDeliveryLog, DigestRecipient, ExecDigest
from execintel.persistence.guards import owned_by, tenant_predicate


async def get_digest(session: AsyncSession, *, tenant_id: str, digest_id: str) -> ExecDigest | None:
    result = await session.execute(select(ExecDigest).where(owned_by(ExecDigest, tenant_id, digest_id)))
    return result.scalar_one_or_none()


async def list_digests(
    session: AsyncSession,
    *,
    tenant_id: str,
    include_archived: bool = False,
    is_active: bool | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[ExecDigest], int]:
    filters = [tenant_predicate(ExecDigest, tenant_id)]
    if not include_archived:
        filters.append(ExecDigest.is_archived.is_(False))
    if is_active is not None:
        filters.append(ExecDigest.is_active.is_(is_active))
    total = await session.scalar(select(func.count()).select_from(ExecDigest).where(*filters))
    result = await session.execute(
        select(ExecDigest)
        .where(*filters)
        .order_by(ExecDigest.created_at.desc(), ExecDigest.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


async def list_due(session: AsyncSession, *, now: datetime, limit: int | None = None) -> list[ExecDigest]:
    # Spans tenants; callers re-scope per digest when delivering.
    stmt = (
        select(ExecDigest)
        .where(
            ExecDigest.is_active.is_(True),
            ExecDigest.is_archived.is_(False),
            ExecDigest.next_delivery_at.is_not(None),
            ExecDigest.next_delivery_at <= now,
        )
        .order_by(ExecDigest.next_delivery_at, ExecDigest.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_recipients(
    session: AsyncSession, *, tenant_id: str, digest_id: str, active_only: bool = False
) -> list[DigestRecipient]:
    stmt = select(DigestRecipient).where(
        tenant_predicate(DigestRecipient, tenant_id), DigestRecipient.digest_id == digest_id
    )
    if active_only:
        stmt = stmt.where(DigestRecipient.is_active.is_(True))
    result = await session.execute(stmt.order_by(DigestRecipient.created_at, DigestRecipient.id))
    return list(result.scalars().all())


async def get_recipient(
    session: AsyncSession, *, tenant_id: str, digest_id: str, recipient_id: str
) -> DigestRecipient | None:
    result = await session.execute(
        select(DigestRecipient).where(
            owned_by(DigestRecipient, tenant_id, recipient_id),
            DigestRecipient.digest_id == digest_id,
        )
    )
    return result.scalar_one_or_none()


async def get_recipient_by_email(
    session: AsyncSession, *, tenant_id: str, digest_id: str, email: str
) -> DigestRecipient | None:
    result = await session.execute(
        select(DigestRecipient).where(
            tenant_predicate(DigestRecipient, tenant_id),
            DigestRecipient.digest_id == digest_id,
            DigestRecipient.email == email,
        )
    )
    return result.scalar_one_or_none()


async def list_delivery_logs(
    session: AsyncSession, *, tenant_id: str, digest_id: str, limit: int = 20, offset: int = 0
) -> tuple[list[DigestDeliveryLog], int]:
    filters = [tenant_predicate(DigestDeliveryLog, tenant_id), DigestDeliveryLog.digest_id == digest_id]
    total = await session.scalar(select(func.count()).select_from(DigestDeliveryLog).where(*filters))
    result = await session.execute(
        select(DigestDeliveryLog)
        .where(*filters)
        .order_by(DigestDeliveryLog.created_at.desc(), DigestDeliveryLog.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


async def aggregate_stats(
    session: AsyncSession, *, tenant_id: str, digest_id: str | None = None
) -> dict[str, int]:
    """Return digest, delivery and recipient counts in a single statement."""
    digest_filter = [tenant_predicate(ExecDigest, tenant_id)]
    log_filter = [tenant_predicate(DigestDeliveryLog, tenant_id)]
    recipient_filter = [tenant_predicate(DigestRecipient, tenant_id)]
    if digest_id is not None:
        digest_filter.append(ExecDigest.id == digest_id)
        log_filter.append(DigestDeliveryLog.digest_id == digest_id)
        recipient_filter.append(DigestRecipient.digest_id == digest_id)

    def _count(model, *criteria):
        return select(func.count()).select_from(model).where(and_(*criteria)).scalar_subquery()

    stmt = select(
        _count(ExecDigest, *digest_filter).label("total_digests"),
        _count(
            ExecDigest,
            *digest_filter,
            ExecDigest.is_active.is_(True),
            ExecDigest.is_archived.is_(False),
        ).label("active_digests"),
        _count(DigestDeliveryLog, *log_filter).label("total_deliveries"),
        _count(DigestDeliveryLog, *log_filter, DigestDeliveryLog.status == "success").label(
            "successful_deliveries"
        ),
        _count(DigestRecipient, *recipient_filter).label("total_recipients"),
        _count(DigestRecipient, *recipient_filter, DigestRecipient.is_active.is_(True)).label(
            "active_recipients"
        ),
    )
    row = (await session.execute(stmt)).one()
    return {key: int(value or 0) for key, value in row._mapping.items()}


async def close_delivery_log(
    session: AsyncSession, *, tenant_id: str, log_id: str, values: dict[str, Any]
) -> bool:
    # Only a log still marked sending is closed.
    result = await session.execute(
        update(DigestDeliveryLog)
        .where(owned_by(DigestDeliveryLog, tenant_id, log_id), DigestDeliveryLog.status == "sending")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def set_schedule(session: AsyncSession, *, tenant_id: str, digest_id: str, values: dict[str, Any]) -> None:
    await session.execute(
        update(ExecDigest)
        .where(owned_by(ExecDigest, tenant_id, digest_id))
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def delete_digest_children(session: AsyncSession, *, tenant_id: str, digest_id: str) -> None:
    for model in (DigestRecipient, DigestDeliveryLog):
        await session.execute(
            delete(model)
            .where(tenant_predicate(model, tenant_id), model.digest_id == digest_id)
            .execution_options(synchronize_session=False)
        )
