"""Distribution lists for board-facing strategic reports.

Recipients follow the digest rules: emails are trimmed and lowercased,
duplicates per report are rejected, and both delivery preferences
default to on.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.core.errors import NotFoundError, UpstreamFailure, ValidationError
from execintel.domain.models import ReportRecipient
from execintel.persistence.repos import report_recipients as recipients_repo
from execintel.persistence.repos import reports as reports_repo
from execintel.services.delivery import RECIPIENT_FIELDS, normalize_email


logger = logging.getLogger(__name__)


async def _commit(session: AsyncSession, prefix: str) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("report_recipient_write_failed operation=%s", prefix, exc_info=exc)
        raise UpstreamFailure(prefix, type(exc).__name__) from exc


async def add_recipient(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    email: str,
    name: str | None = None,
    role: str | None = None,
    include_pdf: bool | None = None,
    include_inline_summary: bool | None = None,
) -> ReportRecipient:
    normalized = normalize_email(email or "")
    if not normalized or "@" not in normalized:
        raise ValidationError("email", "A valid email address is required")
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        raise NotFoundError("Report not found")
    existing = await recipients_repo.get_recipient_by_email(
        session, tenant_id=tenant_id, report_id=report_id, email=normalized
    )
    if existing is not None:
        raise ValidationError("email", f"{normalized} is already a recipient")
    recipient = ReportRecipient(
        id=str(uuid4()),
        tenant_id=tenant_id,
        report_id=report_id,
        email=normalized,
        name=name,
        role=role,
        include_pdf=True if include_pdf is None else include_pdf,
        include_inline_summary=True if include_inline_summary is None else include_inline_summary,
        is_active=True,
        is_validated=False,
    )
    session.add(recipient)
    await _commit(session, "Failed to add recipient")
    logger.info("report_recipient_added report_id=%s recipient_id=%s", report_id, recipient.id)
    return recipient


async def list_recipients(
    session: AsyncSession, *, tenant_id: str, report_id: str, active_only: bool = False
) -> list[ReportRecipient] | None:
    report = await reports_repo.get_report(session, tenant_id=tenant_id, report_id=report_id)
    if report is None:
        return None
    return await recipients_repo.list_recipients(
        session, tenant_id=tenant_id, report_id=report_id, active_only=active_only
    )


async def update_recipient(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    recipient_id: str,
    patch: dict[str, Any],
) -> ReportRecipient | None:
    recipient = await recipients_repo.get_recipient(
        session, tenant_id=tenant_id, report_id=report_id, recipient_id=recipient_id
    )
    if recipient is None:
        return None
    for key, value in patch.items():
        if key in RECIPIENT_FIELDS and value is not None:
            setattr(recipient, key, value)
    await _commit(session, "Failed to update recipient")
    return recipient


async def remove_recipient(
    session: AsyncSession, *, tenant_id: str, report_id: str, recipient_id: str
) -> bool:
    recipient = await recipients_repo.get_recipient(
        session, tenant_id=tenant_id, report_id=report_id, recipient_id=recipient_id
    )
    if recipient is None:
        return False
    await session.delete(recipient)
    await _commit(session, "Failed to remove recipient")
    return True
