from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Protocol
from uuid import uuid4

import pytz
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.core.config import get_settings
from execintel.core.errors import NotFoundError, UpstreamFailure, ValidationError
from execintel.domain.mapping import as_utc
from execintel.domain.models import DigestDeliveryLog, DigestRecipient, ExecDigest
from execintel.persistence.repos import digests as digests_repo


logger = logging.getLogger(__name__)

DIGEST_FIELDS = (
    "title",
    "description",
    "delivery_period",
    "time_window",
    "schedule_day_of_week",
    "schedule_hour",
    "timezone",
    "include_recommendations",
    "include_kpis",
    "include_narrative",
    "include_risk_summary",
    "include_competitive",
    "is_active",
)
_SCHEDULE_FIELDS = {"delivery_period", "schedule_day_of_week", "schedule_hour", "timezone", "is_active"}
RECIPIENT_FIELDS = ("name", "role", "include_pdf", "include_inline_summary", "is_active")

ZERO_STATS: dict[str, int] = {
    "total_digests": 0,
    "active_digests": 0,
    "total_deliveries": 0,
    "successful_deliveries": 0,
    "total_recipients": 0,
    "active_recipients": 0,
}


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class DigestDispatcher(Protocol):
    async def dispatch(
        self, digest: ExecDigest, recipient: DigestRecipient, *, test_mode: bool
    ) -> DispatchResult:
        ...


class LoggingDispatcher:
    """Default dispatcher: records the hand-off and reports success.

    Real email transport is an external service plugged in through
    ``DigestDispatcher``.
    """

    async def dispatch(
        self, digest: ExecDigest, recipient: DigestRecipient, *, test_mode: bool
    ) -> DispatchResult:
        logger.info(
            "digest_dispatch digest_id=%s recipient_id=%s test_mode=%s",
            digest.id,
            recipient.id,
            test_mode,
        )
        return DispatchResult(success=True, message_id=str(uuid4()))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def compute_next_delivery(
    period: str,
    day_of_week: int,
    hour: int,
    now: datetime,
    tz_name: str | None = "UTC",
) -> datetime:
    """Return the next delivery instant (UTC) for a digest schedule.

    The slot is computed on the wall clock of ``tz_name`` and converted back
    to UTC. ``day_of_week`` follows the Postgres DOW convention (0=Sunday). A
    weekly slot later today is kept; a slot that already passed today moves a
    week out. Monthly digests go out on the first of the month.
    """
    zone = pytz.timezone(tz_name or "UTC")
    slot = _next_local_slot(period, day_of_week, hour, as_utc(now).astimezone(zone).replace(tzinfo=None))
    return zone.localize(slot).astimezone(timezone.utc)


def _next_local_slot(period: str, day_of_week: int, hour: int, now: datetime) -> datetime:
    hour = max(0, min(int(hour), 23))
    today_at_hour = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if period == "daily":
        return today_at_hour if today_at_hour > now else today_at_hour + timedelta(days=1)
    if period == "monthly":
        first = today_at_hour.replace(day=1)
        if first > now:
            return first
        if first.month == 12:
            return first.replace(year=first.year + 1, month=1)
        return first.replace(month=first.month + 1)
    # Python weekday() is Monday=0; shift to Sunday=0.
    today_dow = (now.weekday() + 1) % 7
    days_until = (int(day_of_week) - today_dow) % 7
    if days_until == 0 and today_at_hour <= now:
        days_until = 7
    return today_at_hour + timedelta(days=days_until)


def _validate_schedule(values: dict[str, Any]) -> None:
    if "delivery_period" in values and values["delivery_period"] not in {"daily", "weekly", "monthly"}:
        raise ValidationError("delivery_period", "delivery_period must be daily, weekly or monthly")
    if "schedule_day_of_week" in values and not 0 <= int(values["schedule_day_of_week"]) <= 6:
        raise ValidationError("schedule_day_of_week", "schedule_day_of_week must be between 0 and 6")
    if "schedule_hour" in values and not 0 <= int(values["schedule_hour"]) <= 23:
        raise ValidationError("schedule_hour", "schedule_hour must be between 0 and 23")
    if "timezone" in values:
        try:
            pytz.timezone(values["timezone"] or "")
        except pytz.UnknownTimeZoneError as exc:
            raise ValidationError("timezone", f"Unknown timezone: {values['timezone']}") from exc


async def _commit(session: AsyncSession, prefix: str) -> None:
    # Keep the stable prefix for clients; the driver detail only goes to logs.
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("digest_write_failed operation=%s", prefix, exc_info=exc)
        raise UpstreamFailure(prefix, type(exc).__name__) from exc


async def create_digest(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor_id: str | None,
    data: dict[str, Any],
    now: datetime | None = None,
) -> ExecDigest:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title", "title is required")
    _validate_schedule(data)
    settings = get_settings()
    values: dict[str, Any] = {
        "description": None,
        "delivery_period": "weekly",
        "time_window": "7d",
        "schedule_day_of_week": 1,
        "schedule_hour": 8,
        "timezone": "UTC",
        "include_recommendations": True,
        "include_kpis": True,
        "include_narrative": True,
        "include_risk_summary": True,
        "include_competitive": True,
        "is_active": True,
    }
    values.update({key: value for key, value in data.items() if key in DIGEST_FIELDS and value is not None})
    values["title"] = title
    digest = ExecDigest(
        id=str(uuid4()),
        tenant_id=tenant_id,
        is_archived=False,
        storage_bucket=settings.storage_bucket,
        created_by=actor_id,
        **values,
    )
    digest.next_delivery_at = compute_next_delivery(
        digest.delivery_period,
        digest.schedule_day_of_week,
        digest.schedule_hour,
        now or datetime.now(timezone.utc),
        digest.timezone,
    )
    session.add(digest)
    await _commit(session, "Failed to create digest")
    return digest


async def get_digest(session: AsyncSession, *, tenant_id: str, digest_id: str) -> ExecDigest | None:
    return await digests_repo.get_digest(session, tenant_id=tenant_id, digest_id=digest_id)


async def list_digests(
    session: AsyncSession,
    *,
    tenant_id: str,
    include_archived: bool = False,
    is_active: bool | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[ExecDigest], int]:
    return await digests_repo.list_digests(
        session,
        tenant_id=tenant_id,
        include_archived=include_archived,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )


async def update_digest(
    session: AsyncSession,
    *,
    tenant_id: str,
    digest_id: str,
    patch: dict[str, Any],
    now: datetime | None = None,
) -> ExecDigest | None:
    changes = {key: value for key, value in patch.items() if key in DIGEST_FIELDS}
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("title", "title must not be empty")
    _validate_schedule(changes)
    digest = await digests_repo.get_digest(session, tenant_id=tenant_id, digest_id=digest_id)
    if digest is None:
        return None
    for key, value in changes.items():
        setattr(digest, key, value.strip() if key == "title" else value)
    # Schedule edits re-anchor the next slot from now.
    if _SCHEDULE_FIELDS & changes.keys():
        digest.next_delivery_at = compute_next_delivery(
            digest.delivery_period,
            digest.schedule_day_of_week,
            digest.schedule_hour,
            now or datetime.now(timezone.utc),
            digest.timezone,
        )
    await _commit(session, "Failed to update digest")
    return digest


async def delete_digest(
    session: AsyncSession, *, tenant_id: str, digest_id: str, hard: bool = False
) -> bool:
    digest = await digests_repo.get_digest(session, tenant_id=tenant_id, digest_id=digest_id)
    if digest is None:
        return False
    if hard:
        await digests_repo.delete_digest_children(session, tenant_id=tenant_id, digest_id=digest_id)
        await session.delete(digest)
    else:
        digest.is_archived = True
        digest.is_active = False
    await _commit(session, "Failed to delete digest")
    return True


async def add_recipient(
    session: AsyncSession,
    *,
    tenant_id: str,
    digest_id: str,
    email: str,
    name: str | None = None,
    role: str | None = None,
    include_pdf: bool | None = None,
    include_inline_summary: bool | None = None,
) -> DigestRecipient:
    normalized = normalize_email(email or "")
    if not normalized or "@" not in normalized:
        raise ValidationError("email", "A valid email address is required")
    digest = await digests_repo.get_digest(session, tenant_id=tenant_id, digest_id=digest_id)
    if digest is None:
        raise NotFoundError("Digest not found")
    existing = await digests_repo.get_recipient_by_email(
        session, tenant_id=tenant_id, digest_id=digest_id, email=normalized
    )
    if existing is not None:
        raise ValidationError("email", f"{normalized} is already a recipient")
    recipient = DigestRecipient(
        id=str(uuid4()),
        tenant_id=tenant_id,
        digest_id=digest_id,
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
    return recipient


async def list_recipients(
    session: AsyncSession, *, tenant_id: str, digest_id: str
) -> list[DigestRecipient] | None:
    digest = await digests_repo.get_digest(session, tenant_id=tenant_id, digest_id=digest_id)
    if digest is None:
        return None
    return await digests_repo.list_recipients(session, tenant_id=tenant_id, digest_id=digest_id)


async def update_recipient(
    session: AsyncSession,
    *,
    tenant_id: str,
    digest_id: str,
    recipient_id: str,
    patch: dict[str, Any],
) -> DigestRecipient | None:
    recipient = await digests_repo.get_recipient(
        session, tenant_id=tenant_id, digest_id=digest_id, recipient_id=recipient_id
    )
    if recipient is None:
        return None
    for key, value in patch.items():
        if key in RECIPIENT_FIELDS and value is not None:
            setattr(recipient, key, value)
    await _commit(session, "Failed to update recipient")
    return recipient


async def remove_recipient(
    session: AsyncSession, *, tenant_id: str, digest_id: str, recipient_id: str
) -> bool:
    recipient = await digests_repo.get_recipient(
        session, tenant_id=tenant_id, digest_id=digest_id, recipient_id=recipient_id
    )
    if recipient is None:
        return False
    await session.delete(recipient)
    await _commit(session, "Failed to remove recipient")
    return True


async def get_due_for_delivery(
    session: AsyncSession, *, now: datetime | None = None, limit: int | None = None
) -> list[ExecDigest]:
    """Active, non-archived digests whose next slot is at or before ``now``."""
    return await digests_repo.list_due(session, now=now or datetime.now(timezone.utc), limit=limit)


async def deliver_digest(
    session: AsyncSession,
    *,
    tenant_id: str,
    digest_id: str,
    dispatcher: DigestDispatcher,
    test_mode: bool = False,
    now: datetime | None = None,
) -> DigestDeliveryLog:
    """Dispatch a digest to each active recipient and record one delivery log.

    A failing recipient is recorded and the rest are still attempted. Outside
    test mode the digest's ``last_delivered_at`` is stamped and its next slot
    advanced.
    """
    digest = await digests_repo.get_digest(session, tenant_id=tenant_id, digest_id=digest_id)
    if digest is None:
        raise NotFoundError("Digest not found")
    started = now or datetime.now(timezone.utc)
    recipients = await digests_repo.list_recipients(
        session, tenant_id=tenant_id, digest_id=digest_id, active_only=True
    )
    log = DigestDeliveryLog(
        id=str(uuid4()),
        tenant_id=tenant_id,
        digest_id=digest_id,
        delivery_period=digest.delivery_period,
        scheduled_at=digest.next_delivery_at,
        started_at=started,
        status="sending",
        recipients_count=len(recipients),
        successful_deliveries=0,
        failed_deliveries=0,
        recipient_results=[],
        is_test=test_mode,
    )
    session.add(log)
    await _commit(session, "Failed to start digest delivery")

    results: list[dict[str, Any]] = []
    for recipient in recipients:
        try:
            outcome = await dispatcher.dispatch(digest, recipient, test_mode=test_mode)
        except Exception as exc:  # noqa: BLE001 - one recipient must not abort the batch
            logger.warning(
                "digest_dispatch_failed digest_id=%s recipient_id=%s",
                digest_id,
                recipient.id,
                exc_info=exc,
            )
            outcome = DispatchResult(success=False, error=str(exc) or type(exc).__name__)
        results.append(
            {
                "recipient_id": recipient.id,
                "email": recipient.email,
                "success": outcome.success,
                "message_id": outcome.message_id,
                "error": outcome.error,
            }
        )

    succeeded = sum(1 for result in results if result["success"])
    failed = len(results) - succeeded
    if not results:
        status, error_message = "error", "No active recipients"
    elif failed == 0:
        status, error_message = "success", None
    elif succeeded == 0:
        status, error_message = "error", "All deliveries failed"
    else:
        status, error_message = "partial_success", f"{failed} of {len(results)} deliveries failed"

    log_id = log.id
    schedule: dict[str, Any] = {}
    if not test_mode:
        schedule = {
            "last_delivered_at": started,
            "next_delivery_at": compute_next_delivery(
                digest.delivery_period,
                digest.schedule_day_of_week,
                digest.schedule_hour,
                started,
                digest.timezone,
            ),
        }
    log.status = status
    log.successful_deliveries = succeeded
    log.failed_deliveries = failed
    log.recipient_results = results
    log.error_message = error_message
    log.completed_at = datetime.now(timezone.utc)
    for key, value in schedule.items():
        setattr(digest, key, value)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("digest_delivery_record_failed digest_id=%s log_id=%s", digest_id, log_id, exc_info=exc)
        await _close_unrecorded_delivery(
            session,
            tenant_id=tenant_id,
            digest_id=digest_id,
            log_id=log_id,
            schedule=schedule,
            counts=(succeeded, failed),
        )
        raise UpstreamFailure("Failed to record digest delivery", type(exc).__name__) from exc
    logger.info(
        "digest_delivered digest_id=%s status=%s succeeded=%s failed=%s",
        digest_id,
        status,
        succeeded,
        failed,
    )
    return log


async def _close_unrecorded_delivery(
    session: AsyncSession,
    *,
    tenant_id: str,
    digest_id: str,
    log_id: str,
    schedule: dict[str, Any],
    counts: tuple[int, int],
) -> None:
    """Close a delivery whose result could not be saved.

    Recipients were already contacted: the log leaves ``sending`` and the
    schedule still advances past the slot that was sent.
    """
    succeeded, failed = counts
    try:
        await digests_repo.close_delivery_log(
            session,
            tenant_id=tenant_id,
            log_id=log_id,
            values={
                "status": "error",
                "successful_deliveries": succeeded,
                "failed_deliveries": failed,
                "error_message": "Delivery result could not be recorded",
                "completed_at": datetime.now(timezone.utc),
            },
        )
        if schedule:
            await digests_repo.set_schedule(session, tenant_id=tenant_id, digest_id=digest_id, values=schedule)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.critical(
            "digest_delivery_close_failed digest_id=%s log_id=%s", digest_id, log_id, exc_info=exc
        )


async def deliver_due_digests(
    session: AsyncSession,
    *,
    dispatcher: DigestDispatcher,
    now: datetime | None = None,
    limit: int | None = None,
) -> list[DigestDeliveryLog]:
    """Deliver every due digest once; a failing digest is logged and skipped."""
    current = now or datetime.now(timezone.utc)
    due = await get_due_for_delivery(session, now=current, limit=limit)
    targets = [(digest.tenant_id, digest.id) for digest in due]
    logs: list[DigestDeliveryLog] = []
    for tenant_id, digest_id in targets:
        try:
            logs.append(
                await deliver_digest(
                    session, tenant_id=tenant_id, digest_id=digest_id, dispatcher=dispatcher, now=current
                )
            )
        except (NotFoundError, UpstreamFailure) as exc:
            logger.warning("scheduled_delivery_failed digest_id=%s error=%s", digest_id, exc)
    return logs


async def list_delivery_logs(
    session: AsyncSession, *, tenant_id: str, digest_id: str, limit: int = 20, offset: int = 0
) -> tuple[list[DigestDeliveryLog], int]:
    return await digests_repo.list_delivery_logs(
        session, tenant_id=tenant_id, digest_id=digest_id, limit=limit, offset=offset
    )


async def get_stats(
    session: AsyncSession, *, tenant_id: str, digest_id: str | None = None
) -> dict[str, int]:
    """Aggregate digest counts; a failed query degrades to zeros instead of raising."""
    try:
        return await digests_repo.aggregate_stats(session, tenant_id=tenant_id, digest_id=digest_id)
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("digest_stats_degraded tenant_id=%s digest_id=%s", tenant_id, digest_id, exc_info=exc)
        return dict(ZERO_STATS)
