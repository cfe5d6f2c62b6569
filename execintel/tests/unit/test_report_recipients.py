from __future__ import annotations

import pytest

from execintel.core.errors import NotFoundError, ValidationError
from execintel.persistence.db import SessionLocal
from execintel.persistence.repos import report_recipients as recipients_repo
from execintel.services import report_recipients
from execintel.services import reports as report_service
from execintel.services.report_audit import Actor


_ADMIN = Actor(actor_type="user", actor_id="admin-1")


async def _board_report(session, tenant_id: str = "t1"):
    return await report_service.create_report(
        session,
        tenant_id=tenant_id,
        actor=_ADMIN,
        data={"title": "Board Strategy Brief", "format": "board_strategy_brief", "audience": "board"},
    )


@pytest.mark.asyncio
async def test_board_recipients_are_normalized_with_delivery_defaults() -> None:
    async with SessionLocal() as session:
        report = await _board_report(session)
        first = await report_recipients.add_recipient(
            session, tenant_id="t1", report_id=report.id, email="  Chair@Board.COM "
        )
        again = await report_recipients.add_recipient(
            session, tenant_id="t1", report_id=report.id, email="director@board.com", include_pdf=False
        )
        assert first.email == "chair@board.com"
        assert first.include_pdf is True
        assert first.include_inline_summary is True
        assert first.is_validated is False
        assert again.include_pdf is False

        with pytest.raises(ValidationError) as dup:
            await report_recipients.add_recipient(
                session, tenant_id="t1", report_id=report.id, email="CHAIR@board.com"
            )
        assert dup.value.field == "email"
        with pytest.raises(ValidationError):
            await report_recipients.add_recipient(session, tenant_id="t1", report_id=report.id, email="chair")


@pytest.mark.asyncio
async def test_board_recipients_are_scoped_to_tenant_and_report() -> None:
    async with SessionLocal() as session:
        report = await _board_report(session)
        await report_recipients.add_recipient(session, tenant_id="t1", report_id=report.id, email="chair@board.com")

        with pytest.raises(NotFoundError):
            await report_recipients.add_recipient(
                session, tenant_id="t2", report_id=report.id, email="spy@example.com"
            )
        assert await report_recipients.list_recipients(session, tenant_id="t2", report_id=report.id) is None
        listed = await report_recipients.list_recipients(session, tenant_id="t1", report_id=report.id)
        assert [item.email for item in listed] == ["chair@board.com"]


@pytest.mark.asyncio
async def test_paused_board_recipients_drop_out_of_the_active_list() -> None:
    async with SessionLocal() as session:
        report = await _board_report(session)
        chair = await report_recipients.add_recipient(
            session, tenant_id="t1", report_id=report.id, email="chair@board.com"
        )
        await report_recipients.add_recipient(session, tenant_id="t1", report_id=report.id, email="cfo@board.com")

        updated = await report_recipients.update_recipient(
            session,
            tenant_id="t1",
            report_id=report.id,
            recipient_id=chair.id,
            patch={"is_active": False, "role": "Chair", "email": "ignored@board.com"},
        )
        assert updated.is_active is False
        assert updated.role == "Chair"
        assert updated.email == "chair@board.com"

        active = await report_recipients.list_recipients(
            session, tenant_id="t1", report_id=report.id, active_only=True
        )
        assert [item.email for item in active] == ["cfo@board.com"]
        assert await report_recipients.remove_recipient(
            session, tenant_id="t1", report_id=report.id, recipient_id=chair.id
        )
        assert not await report_recipients.remove_recipient(
            session, tenant_id="t1", report_id=report.id, recipient_id=chair.id
        )


@pytest.mark.asyncio
async def test_hard_deleted_report_takes_its_recipients() -> None:
    async with SessionLocal() as session:
        report = await _board_report(session)
        report_id = report.id
        await report_recipients.add_recipient(session, tenant_id="t1", report_id=report_id, email="chair@board.com")
        assert await report_service.delete_report(
            session, tenant_id="t1", report_id=report_id, actor=_ADMIN, hard=True
        )
        assert await recipients_repo.list_recipients(session, tenant_id="t1", report_id=report_id) == []
