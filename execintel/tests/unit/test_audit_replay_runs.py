from __future__ import annotations

import pytest

from execintel.core.config import get_settings
from execintel.core.errors import ConflictError, NotFoundError
from execintel.persistence.db import SessionLocal
from execintel.services import replay
from execintel.services import reports as report_service
from execintel.services.report_audit import Actor


_ADMIN = Actor(actor_type="user", actor_id="admin-1")


async def _collect(session, tenant_id: str, run_id: str) -> list[dict]:
    return [event async for event in replay.execute_run(session, tenant_id=tenant_id, run_id=run_id)]


async def _report_with_history(session) -> str:
    report = await report_service.create_report(
        session, tenant_id="t1", actor=_ADMIN, data={"title": "Board Brief"}
    )
    await report_service.update_report(
        session, tenant_id="t1", report_id=report.id, actor=_ADMIN, patch={"tone": "formal"}
    )
    await report_service.archive_report(session, tenant_id="t1", report_id=report.id, actor=_ADMIN)
    await report_service.delete_report(session, tenant_id="t1", report_id=report.id, actor=_ADMIN, hard=True)
    return report.id


@pytest.mark.asyncio
async def test_replay_rebuilds_a_deleted_reports_history(monkeypatch) -> None:
    monkeypatch.setenv("REPLAY_PROGRESS_EVERY", "3")
    get_settings.cache_clear()
    async with SessionLocal() as session:
        report_id = await _report_with_history(session)
        run = await replay.create_run(session, tenant_id="t1", report_id=report_id, actor_id="admin-1")
        assert run.status == "queued"
        events = await _collect(session, "t1", run.id)

    assert [event["type"] for event in events] == [
        "replay.started",
        "replay.progress",
        "replay.progress",
        "replay.completed",
    ]
    progress = [event["data"] for event in events if event["type"] == "replay.progress"]
    assert [(item["currentEvent"], item["progress"]) for item in progress] == [(3, 75), (4, 100)]
    assert progress[-1]["totalEvents"] == 4

    result = events[-1]["data"]["result"]
    assert result["final_status"] == "deleted"
    assert [(step["from"], step["to"]) for step in result["status_timeline"]] == [
        (None, "draft"),
        ("draft", "archived"),
    ]
    assert result["event_counts"] == {"archived": 1, "created": 1, "deleted": 1, "updated": 1}
    assert result["actors"] == ["admin-1"]

    async with SessionLocal() as session:
        stored = await replay.get_run(session, tenant_id="t1", run_id=run.id)
        assert stored.status == "success"
        assert stored.processed_events == stored.total_events == 4
        assert stored.result_json["final_status"] == "deleted"


@pytest.mark.asyncio
async def test_replay_run_executes_only_once() -> None:
    async with SessionLocal() as session:
        run = await replay.create_run(session, tenant_id="t1", report_id="missing-report", actor_id=None)
        events = await _collect(session, "t1", run.id)
        # No audit entries: the run still completes with an empty state.
        assert [event["type"] for event in events] == ["replay.started", "replay.completed"]
        assert events[-1]["data"]["result"]["final_status"] is None
        with pytest.raises(ConflictError):
            await _collect(session, "t1", run.id)


@pytest.mark.asyncio
async def test_replay_run_is_tenant_scoped() -> None:
    async with SessionLocal() as session:
        run = await replay.create_run(session, tenant_id="t1", report_id="r1", actor_id=None)
        with pytest.raises(NotFoundError):
            await _collect(session, "t2", run.id)
        assert await replay.get_run(session, tenant_id="t2", run_id=run.id) is None


@pytest.mark.asyncio
async def test_abandoned_run_is_failed_and_cannot_restart() -> None:
    async with SessionLocal() as session:
        report_id = await _report_with_history(session)
        run = await replay.create_run(session, tenant_id="t1", report_id=report_id, actor_id=None)
        events = replay.execute_run(session, tenant_id="t1", run_id=run.id)
        first = await events.__anext__()
        assert first["type"] == "replay.started"
        await events.aclose()

        assert await replay.abandon_run(session, tenant_id="t1", run_id=run.id, error="client_disconnected")
        # Only running runs are abandoned.
        assert not await replay.abandon_run(session, tenant_id="t1", run_id=run.id, error="again")

    async with SessionLocal() as session:
        stored = await replay.get_run(session, tenant_id="t1", run_id=run.id)
        assert stored.status == "failed"
        assert stored.error_message == "client_disconnected"
        assert stored.completed_at is not None
        with pytest.raises(ConflictError):
            await _collect(session, "t1", run.id)
