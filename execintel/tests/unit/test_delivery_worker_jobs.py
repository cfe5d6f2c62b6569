from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from execintel.persistence.db import SessionLocal
from execintel.services import delivery
from execintel.workers import delivery_worker
from execintel.workers.delivery_worker import deliver_scheduled_digest, enqueue_due_digests


class _RecordingRedis:
    def __init__(self) -> None:
        self.jobs: list[tuple[str, tuple, dict]] = []

    async def enqueue_job(self, name, *args, **kwargs):
        # Mirror arq: a duplicate job id is not enqueued twice.
        if any(job[2]["_job_id"] == kwargs["_job_id"] for job in self.jobs):
            return None
        self.jobs.append((name, args, kwargs))
        return object()


async def _due_digest(tenant_id: str = "t1") -> str:
    async with SessionLocal() as session:
        digest = await delivery.create_digest(
            session, tenant_id=tenant_id, actor_id=None, data={"title": "Weekly Pulse"}
        )
        await delivery.add_recipient(session, tenant_id=tenant_id, digest_id=digest.id, email="ceo@example.com")
        digest.next_delivery_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        await session.commit()
        return digest.id


@pytest.mark.asyncio
async def test_due_digests_are_enqueued_once_per_slot() -> None:
    digest_id = await _due_digest()
    redis = _RecordingRedis()
    assert await enqueue_due_digests(redis, limit=10) == 1
    assert await enqueue_due_digests(redis, limit=10) == 0
    name, args, kwargs = redis.jobs[0]
    assert name == "deliver_scheduled_digest"
    assert args == ("t1", digest_id)
    assert kwargs["_job_id"].startswith(f"digest:{digest_id}:")


@pytest.mark.asyncio
async def test_worker_job_delivers_and_skips_missing_digests() -> None:
    digest_id = await _due_digest()
    assert await deliver_scheduled_digest({}, "t1", digest_id) == "success"
    assert await deliver_scheduled_digest({}, "t1", "deleted-digest") == "skipped"
    async with SessionLocal() as session:
        logs, total = await delivery.list_delivery_logs(session, tenant_id="t1", digest_id=digest_id)
    assert total == 1
    assert logs[0].status == "success"


@pytest.mark.asyncio
async def test_worker_startup_configures_logging_and_starts_the_scheduler(monkeypatch) -> None:
    calls: list[str] = []

    async def _idle_loop(redis) -> None:
        calls.append("scheduler")

    monkeypatch.setattr(delivery_worker, "configure_logging", lambda: calls.append("logging"))
    monkeypatch.setattr(delivery_worker, "_scheduler_loop", _idle_loop)
    ctx = {"redis": _RecordingRedis()}
    await delivery_worker._startup(ctx)
    await ctx["scheduler_task"]
    await delivery_worker._shutdown(ctx)
    assert calls == ["logging", "scheduler"]
