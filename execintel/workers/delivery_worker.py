from __future__ import annotations

import asyncio
import logging

from arq.connections import RedisSettings

from execintel.core.config import get_settings
from execintel.core.errors import NotFoundError
from execintel.core.logging import configure_logging
from execintel.persistence.db import SessionLocal
from execintel.services.delivery import LoggingDispatcher, deliver_digest, get_due_for_delivery

logger = logging.getLogger(__name__)


async def deliver_scheduled_digest(ctx, tenant_id: str, digest_id: str) -> str:
    async with SessionLocal() as session:
        try:
            log = await deliver_digest(
                session,
                tenant_id=tenant_id,
                digest_id=digest_id,
                dispatcher=LoggingDispatcher(),
            )
        except NotFoundError:
            # Deleted between enqueue and pickup.
            return "skipped"
    return log.status


async def enqueue_due_digests(redis, *, limit: int) -> int:
    """Enqueue one job per due digest; the job id pins it to its delivery slot."""
    settings = get_settings()
    async with SessionLocal() as session:
        due = await get_due_for_delivery(session, limit=limit)
    queued = 0
    for digest in due:
        slot = digest.next_delivery_at.isoformat() if digest.next_delivery_at else "now"
        job = await redis.enqueue_job(
            "deliver_scheduled_digest",
            digest.tenant_id,
            digest.id,
            _queue_name=settings.delivery_queue_name,
            _job_id=f"digest:{digest.id}:{slot}",
        )
        if job is not None:
            queued += 1
    return queued


async def _scheduler_loop(redis) -> None:
    settings = get_settings()
    interval_s = max(1, int(settings.delivery_poll_interval_s))
    batch = max(1, int(settings.delivery_batch_size))
    while True:
        try:
            queued = await enqueue_due_digests(redis, limit=batch)
            if queued:
                logger.info("digest_scheduler_enqueued count=%s", queued)
        except Exception:  # noqa: BLE001 - keep the scheduler alive; failures surface in worker logs
            logger.exception("digest due-job scheduler failed")
        await asyncio.sleep(interval_s)


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("delivery_worker_started queue=%s", get_settings().delivery_queue_name)
    ctx["scheduler_task"] = asyncio.create_task(_scheduler_loop(ctx["redis"]))


async def _shutdown(ctx) -> None:
    task = ctx.get("scheduler_task")
    if task:
        task.cancel()


class WorkerSettings:
    # ARQ reads these as class attributes.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.delivery_queue_name
    max_tries = max(1, int(settings.delivery_max_attempts))
    functions = [deliver_scheduled_digest]
    on_startup = _startup
    on_shutdown = _shutdown
