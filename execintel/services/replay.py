from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, AsyncIterator
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.core.config import get_settings
from execintel.core.errors import ConflictError, NotFoundError
from execintel.domain.mapping import as_utc
from execintel.domain.models import AuditReplayRun, ReportAuditLog
from execintel.persistence.repos import replay as replay_repo
from execintel.persistence.repos import report_audit as audit_repo


logger = logging.getLogger(__name__)


async def create_run(
    session: AsyncSession, *, tenant_id: str, report_id: str, actor_id: str | None
) -> AuditReplayRun:
    # The report may already be hard-deleted; its audit trail is still replayable.
    run = AuditReplayRun(
        id=str(uuid4()),
        tenant_id=tenant_id,
        report_id=report_id,
        status="queued",
        total_events=0,
        processed_events=0,
        created_by=actor_id,
    )
    session.add(run)
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return run


async def get_run(session: AsyncSession, *, tenant_id: str, run_id: str) -> AuditReplayRun | None:
    return await replay_repo.get_run(session, tenant_id=tenant_id, run_id=run_id)


class ReplayState:
    """Report state rebuilt by folding audit entries in order."""

    def __init__(self) -> None:
        self.status: str | None = None
        self.timeline: list[dict[str, Any]] = []
        self.total_tokens = 0
        self.event_counts: dict[str, int] = {}
        self.actors: set[str] = set()
        self.sections: set[str] = set()
        self.deleted = False
        self.first_event_at: str | None = None
        self.last_event_at: str | None = None

    def apply(self, entry: ReportAuditLog) -> None:
        self.event_counts[entry.event_type] = self.event_counts.get(entry.event_type, 0) + 1
        stamp = as_utc(entry.created_at).isoformat() if entry.created_at else None
        self.first_event_at = self.first_event_at or stamp
        self.last_event_at = stamp
        if entry.actor_id:
            self.actors.add(entry.actor_id)
        if entry.section_id:
            self.sections.add(entry.section_id)
        if entry.tokens_used:
            self.total_tokens += int(entry.tokens_used)
        if entry.event_type == "deleted":
            self.deleted = True
        if entry.new_status and entry.section_id is None and entry.new_status != self.status:
            self.timeline.append(
                {"from": self.status, "to": entry.new_status, "event_type": entry.event_type, "at": stamp}
            )
            self.status = entry.new_status

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_status": "deleted" if self.deleted else self.status,
            "status_timeline": self.timeline,
            "total_tokens": self.total_tokens,
            "event_counts": dict(sorted(self.event_counts.items())),
            "actors": sorted(self.actors),
            "sections_touched": len(self.sections),
            "first_event_at": self.first_event_at,
            "last_event_at": self.last_event_at,
        }


def _event(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": event_type, "data": data}


async def execute_run(
    session: AsyncSession, *, tenant_id: str, run_id: str
) -> AsyncIterator[dict[str, Any]]:
    """Replay a report's audit trail and yield progress events.

    Yields ``replay.started``, then ``replay.progress`` every
    ``replay_progress_every`` entries and on the last one, then either
    ``replay.completed`` with the rebuilt state or ``replay.failed``.
    """
    run = await replay_repo.get_run(session, tenant_id=tenant_id, run_id=run_id)
    if run is None:
        raise NotFoundError("Replay run not found")
    previous_status = run.status
    claimed = await replay_repo.claim_run(
        session,
        tenant_id=tenant_id,
        run_id=run_id,
        values={"started_at": datetime.now(timezone.utc)},
    )
    if not claimed:
        await session.rollback()
        raise ConflictError(f"Replay run is already {previous_status}")
    await session.commit()
    await session.refresh(run)
    yield _event("replay.started", {"runId": run_id})

    every = max(1, get_settings().replay_progress_every)
    try:
        entries, total = await audit_repo.list_entries(
            session, tenant_id=tenant_id, report_id=run.report_id, limit=None
        )
        run.total_events = total
        await session.commit()
        state = ReplayState()
        for index, entry in enumerate(entries, start=1):
            state.apply(entry)
            if index % every == 0 or index == total:
                run.processed_events = index
                await session.commit()
                yield _event(
                    "replay.progress",
                    {
                        "runId": run_id,
                        "progress": round(index / total * 100),
                        "currentEvent": index,
                        "totalEvents": total,
                    },
                )
        result = state.to_dict()
        run.status = "success"
        run.result_json = result
        run.completed_at = datetime.now(timezone.utc)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("audit_replay_failed run_id=%s", run_id)
        await _mark_failed(session, tenant_id=tenant_id, run_id=run_id, error=type(exc).__name__)
        yield _event("replay.failed", {"runId": run_id, "error": "Replay failed while reading audit log"})
        return
    yield _event("replay.completed", {"runId": run_id, "result": result})


async def _mark_failed(session: AsyncSession, *, tenant_id: str, run_id: str, error: str) -> None:
    run = await replay_repo.get_run(session, tenant_id=tenant_id, run_id=run_id)
    if run is None:
        return
    run.status = "failed"
    run.error_message = error
    run.completed_at = datetime.now(timezone.utc)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("audit_replay_mark_failed_error run_id=%s", run_id, exc_info=exc)


async def abandon_run(session: AsyncSession, *, tenant_id: str, run_id: str, error: str) -> bool:
    """Fail a run left in ``running`` by a stream that stopped early."""
    await session.rollback()
    abandoned = await replay_repo.fail_running_run(
        session,
        tenant_id=tenant_id,
        run_id=run_id,
        values={"error_message": error, "completed_at": datetime.now(timezone.utc)},
    )
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("audit_replay_abandon_error run_id=%s", run_id, exc_info=exc)
        return False
    if abandoned:
        logger.info("audit_replay_abandoned run_id=%s reason=%s", run_id, error)
    return abandoned
