from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import AuditReplayRun
from execintel.persistence.guards import owned_by


async def get_run(session: AsyncSession, *, tenant_id: str, run_id: str) -> AuditReplayRun | None:
    result = await session.execute(select(AuditReplayRun).where(owned_by(AuditReplayRun, tenant_id, run_id)))
    return result.scalar_one_or_none()


async def claim_run(session: AsyncSession, *, tenant_id: str, run_id: str, values: dict[str, Any]) -> bool:
    # Only a queued run can be claimed, so two streams never execute the same run.
    result = await session.execute(
        update(AuditReplayRun)
        .where(owned_by(AuditReplayRun, tenant_id, run_id), AuditReplayRun.status == "queued")
        .values(status="running", **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def fail_running_run(session: AsyncSession, *, tenant_id: str, run_id: str, values: dict[str, Any]) -> bool:
    # A finished run keeps its outcome.
    result = await session.execute(
        update(AuditReplayRun)
        .where(owned_by(AuditReplayRun, tenant_id, run_id), AuditReplayRun.status == "running")
        .values(status="failed", **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
