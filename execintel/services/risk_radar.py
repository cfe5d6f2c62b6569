from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.core.errors import ValidationError
from execintel.domain.mapping import snapshot_to_dict
from execintel.domain.models import RiskRadarSnapshot
from execintel.persistence.repos import risk_radar as risk_repo


_COMPONENT_FIELDS = (
    "confidence_score",
    "sentiment_score",
    "velocity_score",
    "propagation_score",
    "competitive_score",
    "governance_score",
    "persona_score",
)


def risk_level_for(index: float) -> str:
    if index < 25:
        return "low"
    if index < 50:
        return "medium"
    if index < 75:
        return "high"
    return "critical"


async def create_snapshot(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor_id: str | None,
    data: dict[str, Any],
) -> RiskRadarSnapshot:
    index = data.get("overall_risk_index")
    if index is None or not 0 <= float(index) <= 100:
        raise ValidationError("overall_risk_index", "overall_risk_index must be between 0 and 100")
    snapshot = RiskRadarSnapshot(
        id=str(uuid4()),
        tenant_id=tenant_id,
        snapshot_date=data.get("snapshot_date") or datetime.now(timezone.utc),
        title=data.get("title"),
        description=data.get("description"),
        overall_risk_index=float(index),
        # Derive the level from the index unless the caller classified it.
        risk_level=data.get("risk_level") or risk_level_for(float(index)),
        key_concerns=list(data.get("key_concerns") or []),
        emerging_risks=list(data.get("emerging_risks") or []),
        positive_factors=list(data.get("positive_factors") or []),
        is_active=True,
        is_archived=False,
        computation_method=data.get("computation_method") or "manual",
        created_by=actor_id,
        **{key: data.get(key) for key in _COMPONENT_FIELDS},
    )
    session.add(snapshot)
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return snapshot


async def get_snapshot(
    session: AsyncSession, *, tenant_id: str, snapshot_id: str
) -> RiskRadarSnapshot | None:
    return await risk_repo.get_snapshot(session, tenant_id=tenant_id, snapshot_id=snapshot_id)


async def list_snapshots(
    session: AsyncSession,
    *,
    tenant_id: str,
    risk_level: str | Sequence[str] | None = None,
    is_active: bool | None = None,
    is_archived: bool | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    min_risk_index: float | None = None,
    max_risk_index: float | None = None,
    sort_by: str = "snapshot_date",
    sort_order: str = "desc",
    limit: int = 20,
    offset: int = 0,
) -> dict[str, Any]:
    """Return ``{"snapshots": [...], "total": n}``; no match is an empty list, not an error."""
    rows, total = await risk_repo.list_snapshots(
        session,
        tenant_id=tenant_id,
        risk_level=risk_level,
        is_active=is_active,
        is_archived=is_archived,
        start_date=start_date,
        end_date=end_date,
        min_risk_index=min_risk_index,
        max_risk_index=max_risk_index,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    return {"snapshots": [snapshot_to_dict(row) for row in rows], "total": total}


async def archive_snapshot(
    session: AsyncSession, *, tenant_id: str, snapshot_id: str
) -> RiskRadarSnapshot | None:
    snapshot = await risk_repo.get_snapshot(session, tenant_id=tenant_id, snapshot_id=snapshot_id)
    if snapshot is None:
        return None
    snapshot.is_archived = True
    snapshot.is_active = False
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    return snapshot
