from __future__ import annotations

import pytest

from execintel.core.errors import ValidationError
from execintel.persistence.db import SessionLocal
from execintel.services import risk_radar
from execintel.services.risk_radar import risk_level_for


@pytest.mark.parametrize(
    "index, level",
    [(0, "low"), (24.9, "low"), (25, "medium"), (49.99, "medium"), (50, "high"), (74, "high"), (75, "critical"), (100, "critical")],
)
def test_risk_level_bands(index: float, level: str) -> None:
    assert risk_level_for(index) == level


async def _seed(session, tenant_id: str, *indexes: float) -> None:
    for index in indexes:
        await risk_radar.create_snapshot(
            session, tenant_id=tenant_id, actor_id="analyst", data={"overall_risk_index": index}
        )


@pytest.mark.asyncio
async def test_single_level_filter_matches_exactly() -> None:
    async with SessionLocal() as session:
        await _seed(session, "t1", 10, 40, 60, 90)
        page = await risk_radar.list_snapshots(session, tenant_id="t1", risk_level="high")
    assert page["total"] == 1
    assert [item["risk_level"] for item in page["snapshots"]] == ["high"]


@pytest.mark.asyncio
async def test_level_list_filter_and_empty_result() -> None:
    async with SessionLocal() as session:
        await _seed(session, "t1", 10, 40, 90)
        both = await risk_radar.list_snapshots(session, tenant_id="t1", risk_level=["low", "critical"])
        none = await risk_radar.list_snapshots(session, tenant_id="t1", risk_level="high")
        other = await risk_radar.list_snapshots(session, tenant_id="t2")
    assert sorted(item["risk_level"] for item in both["snapshots"]) == ["critical", "low"]
    assert none == {"snapshots": [], "total": 0}
    assert other == {"snapshots": [], "total": 0}


@pytest.mark.asyncio
async def test_index_range_and_sorting() -> None:
    async with SessionLocal() as session:
        await _seed(session, "t1", 10, 40, 60, 90)
        page = await risk_radar.list_snapshots(
            session,
            tenant_id="t1",
            min_risk_index=30,
            max_risk_index=80,
            sort_by="overall_risk_index",
            sort_order="asc",
        )
    assert [item["overall_risk_index"] for item in page["snapshots"]] == [40.0, 60.0]


@pytest.mark.asyncio
async def test_archived_snapshot_is_inactive() -> None:
    async with SessionLocal() as session:
        snapshot = await risk_radar.create_snapshot(
            session, tenant_id="t1", actor_id=None, data={"overall_risk_index": 55}
        )
        archived = await risk_radar.archive_snapshot(session, tenant_id="t1", snapshot_id=snapshot.id)
        active = await risk_radar.list_snapshots(session, tenant_id="t1", is_archived=False)
    assert archived.is_archived and not archived.is_active
    assert active["total"] == 0


@pytest.mark.asyncio
async def test_index_outside_range_is_rejected() -> None:
    async with SessionLocal() as session:
        with pytest.raises(ValidationError):
            await risk_radar.create_snapshot(session, tenant_id="t1", actor_id=None, data={"overall_risk_index": 101})
