from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from execintel.persistence.repos import upstream as upstream_repo
from execintel.providers.insights.base import InsightResult


class SnapshotInsightProvider:
    """Read the newest upstream summary for one feature area and shape its block.

    ``fields`` maps block keys to defaults; a payload value wins when present.
    Relevance and quality are passed through from the payload and only fall back
    to the per-system default relevance when the upstream did not report one.
    """

    def __init__(
        self,
        *,
        source_system: str,
        block_key: str,
        source_type: str,
        default_relevance: float,
        fields: dict[str, Any],
        primary: bool = False,
    ) -> None:
        self.source_system = source_system
        self.block_key = block_key
        self._source_type = source_type
        self._default_relevance = default_relevance
        self._fields = fields
        self._primary = primary

    async def fetch(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        period_start: date | None,
        period_end: date | None,
    ) -> InsightResult | None:
        captured_before = None
        if period_end is not None:
            captured_before = datetime.combine(period_end, time.max, tzinfo=timezone.utc)
        snapshot = await upstream_repo.latest_snapshot(
            session,
            tenant_id=tenant_id,
            source_system=self.source_system,
            captured_before=captured_before,
        )
        if snapshot is None:
            return None
        payload = dict(snapshot.payload_json or {})
        block = {key: _copy(payload.get(key, default)) for key, default in self._fields.items()}
        relevance = payload.get("relevance_score", self._default_relevance)
        return InsightResult(
            source_system=self.source_system,
            block_key=self.block_key,
            block=block,
            source_id=snapshot.source_id,
            source_type=self._source_type,
            source_title=snapshot.title,
            source_url=payload.get("url"),
            extracted_data=block,
            data_points_count=_count_points(block),
            relevance_score=float(relevance) if relevance is not None else None,
            quality_score=_as_float(payload.get("quality_score")),
            is_primary=self._primary,
        )


def _copy(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    if isinstance(value, dict):
        return dict(value)
    return value


def _as_float(value: Any) -> float | None:
    return float(value) if value is not None else None


def _count_points(block: dict[str, Any]) -> int:
    # Lists count per element; scalars count once when populated.
    total = 0
    for value in block.values():
        if isinstance(value, (list, dict)):
            total += len(value)
        elif value is not None:
            total += 1
    return total
