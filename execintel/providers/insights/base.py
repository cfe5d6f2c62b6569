from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class InsightResult:
    """One upstream system's contribution to an aggregation run."""

    source_system: str
    block_key: str
    block: dict[str, Any]
    source_id: str
    source_type: str
    source_title: str | None = None
    source_url: str | None = None
    extracted_data: dict[str, Any] = field(default_factory=dict)
    data_points_count: int = 0
    relevance_score: float | None = None
    quality_score: float | None = None
    is_primary: bool = False


class InsightProvider(Protocol):
    source_system: str
    block_key: str

    async def fetch(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        period_start: date | None,
        period_end: date | None,
    ) -> InsightResult | None:
        ...
