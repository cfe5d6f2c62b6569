from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from execintel.domain.models import UpstreamSnapshot
from execintel.persistence.db import SessionLocal


async def seed_upstream(tenant_id: str, source_system: str, payload: dict[str, Any], **extra: Any) -> str:
    """Store one upstream summary snapshot as the insight providers would read it."""
    snapshot_id = str(uuid4())
    async with SessionLocal() as session:
        session.add(
            UpstreamSnapshot(
                id=snapshot_id,
                tenant_id=tenant_id,
                source_system=source_system,
                source_id=extra.get("source_id", f"{source_system}-{snapshot_id[:8]}"),
                title=extra.get("title", f"{source_system} summary"),
                payload_json=payload,
                captured_at=extra.get("captured_at", datetime.now(timezone.utc)),
            )
        )
        await session.commit()
    return snapshot_id
