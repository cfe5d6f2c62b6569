from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from execintel.domain.models import ApiKey, User
from execintel.persistence.db import SessionLocal
from execintel.services.auth.api_keys import issue_api_key, normalize_role


async def create_test_api_key(
    *,
    tenant_id: str,
    role: str,
    name: str = "test-key",
    email: str | None = None,
    user_active: bool = True,
    key_revoked: bool = False,
    key_expires_at: datetime | None = None,
) -> tuple[str, dict[str, str], str, str]:
    """Provision a user and API key; returns ``(raw_key, headers, user_id, key_id)``."""
    user_id = uuid4().hex
    issued = issue_api_key()
    async with SessionLocal() as session:
        session.add(
            User(
                id=user_id,
                tenant_id=tenant_id,
                email=email,
                role=normalize_role(role),
                is_active=user_active,
            )
        )
        await session.flush()
        session.add(
            ApiKey(
                id=issued.key_id,
                user_id=user_id,
                tenant_id=tenant_id,
                key_prefix=issued.display_prefix,
                key_hash=issued.key_hash,
                name=name,
                expires_at=key_expires_at,
                revoked_at=datetime.now(timezone.utc) if key_revoked else None,
            )
        )
        await session.commit()
    return issued.raw_key, {"Authorization": f"Bearer {issued.raw_key}"}, user_id, issued.key_id
