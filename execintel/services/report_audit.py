from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.mapping import audit_entry_to_dict
from execintel.domain.models import ReportAuditLog
from execintel.persistence.repos import report_audit as audit_repo


_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token_value", "secret", "password"]
_REDACTED_VALUE = "[REDACTED]"


@dataclass(frozen=True)
class Actor:
    """Who performed a report operation (user, system or ai)."""

    actor_type: str = "user"
    actor_id: str | None = None
    email: str | None = None


SYSTEM_ACTOR = Actor(actor_type="system", actor_id="system")


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub credential-like fields while preserving structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            sanitized[key] = _REDACTED_VALUE if _is_sensitive_key(key) else sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def append_entry(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    event_type: str,
    actor: Actor,
    description: str | None = None,
    section_id: str | None = None,
    previous_status: str | None = None,
    new_status: str | None = None,
    changes: dict[str, Any] | None = None,
    llm_model: str | None = None,
    tokens_used: int | None = None,
    duration_ms: int | None = None,
) -> ReportAuditLog:
    """Stage one audit entry in the caller's transaction.

    The entry commits or rolls back together with the state change it records,
    so every committed change carries exactly one entry.
    """
    entry = ReportAuditLog(
        tenant_id=tenant_id,
        report_id=report_id,
        section_id=section_id,
        event_type=event_type,
        description=description,
        previous_status=previous_status,
        new_status=new_status,
        changes=sanitize_metadata(changes or {}),
        actor_type=actor.actor_type,
        actor_id=actor.actor_id,
        actor_email=actor.email,
        llm_model=llm_model,
        tokens_used=tokens_used,
        duration_ms=duration_ms,
    )
    session.add(entry)
    return entry


async def list_entries(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    event_type: str | None = None,
    actor_id: str | None = None,
    created_from=None,
    created_to=None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    entries, total = await audit_repo.list_entries(
        session,
        tenant_id=tenant_id,
        report_id=report_id,
        event_type=event_type,
        actor_id=actor_id,
        created_from=created_from,
        created_to=created_to,
        limit=limit,
        offset=offset,
    )
    return {
        "items": [audit_entry_to_dict(entry) for entry in entries],
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(entries) < total,
    }
