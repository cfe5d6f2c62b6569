from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncGenerator
import asyncio
import logging
import time

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.core.config import get_settings
from execintel.domain.mapping import as_utc
from execintel.domain.models import ApiKey, User
from execintel.persistence.db import SessionLocal, get_session
from execintel.providers.llm.base import LLMProvider
from execintel.providers.llm.factory import get_llm_provider
from execintel.services.auth.api_keys import hash_api_key, key_id_from_token, normalize_role, role_allows
from execintel.services.report_audit import Actor


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_session() as session:
        yield session


def get_llm() -> LLMProvider:
    # Overridable in tests via app.dependency_overrides.
    return get_llm_provider()


class Principal(BaseModel):
    subject_id: str
    tenant_id: str
    role: str
    api_key_id: str
    email: str | None = None
    auth_method: str = "api_key"


def actor_from_principal(principal: Principal) -> Actor:
    return Actor(actor_type="user", actor_id=principal.subject_id, email=principal.email)


_auth_cache: dict[str, tuple[float, Principal]] = {}
_auth_cache_lock = asyncio.Lock()


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


async def _get_cached_principal(key_hash: str, ttl_s: int) -> Principal | None:
    # Short TTL keeps revocations responsive while sparing the DB on bursts.
    if ttl_s <= 0:
        return None
    async with _auth_cache_lock:
        entry = _auth_cache.get(key_hash)
        if not entry:
            return None
        expires_at, principal = entry
        if expires_at <= time.time():
            _auth_cache.pop(key_hash, None)
            return None
        return principal


async def _set_cached_principal(key_hash: str, principal: Principal, ttl_s: int) -> None:
    if ttl_s <= 0:
        return
    async with _auth_cache_lock:
        _auth_cache[key_hash] = (time.time() + ttl_s, principal)


def clear_auth_cache() -> None:
    _auth_cache.clear()


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def _principal_from_dev_headers(request: Request) -> Principal:
    # Local development only: tenant and role come from plain headers.
    tenant_id = request.headers.get("X-Tenant-Id")
    if not tenant_id:
        raise _auth_error("X-Tenant-Id header is required in dev bypass mode")
    try:
        role = normalize_role(request.headers.get("X-Role", "admin"))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": str(exc)},
        ) from exc
    return Principal(
        subject_id=request.headers.get("X-User-Id", f"dev-{tenant_id}"),
        tenant_id=tenant_id,
        role=role,
        api_key_id="dev-bypass",
        email=request.headers.get("X-User-Email"),
        auth_method="dev_bypass",
    )


async def reject_tenant_id_in_body(request: Request) -> None:
    # Tenancy is bound to the credential, never to the payload.
    content_type = (request.headers.get("content-type") or "").lower()
    if not content_type.startswith("application/json"):
        return
    try:
        payload = await request.json()
    except ValueError:
        return
    if isinstance(payload, dict) and "tenant_id" in payload:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "TENANT_ID_NOT_ALLOWED",
                "message": "tenant_id must be derived from the API key",
            },
        )


async def _touch_last_used(api_key_id: str) -> None:
    # Separate session so the request transaction is never affected.
    async with SessionLocal() as session:
        try:
            await session.execute(
                update(ApiKey).where(ApiKey.id == api_key_id).values(last_used_at=func.now())
            )
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.debug("api_key_touch_failed key_id=%s", api_key_id, exc_info=exc)


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    settings = get_settings()
    bearer_token = _parse_bearer_token(request.headers.get(settings.auth_api_key_header))

    if not settings.auth_enabled or not bearer_token:
        if settings.auth_dev_bypass:
            return _principal_from_dev_headers(request)
        if not settings.auth_enabled:
            raise _auth_error("Authentication disabled; set AUTH_DEV_BYPASS=true for dev access")
        raise _auth_error("Missing API key")

    key_id = key_id_from_token(bearer_token)
    if key_id is None:
        logger.info("auth_failure reason=malformed_key path=%s", request.url.path)
        raise _auth_error("Malformed API key")
    key_hash = hash_api_key(bearer_token)
    cached = await _get_cached_principal(key_hash, settings.auth_cache_ttl_s)
    if cached:
        return cached

    try:
        result = await db.execute(
            select(ApiKey, User)
            .join(User, ApiKey.user_id == User.id)
            .where(ApiKey.id == key_id, ApiKey.key_hash == key_hash)
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
        ) from exc

    row = result.first()
    if row is None:
        logger.info("auth_failure reason=unknown_key path=%s", request.url.path)
        raise _auth_error("Invalid API key")
    api_key, user = row
    if api_key.revoked_at is not None or not user.is_active:
        logger.info("auth_failure reason=revoked key_id=%s", api_key.id)
        raise _auth_error("API key is revoked or inactive")
    if api_key.expires_at is not None and as_utc(api_key.expires_at) <= datetime.now(timezone.utc):
        logger.info("auth_failure reason=expired key_id=%s", api_key.id)
        raise _auth_error("API key expired")
    if api_key.tenant_id != user.tenant_id:
        raise _forbidden_error("Tenant mismatch for API key")
    try:
        role = normalize_role(user.role)
    except ValueError as exc:
        raise _forbidden_error(str(exc)) from exc

    principal = Principal(
        subject_id=user.id,
        tenant_id=user.tenant_id,
        role=role,
        api_key_id=api_key.id,
        email=user.email,
    )
    await _set_cached_principal(key_hash, principal, settings.auth_cache_ttl_s)
    asyncio.create_task(_touch_last_used(api_key.id))
    return principal


def ensure_role(principal: Principal, minimum_role: str, *, path: str = "") -> None:
    if not role_allows(role=principal.role, minimum_role=minimum_role):
        logger.info(
            "rbac_forbidden tenant_id=%s subject_id=%s required=%s path=%s",
            principal.tenant_id,
            principal.subject_id,
            minimum_role,
            path,
        )
        raise _forbidden_error("Insufficient role for this operation")


def require_role(minimum_role: str):
    """Dependency factory enforcing a minimum RBAC role on a route."""

    async def _dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        ensure_role(principal, minimum_role, path=request.url.path)
        return principal

    return _dependency
