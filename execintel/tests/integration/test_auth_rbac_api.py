from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from execintel.apps.api.main import create_app
from execintel.core.config import get_settings
from execintel.tests.utils.auth import create_test_api_key


@pytest.mark.asyncio
async def test_health_is_public_and_carries_request_id() -> None:
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        response = await client.get("/v1/health", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "ok"}
    assert response.json()["meta"]["request_id"] == "req-123"
    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_missing_and_unknown_keys_are_rejected() -> None:
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        missing = await client.get("/v1/reports")
        malformed = await client.get("/v1/reports", headers={"Authorization": "Token abc"})
        unknown = await client.get("/v1/reports", headers={"Authorization": "Bearer eik_nope_nope"})
    for response in (missing, malformed, unknown):
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert missing.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_revoked_expired_and_inactive_keys_are_rejected() -> None:
    _r1, revoked, _u1, _k1 = await create_test_api_key(tenant_id="t1", role="admin", key_revoked=True)
    _r2, expired, _u2, _k2 = await create_test_api_key(
        tenant_id="t1",
        role="admin",
        key_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
    )
    _r3, inactive, _u3, _k3 = await create_test_api_key(tenant_id="t1", role="admin", user_active=False)
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        responses = [await client.get("/v1/reports", headers=headers) for headers in (revoked, expired, inactive)]
    assert [response.status_code for response in responses] == [401, 401, 401]


@pytest.mark.asyncio
async def test_reader_can_read_but_not_write() -> None:
    _raw, reader, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="reader")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        listed = await client.get("/v1/reports", headers=reader)
        created = await client.post("/v1/reports", json={"title": "Nope"}, headers=reader)
        digest = await client.post("/v1/digests", json={"title": "Nope"}, headers=reader)
    assert listed.status_code == 200
    assert created.status_code == 403
    assert created.json()["error"]["code"] == "AUTH_FORBIDDEN"
    assert digest.status_code == 403


@pytest.mark.asyncio
async def test_dev_bypass_uses_tenant_headers(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_DEV_BYPASS", "true")
    get_settings.cache_clear()
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        created = await client.post(
            "/v1/reports",
            json={"title": "Dev Report"},
            headers={"X-Tenant-Id": "dev-tenant", "X-Role": "editor", "X-User-Id": "dev-user"},
        )
        no_tenant = await client.get("/v1/reports")
    assert created.status_code == 201
    assert created.json()["data"]["tenant_id"] == "dev-tenant"
    assert created.json()["data"]["created_by"] == "dev-user"
    assert no_tenant.status_code == 401
