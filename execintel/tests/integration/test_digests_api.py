from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from execintel.apps.api.main import create_app
from execintel.tests.utils.auth import create_test_api_key


@pytest.mark.asyncio
async def test_digest_recipients_and_delivery_flow() -> None:
    _raw, admin, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="admin")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        created = await client.post("/v1/digests", json={"title": "Basic Digest"}, headers=admin)
        assert created.status_code == 201
        digest = created.json()["data"]
        assert digest["delivery_period"] == "weekly"
        assert digest["time_window"] == "7d"
        assert digest["next_delivery_at"] is not None
        base = f"/v1/digests/{digest['id']}"

        first = await client.post(f"{base}/recipients", json={"email": " CEO@Example.com "}, headers=admin)
        assert first.status_code == 201
        assert first.json()["data"]["email"] == "ceo@example.com"
        dup = await client.post(f"{base}/recipients", json={"email": "ceo@example.com"}, headers=admin)
        assert dup.status_code == 422
        second = await client.post(f"{base}/recipients", json={"email": "cfo@example.com"}, headers=admin)
        paused = await client.patch(
            f"{base}/recipients/{second.json()['data']['id']}", json={"is_active": False}, headers=admin
        )
        assert paused.json()["data"]["is_active"] is False

        delivered = await client.post(f"{base}/deliver", json={"test_mode": True}, headers=admin)
        assert delivered.status_code == 200
        log = delivered.json()["data"]
        assert log["status"] == "success"
        assert log["recipients_count"] == 1
        assert log["is_test"] is True

        deliveries = await client.get(f"{base}/deliveries", headers=admin)
        assert deliveries.json()["data"]["total"] == 1

        stats = await client.get("/v1/digests/stats", headers=admin)
        assert stats.json()["data"]["total_recipients"] == 2
        assert stats.json()["data"]["active_recipients"] == 1

        rescheduled = await client.patch(base, json={"delivery_period": "daily", "schedule_hour": 6}, headers=admin)
        assert rescheduled.json()["data"]["delivery_period"] == "daily"

        archived = await client.delete(base, headers=admin)
        assert archived.status_code == 204
        listed = await client.get("/v1/digests", headers=admin)
        assert listed.json()["data"]["total"] == 0
        with_archived = await client.get("/v1/digests", params={"include_archived": "true"}, headers=admin)
        assert with_archived.json()["data"]["items"][0]["is_archived"] is True


@pytest.mark.asyncio
async def test_digest_validation_and_delivery_role() -> None:
    _raw, editor, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        bad_hour = await client.post("/v1/digests", json={"title": "Late", "schedule_hour": 25}, headers=editor)
        assert bad_hour.status_code == 422
        created = await client.post("/v1/digests", json={"title": "Board Digest"}, headers=editor)
        digest_id = created.json()["data"]["id"]
        forbidden = await client.post(f"/v1/digests/{digest_id}/deliver", json={}, headers=editor)
        assert forbidden.status_code == 403
        missing = await client.get("/v1/digests/not-a-digest", headers=editor)
        assert missing.status_code == 404


@pytest.mark.asyncio
async def test_digests_are_tenant_scoped() -> None:
    _raw, t1, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="admin")
    _raw2, t2, _user_id2, _key_id2 = await create_test_api_key(tenant_id="t2", role="admin")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        created = await client.post("/v1/digests", json={"title": "Private Digest"}, headers=t1)
        digest_id = created.json()["data"]["id"]
        other_get = await client.get(f"/v1/digests/{digest_id}", headers=t2)
        other_deliver = await client.post(f"/v1/digests/{digest_id}/deliver", json={}, headers=t2)
        other_recipient = await client.post(
            f"/v1/digests/{digest_id}/recipients", json={"email": "spy@example.com"}, headers=t2
        )
        other_stats = await client.get("/v1/digests/stats", headers=t2)
    assert other_get.status_code == other_deliver.status_code == other_recipient.status_code == 404
    assert other_stats.json()["data"]["total_digests"] == 0
