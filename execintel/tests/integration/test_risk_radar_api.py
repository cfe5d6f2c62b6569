from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from execintel.apps.api.main import create_app
from execintel.tests.utils.auth import create_test_api_key


@pytest.mark.asyncio
async def test_snapshot_create_filter_and_archive() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        ids = {}
        for index in (12, 45, 68, 91):
            response = await client.post(
                "/v1/risk-radar/snapshots",
                json={"overall_risk_index": index, "sentiment_score": 40, "key_concerns": ["regulatory"]},
                headers=headers,
            )
            assert response.status_code == 201
            ids[index] = response.json()["data"]["id"]
            assert response.json()["data"]["computation_method"] == "manual"

        single = await client.get("/v1/risk-radar/snapshots", params={"risk_level": "critical"}, headers=headers)
        assert single.status_code == 200
        assert [item["overall_risk_index"] for item in single.json()["data"]["snapshots"]] == [91.0]

        several = await client.get(
            "/v1/risk-radar/snapshots", params=[("risk_level", "low"), ("risk_level", "high")], headers=headers
        )
        assert several.json()["data"]["total"] == 2

        fetched = await client.get(f"/v1/risk-radar/snapshots/{ids[45]}", headers=headers)
        assert fetched.json()["data"]["risk_level"] == "medium"

        archived = await client.post(f"/v1/risk-radar/snapshots/{ids[45]}/archive", headers=headers)
        assert archived.json()["data"]["is_archived"] is True
        medium = await client.get(
            "/v1/risk-radar/snapshots", params={"risk_level": "medium", "is_archived": "false"}, headers=headers
        )
        assert medium.json()["data"] == {"snapshots": [], "total": 0}

        invalid_level = await client.get("/v1/risk-radar/snapshots", params={"risk_level": "severe"}, headers=headers)
        assert invalid_level.status_code == 422
        invalid_index = await client.post(
            "/v1/risk-radar/snapshots", json={"overall_risk_index": -1}, headers=headers
        )
        assert invalid_index.status_code == 422


@pytest.mark.asyncio
async def test_explicit_risk_level_is_kept() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        response = await client.post(
            "/v1/risk-radar/snapshots",
            json={"overall_risk_index": 20, "risk_level": "high", "computation_method": "analyst"},
            headers=headers,
        )
        other_tenant = await create_test_api_key(tenant_id="t2", role="reader")
        hidden = await client.get(f"/v1/risk-radar/snapshots/{response.json()['data']['id']}", headers=other_tenant[1])
    assert response.json()["data"]["risk_level"] == "high"
    assert hidden.status_code == 404
