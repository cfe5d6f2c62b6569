from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from execintel.apps.api.deps import get_llm
from execintel.apps.api.main import create_app
from execintel.providers.llm.fake import FakeLLMProvider
from execintel.tests.utils.auth import create_test_api_key


async def _generated_report(client: AsyncClient, headers: dict[str, str]) -> tuple[str, list[dict]]:
    created = await client.post(
        "/v1/reports",
        json={
            "title": "CEO Brief",
            "format": "ceo_intelligence_brief",
            "audience": "ceo",
            "section_types": ["executive_summary", "strategic_outlook", "ceo_talking_points"],
        },
        headers=headers,
    )
    report_id = created.json()["data"]["id"]
    generated = await client.post(f"/v1/reports/{report_id}/generate", json={}, headers=headers)
    assert generated.status_code == 200, generated.text
    return report_id, generated.json()["data"]["sections"]


@pytest.mark.asyncio
async def test_section_edit_regenerate_approve_and_reorder() -> None:
    app = create_app()
    app.dependency_overrides[get_llm] = lambda: FakeLLMProvider()
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        report_id, sections = await _generated_report(client, headers)
        base = f"/v1/reports/{report_id}/sections"
        first, second, third = (section["id"] for section in sections)

        edited = await client.patch(
            f"{base}/{first}",
            json={"content_md": "## Summary\n\n- **Revenue** up 4%"},
            headers=headers,
        )
        assert edited.status_code == 200
        body = edited.json()["data"]
        assert body["status"] == "edited"
        assert body["is_edited"] is True
        assert body["edit_count"] == 1
        assert body["key_points"] == ["Revenue up 4%"]
        assert "<strong>Revenue</strong>" in body["content_html"]

        empty = await client.patch(f"{base}/{first}", json={"content_md": "   "}, headers=headers)
        assert empty.status_code == 422

        regenerated = await client.post(f"{base}/{second}/regenerate", json={}, headers=headers)
        assert regenerated.status_code == 200
        assert regenerated.json()["data"]["regeneration_count"] == 1

        approved = await client.post(f"{base}/{first}/approve", headers=headers)
        assert approved.json()["data"]["status"] == "approved"

        partial = await client.post(f"{base}/reorder", json={"ordered_ids": [third, first]}, headers=headers)
        assert partial.status_code == 422
        reordered = await client.post(
            f"{base}/reorder", json={"ordered_ids": [third, first, second]}, headers=headers
        )
        assert reordered.status_code == 200
        listed = await client.get(base, headers=headers)
        assert [section["id"] for section in listed.json()["data"]] == [third, first, second]

        audit = await client.get(
            f"/v1/reports/{report_id}/audit-logs", params={"event_type": "section_edited"}, headers=headers
        )
        assert audit.json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_sections_freeze_once_published() -> None:
    app = create_app()
    app.dependency_overrides[get_llm] = lambda: FakeLLMProvider()
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        report_id, sections = await _generated_report(client, headers)
        await client.post(f"/v1/reports/{report_id}/approve", headers=headers)
        await client.post(f"/v1/reports/{report_id}/publish", json={}, headers=headers)
        response = await client.post(
            f"/v1/reports/{report_id}/sections/{sections[0]['id']}/regenerate", json={}, headers=headers
        )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_manual_sources_and_score_updates() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        created = await client.post("/v1/reports", json={"title": "Investor Update"}, headers=headers)
        report_id = created.json()["data"]["id"]
        base = f"/v1/reports/{report_id}/sources"

        added = await client.post(
            base,
            json={
                "source_system": "investor_relations",
                "source_id": "ir-2026-q3",
                "source_title": "Q3 investor call",
                "extracted_data": {"analyst_coverage": 14, "overall_score": 71},
                "relevance_score": 90,
            },
            headers=headers,
        )
        assert added.status_code == 201
        source = added.json()["data"]
        assert source["data_points_count"] == 2

        duplicate = await client.post(
            base, json={"source_system": "investor_relations", "source_id": "ir-2026-q3"}, headers=headers
        )
        assert duplicate.status_code == 422

        out_of_range = await client.patch(f"{base}/{source['id']}", json={"quality_score": 140}, headers=headers)
        assert out_of_range.status_code == 422
        scored = await client.patch(f"{base}/{source['id']}", json={"quality_score": 82.5}, headers=headers)
        assert scored.json()["data"]["quality_score"] == 82.5
        assert scored.json()["data"]["relevance_score"] == 90.0
        unchanged = await client.patch(f"{base}/{source['id']}", json={"quality_score": 82.5}, headers=headers)
        assert unchanged.status_code == 200
        score_audit = await client.get(
            f"/v1/reports/{report_id}/audit-logs", params={"event_type": "updated"}, headers=headers
        )
        assert score_audit.json()["data"]["total"] == 1
        changes = score_audit.json()["data"]["items"][0]["changes"]
        assert changes["source_id"] == source["id"]
        assert changes["quality_score"] == {"from": None, "to": 82.5}

        filtered = await client.get(base, params={"min_relevance": 95}, headers=headers)
        assert filtered.json()["data"] == []

        removed = await client.delete(f"{base}/{source['id']}", headers=headers)
        assert removed.status_code == 204
        assert (await client.get(base, headers=headers)).json()["data"] == []

        missing_report = await client.get("/v1/reports/does-not-exist/sources", headers=headers)
        assert missing_report.status_code == 404


@pytest.mark.asyncio
async def test_archived_reports_reject_content_changes() -> None:
    app = create_app()
    app.dependency_overrides[get_llm] = lambda: FakeLLMProvider()
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        report_id, sections = await _generated_report(client, headers)
        archived = await client.post(f"/v1/reports/{report_id}/archive", headers=headers)
        assert archived.json()["data"]["status"] == "archived"
        base = f"/v1/reports/{report_id}/sections"
        ids = [section["id"] for section in sections]

        responses = [
            await client.patch(f"{base}/{ids[0]}", json={"content_md": "rewritten"}, headers=headers),
            await client.post(f"{base}/{ids[0]}/approve", headers=headers),
            await client.post(f"{base}/reorder", json={"ordered_ids": list(reversed(ids))}, headers=headers),
            await client.patch(f"/v1/reports/{report_id}", json={"title": "Renamed"}, headers=headers),
        ]
        current = await client.get(f"/v1/reports/{report_id}", headers=headers)

    for response in responses:
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_TRANSITION"
        assert response.json()["error"]["details"] == {"current": "archived", "target": "archived"}
    assert current.json()["data"]["title"] == "CEO Brief"
    assert all(section["content_md"] != "rewritten" for section in current.json()["data"]["sections"])
