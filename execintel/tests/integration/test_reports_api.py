from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from execintel.apps.api.deps import get_llm
from execintel.apps.api.main import create_app
from execintel.providers.llm.fake import FakeLLMProvider
from execintel.tests.utils.auth import create_test_api_key
from execintel.tests.utils.fixtures import seed_upstream


def _app():
    app = create_app()
    app.dependency_overrides[get_llm] = lambda: FakeLLMProvider()
    return app


async def _create_report(client: AsyncClient, headers: dict[str, str], **body) -> dict:
    response = await client.post(
        "/v1/reports",
        json={"title": "Q3 Strategic Review", "section_types": ["executive_summary", "strategic_outlook"], **body},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_report_crud_round_trip() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        created = await _create_report(client, headers, fiscal_quarter="Q3", fiscal_year=2026)
        assert created["status"] == "draft"
        assert created["version"] == 1

        fetched = await client.get(f"/v1/reports/{created['id']}", headers=headers)
        assert fetched.status_code == 200
        body = fetched.json()
        assert body["meta"]["request_id"]
        assert body["data"]["sections"] == []
        assert body["data"]["section_count"] == 0

        patched = await client.patch(
            f"/v1/reports/{created['id']}",
            json={"title": "Q3 Board Review", "expected_version": 1},
            headers=headers,
        )
        assert patched.status_code == 200
        assert patched.json()["data"]["title"] == "Q3 Board Review"
        assert patched.json()["data"]["version"] == 2

        stale = await client.patch(
            f"/v1/reports/{created['id']}",
            json={"tone": "formal", "expected_version": 1},
            headers=headers,
        )
        assert stale.status_code == 409
        assert stale.json()["error"]["code"] == "CONFLICT"

        listed = await client.get("/v1/reports", params={"status": "draft", "search": "Board"}, headers=headers)
        assert listed.status_code == 200
        page = listed.json()["data"]
        assert page["total"] == 1
        assert page["items"][0]["id"] == created["id"]
        assert page["has_more"] is False


@pytest.mark.asyncio
async def test_report_lifecycle_over_http() -> None:
    await seed_upstream("t1", "competitive_intel", {"position_index": 64, "market_trends": ["AI adoption"]})
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        report = await _create_report(client, headers)
        report_id = report["id"]

        generated = await client.post(f"/v1/reports/{report_id}/generate", json={}, headers=headers)
        assert generated.status_code == 200, generated.text
        data = generated.json()["data"]
        assert data["report"]["status"] == "review"
        assert data["failed_sections"] == []
        assert len(data["sections"]) == 2
        assert data["sections"][0]["content_html"].startswith("<h2>")
        assert data["report"]["competitive_position_score"] == 64.0
        assert data["tokens_used"] > 0

        detail = (await client.get(f"/v1/reports/{report_id}", headers=headers)).json()["data"]
        assert [source["source_system"] for source in detail["sources"]] == ["competitive_intel"]

        approved = await client.post(f"/v1/reports/{report_id}/approve", headers=headers)
        assert approved.json()["data"]["status"] == "approved"

        published = await client.post(
            f"/v1/reports/{report_id}/publish", json={"generate_pdf": True}, headers=headers
        )
        assert published.status_code == 200
        assert published.json()["data"]["status"] == "published"
        assert published.json()["data"]["pdf_storage_path"] == f"reports/{report_id}/report.pdf"
        assert published.json()["data"]["delivery_status"] is None

        first = await client.post(f"/v1/reports/{report_id}/archive", headers=headers)
        second = await client.post(f"/v1/reports/{report_id}/archive", headers=headers)
        assert first.json()["data"]["status"] == second.json()["data"]["status"] == "archived"
        assert first.json()["data"]["version"] == second.json()["data"]["version"]

        audit = await client.get(f"/v1/reports/{report_id}/audit-logs", headers=headers)
        events = [item["event_type"] for item in audit.json()["data"]["items"]]
        assert events == ["created", "generated", "approved", "published", "archived"]


@pytest.mark.asyncio
async def test_invalid_transition_is_409_with_states() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        report = await _create_report(client, headers)
        response = await client.post(f"/v1/reports/{report['id']}/publish", json={}, headers=headers)
    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "INVALID_TRANSITION"
    assert error["details"] == {"current": "draft", "target": "published"}


@pytest.mark.asyncio
async def test_validation_errors_use_the_envelope() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        inverted = await client.post(
            "/v1/reports",
            json={"title": "Bad period", "period_start": "2026-09-30", "period_end": "2026-07-01"},
            headers=headers,
        )
        unknown_field = await client.post("/v1/reports", json={"title": "x", "colour": "red"}, headers=headers)
        tenant_in_body = await client.post("/v1/reports", json={"title": "x", "tenant_id": "t2"}, headers=headers)
    assert inverted.status_code == 422
    assert inverted.json()["error"]["details"] == {"field": "period_end"}
    assert unknown_field.status_code == 422
    assert unknown_field.json()["error"]["code"] == "VALIDATION_ERROR"
    assert tenant_in_body.status_code == 400
    assert tenant_in_body.json()["error"]["code"] == "TENANT_ID_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_reports_are_isolated_between_tenants() -> None:
    _raw, headers_t1, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    _raw2, headers_t2, _user_id2, _key_id2 = await create_test_api_key(tenant_id="t2", role="admin")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        report = await _create_report(client, headers_t1)
        read = await client.get(f"/v1/reports/{report['id']}", headers=headers_t2)
        archive = await client.post(f"/v1/reports/{report['id']}/archive", headers=headers_t2)
        delete = await client.delete(f"/v1/reports/{report['id']}", params={"hard": "true"}, headers=headers_t2)
        listed = await client.get("/v1/reports", headers=headers_t2)
        still_there = await client.get(f"/v1/reports/{report['id']}", headers=headers_t1)
    assert read.status_code == archive.status_code == delete.status_code == 404
    assert read.json()["error"]["code"] == "NOT_FOUND"
    assert listed.json()["data"]["total"] == 0
    assert still_there.json()["data"]["status"] == "draft"


@pytest.mark.asyncio
async def test_hard_delete_requires_admin_and_keeps_audit() -> None:
    _raw, editor, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    _raw2, admin, _user_id2, _key_id2 = await create_test_api_key(tenant_id="t1", role="admin")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        report = await _create_report(client, editor)
        forbidden = await client.delete(f"/v1/reports/{report['id']}", params={"hard": "true"}, headers=editor)
        assert forbidden.status_code == 403
        deleted = await client.delete(f"/v1/reports/{report['id']}", params={"hard": "true"}, headers=admin)
        assert deleted.status_code == 204
        gone = await client.get(f"/v1/reports/{report['id']}", headers=admin)
        assert gone.status_code == 404
        audit = await client.get(f"/v1/reports/{report['id']}/audit-logs", headers=admin)
    events = [item["event_type"] for item in audit.json()["data"]["items"]]
    assert events == ["created", "deleted"]


@pytest.mark.asyncio
async def test_soft_delete_archives_the_report() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        report = await _create_report(client, headers)
        deleted = await client.delete(f"/v1/reports/{report['id']}", headers=headers)
        fetched = await client.get(f"/v1/reports/{report['id']}", headers=headers)
    assert deleted.status_code == 204
    assert fetched.json()["data"]["status"] == "archived"


@pytest.mark.asyncio
async def test_export_stats_and_compare() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        report = await _create_report(client, headers)
        exported = await client.post(f"/v1/reports/{report['id']}/export", json={"format": "html"}, headers=headers)
        stats = await client.get("/v1/reports/stats", headers=headers)
        compare = await client.get(f"/v1/reports/{report['id']}/compare", headers=headers)
    assert exported.status_code == 200
    assert exported.json()["data"]["url"].endswith(f"/exports/{report['id']}/report.html")
    assert exported.json()["data"]["format"] == "html"
    assert stats.json()["data"]["total_reports"] == 1
    assert stats.json()["data"]["by_status"] == {"draft": 1}
    comparison = compare.json()["data"]
    assert comparison["previous"] is None
    assert comparison["changes"]["overall_strategic_score"]["trend"] == "stable"


@pytest.mark.asyncio
async def test_board_report_recipients_over_http() -> None:
    _raw, editor, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    _raw2, reader, _user_id2, _key_id2 = await create_test_api_key(tenant_id="t1", role="reader")
    _raw3, outsider, _user_id3, _key_id3 = await create_test_api_key(tenant_id="t2", role="admin")
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as client:
        report = await _create_report(client, editor, format="board_strategy_brief", audience="board")
        base = f"/v1/reports/{report['id']}/recipients"

        added = await client.post(base, json={"email": "EXEC@COMPANY.COM", "role": "Chair"}, headers=editor)
        assert added.status_code == 201
        recipient = added.json()["data"]
        assert recipient["email"] == "exec@company.com"
        assert recipient["report_id"] == report["id"]
        assert recipient["include_pdf"] is True
        assert recipient["include_inline_summary"] is True

        dup = await client.post(base, json={"email": "exec@company.com"}, headers=editor)
        assert dup.status_code == 422
        assert dup.json()["error"]["details"] == {"field": "email"}
        denied = await client.post(base, json={"email": "cfo@company.com"}, headers=reader)
        assert denied.status_code == 403

        patched = await client.patch(
            f"{base}/{recipient['id']}", json={"include_pdf": False}, headers=editor
        )
        assert patched.json()["data"]["include_pdf"] is False
        listed = await client.get(base, headers=reader)
        assert [item["email"] for item in listed.json()["data"]] == ["exec@company.com"]
        hidden = await client.get(base, headers=outsider)
        assert hidden.status_code == 404

        removed = await client.delete(f"{base}/{recipient['id']}", headers=editor)
        assert removed.status_code == 204
        missing = await client.delete(f"{base}/{recipient['id']}", headers=editor)
        assert missing.status_code == 404
