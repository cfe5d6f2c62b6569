from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient

from execintel.apps.api.main import create_app
from execintel.tests.utils.auth import create_test_api_key


async def _read_stream(client: AsyncClient, path: str, headers: dict[str, str]) -> list[dict]:
    payloads: list[dict] = []
    async with client.stream("GET", path, headers=headers) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        current_event = None
        async for line in response.aiter_lines():
            if line.startswith("event:"):
                current_event = line.split(":", 1)[1].strip()
            elif line.startswith("data:"):
                assert current_event == "message"
                payloads.append(json.loads(line.removeprefix("data: ").strip()))
    return payloads


@pytest.mark.asyncio
async def test_replay_stream_emits_progress_and_result() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="editor")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        created = await client.post("/v1/reports", json={"title": "Replay Me"}, headers=headers)
        report_id = created.json()["data"]["id"]
        await client.patch(f"/v1/reports/{report_id}", json={"tone": "formal"}, headers=headers)
        await client.post(f"/v1/reports/{report_id}/archive", headers=headers)

        run = await client.post("/v1/audit-replays", json={"report_id": report_id}, headers=headers)
        assert run.status_code == 201
        run_id = run.json()["data"]["id"]
        assert run.json()["data"]["status"] == "queued"

        payloads = await _read_stream(client, f"/v1/audit-replays/{run_id}/stream", headers)
        stored = await client.get(f"/v1/audit-replays/{run_id}", headers=headers)

    types = [payload["type"] for payload in payloads]
    assert types[0] == "connected"
    assert types[1] == "replay.started"
    assert types[-1] == "replay.completed"
    assert "replay.progress" in types
    assert len({payload["request_id"] for payload in payloads}) == 1
    last_progress = [payload for payload in payloads if payload["type"] == "replay.progress"][-1]
    assert last_progress["data"]["progress"] == 100
    assert last_progress["data"]["totalEvents"] == 3
    result = payloads[-1]["data"]["result"]
    assert result["final_status"] == "archived"
    assert result["event_counts"] == {"archived": 1, "created": 1, "updated": 1}

    assert stored.json()["data"]["status"] == "success"
    assert stored.json()["data"]["result"]["final_status"] == "archived"


@pytest.mark.asyncio
async def test_replay_stream_for_unknown_or_finished_runs() -> None:
    _raw, headers, _user_id, _key_id = await create_test_api_key(tenant_id="t1", role="reader")
    _raw2, other, _user_id2, _key_id2 = await create_test_api_key(tenant_id="t2", role="reader")
    async with AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test") as client:
        missing = await client.get("/v1/audit-replays/nope/stream", headers=headers)
        assert missing.status_code == 404

        run = await client.post("/v1/audit-replays", json={"report_id": "gone"}, headers=headers)
        run_id = run.json()["data"]["id"]
        foreign = await client.get(f"/v1/audit-replays/{run_id}/stream", headers=other)
        assert foreign.status_code == 404

        first = await _read_stream(client, f"/v1/audit-replays/{run_id}/stream", headers)
        again = await client.get(f"/v1/audit-replays/{run_id}/stream", headers=headers)
        stored = await client.get(f"/v1/audit-replays/{run_id}", headers=headers)
    assert first[-1]["type"] == "replay.completed"
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "CONFLICT"
    assert stored.json()["data"]["status"] == "success"
