"""Dashboard counts and the inference health check."""

from uuid import uuid4

import httpx

from vox.db.models import AgentType
from vox.schemas.autopilot import TrackingUpsert
from vox.services import autopilot_manager, inference


async def test_stats_count_only_own_rows(client, auth_headers, user_id, make_agent, db):
    await make_agent(user_id, "a")
    await make_agent(user_id, "b", type=AgentType.QUERY, is_active=False)
    await make_agent(uuid4(), "someone else's")
    await autopilot_manager.upsert_tracking(
        db, user_id, TrackingUpsert(conversation_id="conv-1", location_id="loc-1")
    )
    await client.post("/api/ai/knowledgebase", json={"name": "FAQ"}, headers=auth_headers)

    response = await client.get("/api/dashboard/stats", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {
        "total_agents": 2,
        "active_agents": 1,
        "knowledge_bases": 1,
        "autopilot_conversations": 1,
    }


async def test_stats_empty_account(client, auth_headers):
    response = await client.get("/api/dashboard/stats", headers=auth_headers)

    assert response.json()["data"] == {
        "total_agents": 0,
        "active_agents": 0,
        "knowledge_bases": 0,
        "autopilot_conversations": 0,
    }


async def test_health_reachable(client, auth_headers, monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/health"
        return httpx.Response(200, json={"status": "ok"})

    monkeypatch.setattr(inference, "transport", httpx.MockTransport(handler))

    response = await client.get("/api/ai/health", headers=auth_headers)

    data = response.json()["data"]
    assert data["status"] == "reachable"
    assert data["backend_url"] == "http://inference.test"
    assert data["detail"] == {"status": "ok"}


async def test_health_unreachable(client, auth_headers, monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    monkeypatch.setattr(inference, "transport", httpx.MockTransport(handler))

    response = await client.get("/api/ai/health", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "unreachable"
    assert "connection refused" in data["detail"]
