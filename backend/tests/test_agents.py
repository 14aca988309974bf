"""Agent and knowledge base CRUD routes."""

from uuid import uuid4

from jose import jwt

from vox.db.models import AgentType, KnowledgeBaseType


async def create_agent(client, headers, **fields):
    response = await client.post("/api/ai/agents", json={"name": "Agent", **fields}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def test_requires_authentication(client):
    response = await client.get("/api/ai/agents")

    assert response.status_code == 401
    assert response.json()["error_kind"] == "authentication"


async def test_rejects_token_with_wrong_audience(client, user_id):
    token = jwt.encode({"sub": str(user_id), "aud": "anon"}, "test-supabase-jwt-secret", algorithm="HS256")
    response = await client.get("/api/ai/agents", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


async def test_create_and_read_agent(client, auth_headers, user_id):
    created = await create_agent(
        client,
        auth_headers,
        name="Support",
        type=AgentType.QUERY,
        system_prompt="Be brief.",
        configuration={"model": "gpt-4o"},
    )

    assert created["user_id"] == str(user_id)
    assert created["is_active"] is True
    assert created["type"] == AgentType.QUERY

    response = await client.get(f"/api/ai/agents/{created['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["system_prompt"] == "Be brief."


async def test_list_filters_and_pagination(client, auth_headers):
    await create_agent(client, auth_headers, name="Alpha")
    await create_agent(client, auth_headers, name="Beta", is_active=False)
    await create_agent(client, auth_headers, name="Gamma helper")

    everything = await client.get("/api/ai/agents", headers=auth_headers)
    assert everything.json()["data"]["total"] == 3

    active = await client.get("/api/ai/agents", params={"active_only": True}, headers=auth_headers)
    assert {a["name"] for a in active.json()["data"]["agents"]} == {"Alpha", "Gamma helper"}

    searched = await client.get("/api/ai/agents", params={"search": "helper"}, headers=auth_headers)
    assert [a["name"] for a in searched.json()["data"]["agents"]] == ["Gamma helper"]

    paged = await client.get("/api/ai/agents", params={"limit": 2, "page": 2}, headers=auth_headers)
    assert len(paged.json()["data"]["agents"]) == 1
    assert paged.json()["data"]["total"] == 3


async def test_limit_over_maximum_is_400(client, auth_headers):
    response = await client.get("/api/ai/agents", params={"limit": 101}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"].startswith("limit")


async def test_one_active_agent_per_type(client, auth_headers):
    first = await create_agent(client, auth_headers, name="First", type=AgentType.AUTOPILOT)
    second = await create_agent(client, auth_headers, name="Second", type=AgentType.AUTOPILOT)

    response = await client.get(
        "/api/ai/agents", params={"type": int(AgentType.AUTOPILOT), "is_active": True}, headers=auth_headers
    )
    assert [a["id"] for a in response.json()["data"]["agents"]] == [second["id"]]

    activated = await client.post(f"/api/ai/agents/{first['id']}/activate", headers=auth_headers)
    assert activated.json()["data"]["is_active"] is True

    second_now = await client.get(f"/api/ai/agents/{second['id']}", headers=auth_headers)
    assert second_now.json()["data"]["is_active"] is False


async def test_generic_agents_can_all_be_active(client, auth_headers):
    await create_agent(client, auth_headers, name="One")
    await create_agent(client, auth_headers, name="Two")

    response = await client.get("/api/ai/agents", params={"active_only": True}, headers=auth_headers)

    assert response.json()["data"]["total"] == 2


async def test_update_agent(client, auth_headers):
    agent = await create_agent(client, auth_headers, configuration={"model": "gpt-4o"})

    response = await client.patch(
        f"/api/ai/agents/{agent['id']}",
        json={"name": "Renamed", "configuration": None},
        headers=auth_headers,
    )

    data = response.json()["data"]
    assert data["name"] == "Renamed"
    assert data["configuration"] == {"model": "gpt-4o"}


async def test_other_users_agent_is_not_found(client, auth_headers, auth_for):
    agent = await create_agent(client, auth_headers)
    intruder = auth_for(uuid4())

    for method in ("get", "patch", "delete"):
        kwargs = {"json": {"name": "x"}} if method == "patch" else {}
        response = await getattr(client, method)(f"/api/ai/agents/{agent['id']}", headers=intruder, **kwargs)
        assert response.status_code == 404
        assert response.json()["error"] == "Agent not found"


async def test_delete_agent(client, auth_headers):
    agent = await create_agent(client, auth_headers)

    response = await client.delete(f"/api/ai/agents/{agent['id']}", headers=auth_headers)
    assert response.status_code == 204

    response = await client.get(f"/api/ai/agents/{agent['id']}", headers=auth_headers)
    assert response.status_code == 404


async def test_agent_knowledge_bases_must_be_owned(client, auth_headers):
    response = await client.post(
        "/api/ai/agents",
        json={"name": "Agent", "knowledge_base_ids": [str(uuid4())]},
        headers=auth_headers,
    )

    assert response.status_code == 404


# =============================================================================
# KNOWLEDGE BASES
# =============================================================================


async def test_knowledge_base_crud(client, auth_headers):
    created = await client.post(
        "/api/ai/knowledgebase",
        json={"name": "Pricing FAQ", "type": int(KnowledgeBaseType.FAQ), "data": {"entries": 3}},
        headers=auth_headers,
    )
    assert created.status_code == 201
    kb_id = created.json()["data"]["id"]

    agent = await create_agent(client, auth_headers, knowledge_base_ids=[kb_id])
    assert agent["knowledge_base_ids"] == [kb_id]

    updated = await client.patch(
        f"/api/ai/knowledgebase/{kb_id}", json={"data": {"source": "manual"}}, headers=auth_headers
    )
    assert updated.json()["data"]["data"] == {"entries": 3, "source": "manual"}

    listed = await client.get(
        "/api/ai/knowledgebase", params={"type": int(KnowledgeBaseType.FAQ)}, headers=auth_headers
    )
    assert listed.json()["data"]["total"] == 1

    deleted = await client.delete(f"/api/ai/knowledgebase/{kb_id}", headers=auth_headers)
    assert deleted.status_code == 204
    missing = await client.get(f"/api/ai/knowledgebase/{kb_id}", headers=auth_headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "Knowledge base not found"
