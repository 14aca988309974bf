"""LeadConnector client retry behaviour and the proxy routes."""

import httpx
import pytest

from vox.errors import TokenExpiredError, UpstreamError
from vox.services import leadconnector, token_store
from vox.services.leadconnector import build_query_string, normalize_query_params
from vox.services.token_store import NO_LOCATION_MESSAGE, NO_TOKEN_MESSAGE


class FakeLeadConnector:
    """Records requests and answers API calls from a queue of (status, json) pairs."""

    def __init__(self, api_responses, token_response=None):
        self.api_responses = list(api_responses)
        self.token_response = token_response or {"access_token": "access-2", "refresh_token": "refresh-2"}
        self.api_calls: list[httpx.Request] = []
        self.token_calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            self.token_calls.append(request)
            return httpx.Response(200, json=self.token_response)
        self.api_calls.append(request)
        status_code, payload = self.api_responses.pop(0)
        return httpx.Response(status_code, json=payload)

    def install(self, monkeypatch):
        transport = httpx.MockTransport(self)
        monkeypatch.setattr(token_store, "transport", transport)
        monkeypatch.setattr(leadconnector, "transport", transport)
        return self


def test_normalize_query_params():
    params = normalize_query_params(
        {"a": None, "ids": ["x", "y"], "filter": {"k": 1}, "flag": True, "limit": 20}
    )

    assert params == {"ids": "x,y", "filter": '{"k":1}', "flag": "true", "limit": "20"}
    assert build_query_string({"a": None}) == ""
    assert build_query_string({"q": "a b"}) == "?q=a+b"


async def test_request_sends_bearer_and_version(db, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    fake = FakeLeadConnector([(200, {"id": "me"})]).install(monkeypatch)

    data = await leadconnector.get_me(db, user_id)

    assert data == {"id": "me"}
    request = fake.api_calls[0]
    assert request.headers["Authorization"] == "Bearer access-1"
    assert request.headers["Version"] == "2021-04-15"
    assert fake.token_calls == []


async def test_401_refreshes_once_and_retries(db, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    fake = FakeLeadConnector([(401, {"message": "Invalid JWT"}), (200, {"conversation": {"id": "c1"}})])
    fake.install(monkeypatch)

    data = await leadconnector.get_conversation(db, user_id, "c1")

    assert data == {"conversation": {"id": "c1"}}
    assert len(fake.token_calls) == 1
    assert len(fake.api_calls) == 2
    assert fake.api_calls[1].headers["Authorization"] == "Bearer access-2"


async def test_second_401_raises_token_expired(db, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    fake = FakeLeadConnector([(401, {}), (401, {})]).install(monkeypatch)

    with pytest.raises(TokenExpiredError):
        await leadconnector.get_conversation(db, user_id, "c1")

    assert len(fake.token_calls) == 1
    assert len(fake.api_calls) == 2


async def test_401_without_refresh_token(db, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id, refresh=None)
    fake = FakeLeadConnector([(401, {})]).install(monkeypatch)

    with pytest.raises(TokenExpiredError):
        await leadconnector.get_me(db, user_id)

    assert fake.token_calls == []


async def test_upstream_error_carries_api_message(db, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    FakeLeadConnector([(422, {"message": ["limit must be a number"]})]).install(monkeypatch)

    with pytest.raises(UpstreamError) as exc_info:
        await leadconnector.get_me(db, user_id)

    assert exc_info.value.message == "limit must be a number"
    assert exc_info.value.upstream_status == 422


async def test_connection_failure_becomes_upstream_error(db, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    monkeypatch.setattr(leadconnector, "transport", httpx.MockTransport(refuse))

    with pytest.raises(UpstreamError) as exc_info:
        await leadconnector.get_me(db, user_id)

    assert not isinstance(exc_info.value, TokenExpiredError)
    assert exc_info.value.message.startswith("GHL API request failed")
    assert "connection refused" in exc_info.value.message


async def test_error_without_json_body_uses_status(db, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)

    def bad_gateway(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad gateway</html>")

    monkeypatch.setattr(leadconnector, "transport", httpx.MockTransport(bad_gateway))

    with pytest.raises(UpstreamError) as exc_info:
        await leadconnector.get_me(db, user_id)

    assert exc_info.value.message == "GHL API request failed with status 502"
    assert exc_info.value.body == "<html>Bad gateway</html>"


# =============================================================================
# ROUTES
# =============================================================================


def page(count: int, total: int) -> dict:
    return {
        "conversations": [{"id": f"c{i}", "lastMessageDate": 1700000000000 + i} for i in range(count)],
        "total": total,
    }


async def test_search_reports_has_more_and_cursor(client, auth_headers, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    fake = FakeLeadConnector([(200, page(2, 5))]).install(monkeypatch)

    response = await client.get(
        "/api/leadconnector/conversations/search", params={"limit": 2}, headers=auth_headers
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 5
    assert data["has_more"] is True
    assert data["next_cursor"] == 1700000000001
    query = fake.api_calls[0].url.params
    assert query["locationId"] == "loc-1"
    assert query["limit"] == "2"
    assert query["sortBy"] == "last_message_date"


async def test_search_last_page_has_no_cursor(client, auth_headers, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    FakeLeadConnector([(200, page(1, 1))]).install(monkeypatch)

    response = await client.get("/api/leadconnector/conversations/search", headers=auth_headers)

    data = response.json()["data"]
    assert data["has_more"] is False
    assert data["next_cursor"] is None


async def test_search_first_page_is_cached(client, auth_headers, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    fake = FakeLeadConnector([(200, page(1, 1)), (200, page(1, 1)), (200, page(1, 1))]).install(monkeypatch)

    first = await client.get("/api/leadconnector/conversations/search", headers=auth_headers)
    second = await client.get("/api/leadconnector/conversations/search", headers=auth_headers)
    assert first.json() == second.json()
    assert len(fake.api_calls) == 1

    await client.get(
        "/api/leadconnector/conversations/search",
        params={"startAfterDate": "1700000000000"},
        headers=auth_headers,
    )
    assert len(fake.api_calls) == 2


async def test_search_rejects_bad_limit(client, auth_headers, user_id, connect_leadconnector):
    await connect_leadconnector(user_id)

    response = await client.get(
        "/api/leadconnector/conversations/search", params={"limit": 0}, headers=auth_headers
    )

    assert response.status_code == 400
    assert response.json()["error"].startswith("limit")


async def test_search_without_location(client, auth_headers, user_id, connect_leadconnector):
    await connect_leadconnector(user_id, location_id=None)

    response = await client.get("/api/leadconnector/conversations/search", headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"] == NO_LOCATION_MESSAGE


async def test_me_without_tokens_is_401(client, auth_headers):
    response = await client.get("/api/leadconnector/me", headers=auth_headers)

    assert response.status_code == 401
    body = response.json()
    assert body["error"] == NO_TOKEN_MESSAGE
    assert body["error_kind"] == "authentication"


async def test_expired_token_surfaces_token_expired_kind(client, auth_headers, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    FakeLeadConnector([(401, {}), (401, {})]).install(monkeypatch)

    response = await client.get("/api/leadconnector/me", headers=auth_headers)

    assert response.status_code == 401
    assert response.json()["error_kind"] == "token_expired"


async def test_send_message_passes_extra_fields(client, auth_headers, user_id, connect_leadconnector, monkeypatch):
    await connect_leadconnector(user_id)
    fake = FakeLeadConnector([(200, {"messageId": "m1"})]).install(monkeypatch)

    response = await client.post(
        "/api/leadconnector/conversations/messages/send",
        json={"type": "SMS", "contactId": "ct1", "message": "hi", "html": "<p>hi</p>"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"messageId": "m1"}}
    sent = fake.api_calls[0]
    assert sent.method == "POST"
    assert b'"contactId":"ct1"' in sent.content.replace(b" ", b"")
    assert b'"html"' in sent.content


async def test_oauth_callback_stores_tokens_and_redirects(client, auth_headers, monkeypatch):
    FakeLeadConnector([], token_response={"access_token": "a", "refresh_token": "r", "locationId": "loc-1"}).install(
        monkeypatch
    )

    response = await client.get(
        "/api/leadconnector/oauth/callback",
        params={"code": "xyz", "state": "vox_ghl_oauth"},
        headers=auth_headers,
    )

    assert response.status_code in (302, 307)
    assert response.headers["location"] == "http://dashboard.test/dashboard"


@pytest.mark.parametrize(
    "params",
    [
        {"error": "access_denied"},
        {"state": "vox_ghl_oauth"},
        {"code": "xyz", "state": "forged"},
    ],
)
async def test_oauth_callback_failures_redirect_to_error_page(client, auth_headers, params):
    response = await client.get("/api/leadconnector/oauth/callback", params=params, headers=auth_headers)

    assert response.headers["location"] == "http://dashboard.test/error"


async def test_oauth_callback_without_session(client):
    response = await client.get(
        "/api/leadconnector/oauth/callback", params={"code": "xyz", "state": "vox_ghl_oauth"}
    )

    assert response.headers["location"] == "http://dashboard.test/error"


async def test_authorize_returns_marketplace_url(client, auth_headers):
    response = await client.get("/api/leadconnector/oauth/authorize", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["redirect_url"].startswith("https://marketplace.gohighlevel.com/")
