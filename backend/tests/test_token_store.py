"""LeadConnector token store: lookup, refresh and authorization-code exchange."""

from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy import select

from vox.db.models import ProviderData
from vox.errors import AuthenticationError, UpstreamError, ValidationError
from vox.services import token_store
from vox.services.token_store import NO_LOCATION_MESSAGE, NO_TOKEN_MESSAGE


def token_endpoint(status_code: int, payload=None, text: str | None = None, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/oauth/token"
        if seen is not None:
            seen.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


async def test_get_tokens_without_row(db, user_id):
    tokens = await token_store.get_tokens(db, user_id)

    assert tokens.access_token is None
    assert tokens.error == NO_TOKEN_MESSAGE


async def test_get_valid_tokens_raises_without_row(db, user_id):
    with pytest.raises(AuthenticationError) as exc_info:
        await token_store.get_valid_tokens(db, user_id)
    assert exc_info.value.message == NO_TOKEN_MESSAGE


async def test_get_tokens_returns_stored_values(db, user_id, connect_leadconnector):
    await connect_leadconnector(user_id, token="stored-access", refresh="stored-refresh")

    tokens = await token_store.get_tokens(db, user_id)

    assert tokens.access_token == "stored-access"
    assert tokens.refresh_token == "stored-refresh"
    assert tokens.error is None


async def test_location_id_missing_is_validation_error(db, user_id, connect_leadconnector):
    await connect_leadconnector(user_id, location_id=None)

    with pytest.raises(ValidationError) as exc_info:
        await token_store.get_location_id(db, user_id)
    assert exc_info.value.message == NO_LOCATION_MESSAGE


async def test_refresh_persists_and_returns_new_tokens(db, user_id, connect_leadconnector, monkeypatch, session_factory):
    await connect_leadconnector(user_id)
    seen: list[dict] = []
    monkeypatch.setattr(
        token_store,
        "transport",
        token_endpoint(
            200,
            {"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 86399, "locationId": "loc-9"},
            seen=seen,
        ),
    )

    tokens = await token_store.refresh_tokens(db, user_id, "refresh-1", hint={"user_type": "Location"})

    assert tokens.access_token == "access-2"
    assert tokens.refresh_token == "refresh-2"
    assert tokens.expires_in == 86399
    assert seen == [
        {
            "client_id": "test-client-id",
            "client_secret": "test-client-secret",
            "grant_type": "refresh_token",
            "refresh_token": "refresh-1",
            "user_type": "Location",
        }
    ]

    async with session_factory() as s:
        row = await s.scalar(select(ProviderData).where(ProviderData.auth_provider_id == user_id))
    assert row.token == "access-2"
    assert row.refresh == "refresh-2"
    assert row.expires is not None
    assert row.data["location_id"] == "loc-9"
    assert row.data["user_type"] == "Location"


async def test_refresh_failure_reports_status_and_body(db, user_id, connect_leadconnector, monkeypatch, session_factory):
    await connect_leadconnector(user_id)
    monkeypatch.setattr(token_store, "transport", token_endpoint(400, text='{"error":"invalid_grant"}'))

    with pytest.raises(UpstreamError) as exc_info:
        await token_store.refresh_tokens(db, user_id, "refresh-1")

    assert "400" in exc_info.value.message
    assert "invalid_grant" in exc_info.value.message
    assert exc_info.value.upstream_status == 400

    async with session_factory() as s:
        row = await s.scalar(select(ProviderData).where(ProviderData.auth_provider_id == user_id))
    assert row.token == "access-1"


async def test_exchange_code_creates_provider_row(db, user_id, monkeypatch, session_factory):
    seen: list[dict] = []
    monkeypatch.setattr(
        token_store,
        "transport",
        token_endpoint(
            200,
            {
                "access_token": "fresh",
                "refresh_token": "fresh-refresh",
                "expires_in": 3600,
                "locationId": "loc-1",
                "userType": "Location",
            },
            seen=seen,
        ),
    )

    await token_store.exchange_code(db, user_id, "auth-code")

    assert seen[0]["grant_type"] == "authorization_code"
    assert seen[0]["code"] == "auth-code"
    async with session_factory() as s:
        row = await s.scalar(select(ProviderData).where(ProviderData.auth_provider_id == user_id))
    assert row.token == "fresh"
    assert row.data["location_id"] == "loc-1"


def test_authorize_url_contains_client_and_state():
    url = token_store.build_authorize_url()

    assert url.startswith("https://marketplace.gohighlevel.com/oauth/chooselocation?")
    assert "client_id=test-client-id" in url
    assert "state=vox_ghl_oauth" in url
    assert "response_type=code" in url
