"""Error envelope produced by the registered exception handlers."""

import pytest
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from vox.errors import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    ErrorKind,
    NotFoundError,
    PersistenceError,
    TokenExpiredError,
    UpstreamError,
    ValidationError,
    register_exception_handlers,
)

RAISERS = {
    "authentication": AuthenticationError(),
    "validation": ValidationError("conversationId is required"),
    "not_found": NotFoundError("Agent not found"),
    "conflict": ConflictError("Already active"),
    "configuration": ConfigurationError("GHL OAuth credentials not configured"),
    "persistence": PersistenceError("Failed to save autopilot config", detail="deadlock"),
    "upstream": UpstreamError("FastAPI error: 502 - bad gateway", upstream_status=502),
    "token_expired": TokenExpiredError("Please re-authenticate.", upstream_status=401),
}


class Payload(BaseModel):
    conversationId: str


@pytest.fixture
async def error_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/raise/{name}")
    async def raise_named(name: str):
        raise RAISERS[name]

    @app.get("/http")
    async def raise_http():
        raise HTTPException(status_code=409, detail="taken")

    @app.get("/crash")
    async def crash():
        raise RuntimeError("database exploded")

    @app.post("/validate")
    async def validate(body: Payload):
        return body

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.parametrize(
    "name,status_code",
    [
        ("authentication", 401),
        ("validation", 400),
        ("not_found", 404),
        ("conflict", 409),
        ("configuration", 500),
        ("persistence", 500),
        ("upstream", 500),
        ("token_expired", 401),
    ],
)
async def test_vox_errors_map_to_status_and_kind(error_client, name, status_code):
    response = await error_client.get(f"/raise/{name}")

    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    assert body["error_kind"] == name
    assert body["error"] == RAISERS[name].message
    assert body["detail"] == RAISERS[name].detail


def test_token_expired_is_an_upstream_error():
    error = TokenExpiredError("expired", upstream_status=401, body="{}")

    assert isinstance(error, UpstreamError)
    assert error.kind is ErrorKind.TOKEN_EXPIRED
    assert error.body == "{}"


async def test_http_exception_wrapped(error_client):
    response = await error_client.get("/http")

    assert response.status_code == 409
    assert response.json() == {"success": False, "error": "taken", "error_kind": "conflict", "detail": None}


async def test_unknown_route_is_not_found_envelope(error_client):
    response = await error_client.get("/nope")

    assert response.status_code == 404
    assert response.json()["error_kind"] == "not_found"


async def test_request_validation_is_400_naming_field(error_client):
    response = await error_client.post("/validate", json={})

    assert response.status_code == 400
    body = response.json()
    assert body["error_kind"] == "validation"
    assert body["error"] == "conversationId: Field required"


async def test_unhandled_exception_is_internal(error_client):
    response = await error_client.get("/crash")

    assert response.status_code == 500
    body = response.json()
    assert body["error_kind"] == "internal"
    # Tests run with ENVIRONMENT=development, which exposes the message
    assert body["error"] == "database exploded"
