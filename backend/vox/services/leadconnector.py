"""
LeadConnector (GoHighLevel) REST client.

Every call goes out with the user's stored bearer token and the API version
header. A 401 triggers one token refresh and exactly one retry; a second
failure propagates.
"""

import json
import logging
import time
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from vox.config import get_settings
from vox.errors import TokenExpiredError, UpstreamError
from vox.services.token_store import TokenStore, token_store

logger = logging.getLogger(__name__)
settings = get_settings()


def normalize_query_params(params: dict[str, Any]) -> dict[str, str]:
    """Drop None values, join lists with commas, JSON-encode dicts, stringify the rest."""
    normalized: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            normalized[key] = ",".join(str(item) for item in value)
        elif isinstance(value, dict):
            normalized[key] = json.dumps(value, separators=(",", ":"))
        elif isinstance(value, bool):
            normalized[key] = "true" if value else "false"
        else:
            normalized[key] = str(value)
    return normalized


def build_query_string(params: dict[str, Any]) -> str:
    """``?a=1&b=x,y`` from a params dict, or an empty string when nothing is left."""
    query = urlencode(normalize_query_params(params))
    return f"?{query}" if query else ""


class SearchCache:
    """
    Per-process TTL cache for conversation search results.

    Not shared between instances; entries may be stale for up to ``ttl`` seconds.
    """

    def __init__(self, ttl: float):
        self.ttl = ttl
        self._entries: dict[tuple, tuple[float, Any]] = {}

    @staticmethod
    def key(user_id: UUID, location_id: str, params: dict[str, str]) -> tuple:
        return (str(user_id), location_id, tuple(sorted(params.items())))

    def get(self, key: tuple) -> Any | None:
        self._evict_expired()
        entry = self._entries.get(key)
        return entry[1] if entry else None

    def set(self, key: tuple, value: Any) -> None:
        self._entries[key] = (time.monotonic() + self.ttl, value)

    def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self) -> None:
        now = time.monotonic()
        for key in [k for k, (expires, _) in self._entries.items() if expires <= now]:
            del self._entries[key]


class LeadConnectorClient:
    """Authenticated access to the LeadConnector API on behalf of a user."""

    def __init__(self, tokens: TokenStore = token_store, transport: httpx.AsyncBaseTransport | None = None):
        self.tokens = tokens
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.ghl_api_base,
            timeout=settings.http_timeout_seconds,
            transport=self.transport,
        )

    async def _send(
        self,
        method: str,
        path: str,
        access_token: str,
        params: dict[str, Any] | None,
        json_body: Any,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Version": settings.ghl_api_version,
            "Accept": "application/json",
        }
        async with self._client() as client:
            try:
                return await client.request(
                    method,
                    path,
                    params=normalize_query_params(params or {}),
                    json=json_body,
                    headers=headers,
                )
            except httpx.HTTPError as e:
                raise UpstreamError(f"GHL API request failed: {e}", detail=path) from e

    async def request(
        self,
        method: str,
        path: str,
        user_id: UUID,
        *,
        db: AsyncSession,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """
        Call the API as ``user_id`` and return the decoded JSON body.

        Raises:
            AuthenticationError: the user has no stored token.
            TokenExpiredError: still 401 after one refresh, or nothing to refresh with.
            UpstreamError: any other non-2xx answer, carrying the API's message.
        """
        tokens = await self.tokens.get_valid_tokens(db, user_id)
        response = await self._send(method, path, tokens.access_token, params, json_body)

        if response.status_code == httpx.codes.UNAUTHORIZED:
            if not tokens.refresh_token:
                raise TokenExpiredError(
                    "No refresh token available. Please re-authenticate.",
                    upstream_status=response.status_code,
                    body=response.text,
                )
            logger.info("LeadConnector returned 401 for %s %s, refreshing token", method, path)
            provider = await self.tokens.get_provider_row(db, user_id)
            refreshed = await self.tokens.refresh_tokens(
                db, user_id, tokens.refresh_token, hint=provider.data if provider else None
            )
            response = await self._send(method, path, refreshed.access_token, params, json_body)
            if response.status_code == httpx.codes.UNAUTHORIZED:
                raise TokenExpiredError(
                    "LeadConnector rejected the refreshed token. Please re-authenticate.",
                    upstream_status=response.status_code,
                    body=response.text,
                )

        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> Any:
        if not response.is_success:
            message = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                message = body.get("message") or body.get("error")
            if isinstance(message, list):
                message = "; ".join(str(m) for m in message)
            logger.warning("LeadConnector error %d: %s", response.status_code, response.text[:500])
            raise UpstreamError(
                message or f"GHL API request failed with status {response.status_code}",
                upstream_status=response.status_code,
                body=response.text,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise UpstreamError(
                f"Invalid JSON response from GHL API: {response.text[:100]}...",
                upstream_status=response.status_code,
                body=response.text,
            )

    # =========================================================================
    # ENDPOINT HELPERS
    # =========================================================================

    async def get_contacts(
        self,
        db: AsyncSession,
        user_id: UUID,
        location_id: str,
        *,
        query: str | None = None,
        limit: int = 20,
        start_after_id: str | None = None,
    ) -> dict[str, Any]:
        params = {"locationId": location_id, "query": query, "limit": limit, "startAfterId": start_after_id}
        return await self.request("GET", "/contacts/", user_id, db=db, params=params)

    async def search_conversations(
        self, db: AsyncSession, user_id: UUID, location_id: str, params: dict[str, Any]
    ) -> dict[str, Any]:
        return await self.request(
            "GET", "/conversations/search", user_id, db=db, params={"locationId": location_id, **params}
        )

    async def get_conversation(self, db: AsyncSession, user_id: UUID, conversation_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/conversations/{conversation_id}", user_id, db=db)

    async def get_messages(
        self,
        db: AsyncSession,
        user_id: UUID,
        conversation_id: str,
        *,
        limit: int | None = None,
        last_message_id: str | None = None,
        message_type: str | None = None,
    ) -> dict[str, Any]:
        params = {"limit": limit, "lastMessageId": last_message_id, "type": message_type}
        return await self.request(
            "GET", f"/conversations/{conversation_id}/messages", user_id, db=db, params=params
        )

    async def send_message(self, db: AsyncSession, user_id: UUID, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", "/conversations/messages", user_id, db=db, json_body=payload)

    async def get_location(self, db: AsyncSession, user_id: UUID, location_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/locations/{location_id}", user_id, db=db)

    async def get_me(self, db: AsyncSession, user_id: UUID) -> dict[str, Any]:
        return await self.request("GET", "/users/me", user_id, db=db)


# Singleton instances
leadconnector = LeadConnectorClient()
conversation_search_cache = SearchCache(ttl=settings.conversation_search_cache_seconds)
