"""Client for the external FastAPI inference backend (queries, suggestions, training)."""

import logging
from typing import Any
from uuid import UUID

import httpx

from vox.config import get_settings
from vox.errors import UpstreamError

logger = logging.getLogger(__name__)
settings = get_settings()


class InferenceClient:
    """
    Thin JSON client. The backend identifies the user from ``Authorization:
    Bearer <user id>`` and the caller from ``X-API-Key``.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.fastapi_url.rstrip("/"),
            timeout=settings.http_timeout_seconds,
            transport=self.transport,
        )

    def _headers(self, user_id: UUID | str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if settings.fastapi_api_key:
            headers["X-API-Key"] = settings.fastapi_api_key
        if user_id:
            headers["Authorization"] = f"Bearer {user_id}"
        return headers

    async def _request(
        self, method: str, endpoint: str, user_id: UUID | str | None, payload: Any = None
    ) -> Any:
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        logger.info("Inference %s %s", method, endpoint)
        async with self._client() as client:
            try:
                response = await client.request(method, endpoint, json=payload, headers=self._headers(user_id))
            except httpx.HTTPError as e:
                raise UpstreamError(f"FastAPI request failed: {e}", detail=endpoint) from e

        if not response.is_success:
            logger.error("Inference error %d on %s: %s", response.status_code, endpoint, response.text[:500])
            raise UpstreamError(
                f"FastAPI error: {response.status_code} - {response.text}",
                upstream_status=response.status_code,
                body=response.text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                "Invalid response format from inference backend", upstream_status=response.status_code, body=response.text
            ) from e

    async def post(self, endpoint: str, payload: dict[str, Any], user_id: UUID | str | None = None) -> Any:
        return await self._request("POST", endpoint, user_id, payload)

    async def get(self, endpoint: str, user_id: UUID | str | None = None) -> Any:
        return await self._request("GET", endpoint, user_id)


# Singleton instance
inference = InferenceClient()
