"""LeadConnector OAuth token storage, refresh and authorization-code exchange."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote, urlencode
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vox.config import get_settings
from vox.db.models import ProviderData, ProviderType
from vox.errors import AuthenticationError, ConfigurationError, UpstreamError, ValidationError
from vox.schemas.leadconnector import GhlTokens

logger = logging.getLogger(__name__)
settings = get_settings()

NO_TOKEN_MESSAGE = "No access token found"
NO_LOCATION_MESSAGE = "No GoHighLevel location found. Please connect your GHL account."

# Token endpoint response fields copied into provider_data.data
_TOKEN_DATA_FIELDS = {
    "locationId": "location_id",
    "userType": "user_type",
    "companyId": "company_id",
    "userId": "user_id",
    "companyName": "company_name",
    "locationName": "location_name",
    "approvedLocations": "approved_locations",
    "planId": "plan_id",
    "scope": "scope",
}


class TokenStore:
    """
    Reads and writes the provider_data row that holds a user's LeadConnector tokens.

    Tokens are returned as stored; expiry is not checked up front. Callers
    refresh reactively when the API answers 401 (see LeadConnectorClient).
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        # Overridable so tests can plug in httpx.MockTransport
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.ghl_api_base,
            timeout=settings.http_timeout_seconds,
            transport=self.transport,
        )

    async def get_provider_row(self, db: AsyncSession, user_id: UUID) -> ProviderData | None:
        result = await db.execute(
            select(ProviderData).where(
                ProviderData.auth_provider_id == user_id,
                ProviderData.type == ProviderType.GHL_LOCATION,
            )
        )
        return result.scalar_one_or_none()

    async def get_tokens(self, db: AsyncSession, user_id: UUID) -> GhlTokens:
        """Stored tokens, or a GhlTokens carrying ``error`` when the user never connected."""
        row = await self.get_provider_row(db, user_id)
        if row is None or not row.token:
            logger.info("No LeadConnector tokens stored for user %s", user_id)
            return GhlTokens(error=NO_TOKEN_MESSAGE)
        return GhlTokens(access_token=row.token, refresh_token=row.refresh, expires_at=row.expires)

    async def get_valid_tokens(self, db: AsyncSession, user_id: UUID) -> GhlTokens:
        """Like get_tokens, but raises AuthenticationError when there is no access token."""
        tokens = await self.get_tokens(db, user_id)
        if not tokens.access_token or tokens.error:
            raise AuthenticationError(tokens.error or NO_TOKEN_MESSAGE)
        return tokens

    async def get_location_id(self, db: AsyncSession, user_id: UUID) -> str:
        """The connected location, or a 400 telling the user to connect their account."""
        row = await self.get_provider_row(db, user_id)
        location_id = (row.data or {}).get("location_id") if row else None
        if not location_id:
            raise ValidationError(NO_LOCATION_MESSAGE)
        return location_id

    async def _post_token_endpoint(self, form: dict[str, str], failure: str) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(
                "/oauth/token",
                data=form,
                headers={"Accept": "application/json"},
            )
        if not response.is_success:
            logger.error("%s: %d %s", failure, response.status_code, response.text)
            raise UpstreamError(
                f"{failure}: {response.status_code} {response.text}",
                upstream_status=response.status_code,
                body=response.text,
            )
        return response.json()

    def _require_credentials(self) -> None:
        if not settings.ghl_client_id or not settings.ghl_client_secret:
            raise ConfigurationError("GHL OAuth credentials not configured")

    async def refresh_tokens(
        self,
        db: AsyncSession,
        user_id: UUID,
        refresh_token: str,
        hint: dict[str, Any] | None = None,
    ) -> GhlTokens:
        """
        Exchange ``refresh_token`` for a new token pair and persist it.

        ``hint`` is the stored provider data; its ``user_type`` is forwarded so
        the provider issues a token of the same kind. Returns the new tokens
        exactly as the provider sent them. Raises UpstreamError on a non-2xx
        answer, with the provider's status and body in the message.
        """
        self._require_credentials()
        form = {
            "client_id": settings.ghl_client_id,
            "client_secret": settings.ghl_client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        if hint and hint.get("user_type"):
            form["user_type"] = hint["user_type"]

        logger.info("Refreshing LeadConnector token for user %s", user_id)
        payload = await self._post_token_endpoint(form, "Token refresh failed")

        row = await self.get_provider_row(db, user_id)
        if row is None:
            raise AuthenticationError(NO_TOKEN_MESSAGE)

        expires_in = payload.get("expires_in")
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in) if expires_in else None
        row.token = payload["access_token"]
        row.refresh = payload.get("refresh_token") or refresh_token
        row.expires = expires_at
        row.data = self._merge_token_data(row.data, payload)
        await db.commit()

        logger.info("LeadConnector token refreshed for user %s, expires in %s s", user_id, expires_in)
        return GhlTokens(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_in=expires_in,
            expires_at=expires_at,
        )

    async def exchange_code(self, db: AsyncSession, user_id: UUID, code: str) -> ProviderData:
        """Authorization-code flow: trade ``code`` for tokens and store them for the user."""
        self._require_credentials()
        form = {
            "client_id": settings.ghl_client_id,
            "client_secret": settings.ghl_client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri(),
        }
        payload = await self._post_token_endpoint(form, "Token exchange failed")

        expires_in = payload.get("expires_in")
        row = await self.get_provider_row(db, user_id)
        if row is None:
            row = ProviderData(
                name="leadconnector",
                type=ProviderType.GHL_LOCATION,
                auth_provider_id=user_id,
                data={},
            )
            db.add(row)
        row.token = payload["access_token"]
        row.refresh = payload.get("refresh_token")
        row.expires = datetime.now(timezone.utc) + timedelta(seconds=expires_in) if expires_in else None
        row.data = self._merge_token_data(row.data, payload)
        await db.commit()
        await db.refresh(row)

        logger.info(
            "Stored LeadConnector tokens for user %s (location %s)",
            user_id, row.data.get("location_id"),
        )
        return row

    def redirect_uri(self) -> str:
        return settings.ghl_redirect_uri or f"{settings.public_base_url}/api/leadconnector/oauth/callback"

    def build_authorize_url(self) -> str:
        """Marketplace URL where the user picks the location to connect."""
        if not settings.ghl_client_id:
            raise ConfigurationError("GHL OAuth credentials not configured")
        params = {
            "response_type": "code",
            "client_id": settings.ghl_client_id,
            "redirect_uri": self.redirect_uri(),
            "scope": settings.ghl_scopes,
            "state": settings.ghl_oauth_state,
        }
        return f"{settings.ghl_authorize_url}?{urlencode(params, quote_via=quote)}"

    @staticmethod
    def _merge_token_data(current: dict[str, Any] | None, payload: dict[str, Any]) -> dict[str, Any]:
        data = dict(current or {})
        for source, target in _TOKEN_DATA_FIELDS.items():
            if payload.get(source) is not None:
                data[target] = payload[source]
        data["updated_at"] = datetime.now(timezone.utc).isoformat()
        return data


# Singleton instance
token_store = TokenStore()
