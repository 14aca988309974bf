"""
LeadConnector (GoHighLevel) routes: OAuth connect flow plus authenticated
proxies for conversations, messages, contacts and the connected location.
"""

import logging
from typing import Any

import pydantic
from fastapi import APIRouter, Query, Request
from fastapi.responses import RedirectResponse

from vox.api.deps import CurrentUser, DbSession, OptionalUser
from vox.config import get_settings
from vox.errors import ValidationError, VoxError
from vox.schemas.base import Envelope
from vox.schemas.leadconnector import (
    AuthorizeRedirect,
    ConversationSearchParams,
    ConversationSearchResult,
    SendMessageRequest,
)
from vox.services import conversation_search_cache, leadconnector, token_store

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/api/leadconnector", tags=["leadconnector"])


# =============================================================================
# OAUTH
# =============================================================================


@router.get("/oauth/authorize", response_model=AuthorizeRedirect)
async def authorize(current_user: CurrentUser) -> AuthorizeRedirect:
    """Marketplace URL the dashboard sends the user to for choosing a location."""
    return AuthorizeRedirect(redirect_url=token_store.build_authorize_url())


@router.get("/oauth/callback")
async def oauth_callback(
    current_user: OptionalUser,
    db: DbSession,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    """
    Marketplace redirect target. Always answers with a browser redirect:
    to the dashboard once tokens are stored, to the error page otherwise.
    """
    error_url = f"{settings.public_base_url}{settings.error_path}"
    if error:
        logger.warning("LeadConnector OAuth returned error: %s", error)
        return RedirectResponse(error_url)
    if not code:
        logger.warning("LeadConnector OAuth callback without code")
        return RedirectResponse(error_url)
    if state != settings.ghl_oauth_state:
        logger.warning("LeadConnector OAuth callback with unexpected state %r", state)
        return RedirectResponse(error_url)
    if current_user is None:
        logger.warning("LeadConnector OAuth callback without a session")
        return RedirectResponse(error_url)

    try:
        await token_store.exchange_code(db, current_user.id, code)
    except VoxError as e:
        logger.error("LeadConnector code exchange failed for user %s: %s", current_user.id, e.message)
        return RedirectResponse(error_url)
    return RedirectResponse(f"{settings.public_base_url}{settings.dashboard_path}")


# =============================================================================
# CONVERSATIONS
# =============================================================================


@router.get("/conversations/search", response_model=Envelope[ConversationSearchResult])
async def search_conversations(
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[ConversationSearchResult]:
    """
    Search the connected location's conversations, newest message first by default.

    First pages are cached briefly per user; pagination requests
    (``startAfterDate``) always go upstream.
    """
    try:
        search = ConversationSearchParams.model_validate(dict(request.query_params))
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"{field}: {first['msg']}" if field else first["msg"]) from e

    location_id = await token_store.get_location_id(db, current_user.id)
    params = search.model_dump(by_alias=True, exclude_none=True)
    cacheable = search.start_after_date is None
    cache_key = conversation_search_cache.key(current_user.id, location_id, params)

    if cacheable:
        cached = conversation_search_cache.get(cache_key)
        if cached is not None:
            logger.debug("Conversation search served from cache for user %s", current_user.id)
            return Envelope(data=cached)

    response = await leadconnector.search_conversations(db, current_user.id, location_id, params)
    conversations = response.get("conversations") or []
    total = response.get("total") or 0
    has_more = len(conversations) == search.limit and total > search.limit
    result = ConversationSearchResult(
        conversations=conversations,
        total=total,
        has_more=has_more,
        next_cursor=conversations[-1].get("lastMessageDate") if has_more and conversations else None,
    )
    if cacheable:
        conversation_search_cache.set(cache_key, result)
    return Envelope(data=result)


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    current_user: CurrentUser,
    db: DbSession,
) -> dict[str, Any]:
    data = await leadconnector.get_conversation(db, current_user.id, conversation_id)
    return {"success": True, "data": data}


@router.get("/conversations/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    current_user: CurrentUser,
    db: DbSession,
    limit: int | None = Query(None, ge=1, le=100),
    last_message_id: str | None = Query(None, alias="lastMessageId"),
    message_type: str | None = Query(None, alias="type"),
) -> dict[str, Any]:
    """One page of a conversation's messages."""
    data = await leadconnector.get_messages(
        db,
        current_user.id,
        conversation_id,
        limit=limit,
        last_message_id=last_message_id,
        message_type=message_type,
    )
    return {"success": True, "data": data}


@router.post("/conversations/messages/send")
async def send_message(
    body: SendMessageRequest,
    current_user: CurrentUser,
    db: DbSession,
) -> dict[str, Any]:
    """Send a message through LeadConnector. Fields beyond type/contactId/message pass through."""
    data = await leadconnector.send_message(db, current_user.id, body.model_dump(by_alias=True, exclude_none=True))
    return {"success": True, "data": data}


# =============================================================================
# CONTACTS / ACCOUNT
# =============================================================================


@router.get("/contacts")
async def get_contacts(
    current_user: CurrentUser,
    db: DbSession,
    query: str | None = None,
    limit: int = Query(20, ge=1, le=100),
    start_after_id: str | None = Query(None, alias="startAfterId"),
) -> dict[str, Any]:
    location_id = await token_store.get_location_id(db, current_user.id)
    data = await leadconnector.get_contacts(
        db, current_user.id, location_id, query=query, limit=limit, start_after_id=start_after_id
    )
    return {"success": True, "data": data}


@router.get("/location")
async def get_location(current_user: CurrentUser, db: DbSession) -> dict[str, Any]:
    """Details of the connected location."""
    location_id = await token_store.get_location_id(db, current_user.id)
    data = await leadconnector.get_location(db, current_user.id, location_id)
    return {"success": True, "data": data}


@router.get("/me")
async def get_me(current_user: CurrentUser, db: DbSession) -> dict[str, Any]:
    data = await leadconnector.get_me(db, current_user.id)
    return {"success": True, "data": data}
