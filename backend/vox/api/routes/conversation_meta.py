"""Per-conversation metadata routes (AI settings overrides, names, last message)."""

from fastapi import APIRouter, Query

from vox.api.deps import CurrentUser, DbSession
from vox.errors import NotFoundError
from vox.schemas.base import Envelope
from vox.schemas.settings import ConversationMetaRead, ConversationMetaUpsert
from vox.services.settings_store import (
    delete_conversation_meta,
    get_conversation_meta,
    list_conversation_meta,
    upsert_conversation_meta,
)

router = APIRouter(prefix="/api/conversation-meta", tags=["conversation-meta"])


@router.get("", response_model=Envelope[list[ConversationMetaRead]])
async def read_conversation_meta(
    current_user: CurrentUser,
    db: DbSession,
    conversation_id: str | None = Query(None, alias="conversationId"),
    location_id: str | None = Query(None, alias="locationId"),
) -> Envelope[list[ConversationMetaRead]]:
    """One conversation's metadata when ``conversationId`` is given, else all of them."""
    if conversation_id:
        meta = await get_conversation_meta(db, current_user.id, conversation_id)
        rows = [meta] if meta else []
    else:
        rows = await list_conversation_meta(db, current_user.id, location_id)
    return Envelope(data=[ConversationMetaRead.model_validate(m) for m in rows])


@router.post("", response_model=Envelope[ConversationMetaRead])
async def save_conversation_meta(
    data: ConversationMetaUpsert,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[ConversationMetaRead]:
    """Create or deep-merge a conversation's metadata."""
    meta = await upsert_conversation_meta(db, current_user.id, data)
    return Envelope(data=ConversationMetaRead.model_validate(meta))


@router.delete("", response_model=Envelope[dict])
async def remove_conversation_meta(
    current_user: CurrentUser,
    db: DbSession,
    conversation_id: str = Query(..., alias="conversationId", min_length=1),
) -> Envelope[dict]:
    if not await delete_conversation_meta(db, current_user.id, conversation_id):
        raise NotFoundError("Conversation metadata not found")
    return Envelope(data={"deleted": conversation_id})
