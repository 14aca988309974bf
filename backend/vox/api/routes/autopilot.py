"""Autopilot configuration and conversation tracking routes."""

from fastapi import APIRouter, Query

from vox.api.deps import CurrentUser, DbSession
from vox.errors import NotFoundError
from vox.schemas.autopilot import (
    AutopilotConfigLookup,
    AutopilotConfigRead,
    AutopilotConfigResult,
    AutopilotConfigSave,
    AutopilotConversationList,
    ReplyCheck,
    ReplyDecision,
    ReplyRecord,
    TrackingRead,
    TrackingUpsert,
)
from vox.schemas.base import Envelope
from vox.services import autopilot_manager

router = APIRouter(prefix="/api/autopilot", tags=["autopilot"])


@router.get("/config", response_model=Envelope[AutopilotConfigLookup])
async def get_autopilot_config(
    current_user: CurrentUser,
    db: DbSession,
    conversation_id: str | None = Query(None, alias="conversationId"),
) -> Envelope[AutopilotConfigLookup]:
    """The conversation's config, falling back to the global one. ``config`` is null when neither exists."""
    config = await autopilot_manager.get_config(db, current_user.id, conversation_id)
    return Envelope(
        data=AutopilotConfigLookup(config=AutopilotConfigRead.model_validate(config) if config else None)
    )


@router.post("/config", response_model=Envelope[AutopilotConfigResult])
async def save_autopilot_config(
    data: AutopilotConfigSave,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[AutopilotConfigResult]:
    """
    Create or partially update an autopilot config.

    Tracking and analytics are synced afterwards; their failures are reported
    in the result but never fail the request.
    """
    result = await autopilot_manager.save_config(db, current_user.id, data)
    return Envelope(data=result)


@router.delete("/config", response_model=Envelope[dict])
async def delete_autopilot_config(
    current_user: CurrentUser,
    db: DbSession,
    conversation_id: str | None = Query(None, alias="conversationId"),
) -> Envelope[dict]:
    """Delete the conversation's config (or the global one); autopilot becomes disabled."""
    if not await autopilot_manager.delete_config(db, current_user.id, conversation_id):
        raise NotFoundError("Autopilot config not found")
    return Envelope(data={"deleted": True, "conversation_id": conversation_id})


# =============================================================================
# TRACKING
# =============================================================================


@router.get("/tracking", response_model=Envelope[list[TrackingRead]])
async def list_tracking(
    current_user: CurrentUser,
    db: DbSession,
    conversation_id: str | None = Query(None, alias="conversationId"),
) -> Envelope[list[TrackingRead]]:
    rows = await autopilot_manager.list_tracking(db, current_user.id, conversation_id)
    return Envelope(data=[TrackingRead.model_validate(t) for t in rows])


@router.post("/tracking", response_model=Envelope[TrackingRead])
async def upsert_tracking(
    data: TrackingUpsert,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[TrackingRead]:
    """Record contact details for a conversation. Reply counters are left alone."""
    tracking = await autopilot_manager.upsert_tracking(db, current_user.id, data)
    return Envelope(data=TrackingRead.model_validate(tracking))


@router.get("/conversations", response_model=Envelope[AutopilotConversationList])
async def list_autopilot_conversations(
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[AutopilotConversationList]:
    """Configured conversations with reply counters, plus totals for the dashboard."""
    overview = await autopilot_manager.list_conversations(db, current_user.id)
    return Envelope(data=overview)


# =============================================================================
# REPLIES
# =============================================================================


@router.post("/eligibility", response_model=Envelope[ReplyDecision])
async def check_reply_eligibility(
    data: ReplyCheck,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[ReplyDecision]:
    """Whether autopilot may answer this inbound message now, and if not, why."""
    decision = await autopilot_manager.check_reply_eligibility(
        db, current_user.id, data.conversation_id, data.message, data.message_id
    )
    return Envelope(data=decision)


@router.post("/replies", response_model=Envelope[TrackingRead])
async def record_reply(
    data: ReplyRecord,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[TrackingRead]:
    """Count a sent AI reply. Repeating the same messageId does not count twice."""
    tracking = await autopilot_manager.record_reply(db, current_user.id, data.conversation_id, data.message_id)
    return Envelope(data=TrackingRead.model_validate(tracking))
