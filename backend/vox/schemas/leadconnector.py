"""LeadConnector (GoHighLevel) proxy schemas."""

from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field

from vox.schemas.base import BaseSchema, CamelSchema


class AuthorizeRedirect(BaseSchema):
    redirect_url: str


class GhlTokens(BaseSchema):
    """Stored OAuth tokens for a user. ``error`` is set when none are stored."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    expires_at: datetime | None = None
    error: str | None = None


class ConversationSearchParams(CamelSchema):
    """Optional filters forwarded to /conversations/search."""

    query: str | None = None
    limit: int = Field(20, ge=1, le=100)
    assigned_to: str | None = None
    contact_id: str | None = None
    followers: str | None = None
    id: str | None = None
    last_message_action: str | None = None
    last_message_direction: str | None = None
    last_message_type: str | None = None
    mentions: str | None = None
    score_profile: str | None = None
    score_profile_min: int | None = None
    score_profile_max: int | None = None
    sort: str = "desc"
    sort_by: str = "last_message_date"
    sort_score_profile: str | None = None
    start_after_date: str | None = None
    status: str | None = None


class ConversationSearchResult(BaseSchema):
    conversations: list[dict[str, Any]]
    total: int
    has_more: bool = False
    next_cursor: Any = None


class SendMessageRequest(CamelSchema):
    """Body of POST /api/leadconnector/conversations/messages/send; extra fields pass through."""

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1)
    message: str | None = None
    contact_id: str = Field(..., min_length=1)
