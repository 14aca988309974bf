"""Autopilot config and conversation tracking schemas."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, Field, field_validator

from vox.schemas.base import BaseSchema, CamelSchema

VALID_MESSAGE_TYPES = ("SMS", "Email", "WhatsApp", "FB", "IG", "Live_Chat", "Custom")
DEFAULT_MESSAGE_TYPE = "SMS"

DEFAULT_FALLBACK_MESSAGE = "Thank you for your message. I'll get back to you as soon as possible."


def default_operating_hours() -> dict[str, Any]:
    return {
        "enabled": False,
        "start": "09:00",
        "end": "17:00",
        "timezone": "UTC",
        "days": [1, 2, 3, 4, 5],
    }


class OperatingHours(CamelSchema):
    """Window in which autopilot may reply. Days are ISO weekdays (1 = Monday)."""

    enabled: bool = False
    start: str = Field("09:00", pattern=r"^\d{2}:\d{2}$")
    end: str = Field("17:00", pattern=r"^\d{2}:\d{2}$")
    timezone: str = "UTC"
    days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])

    @field_validator("days")
    @classmethod
    def valid_days(cls, v: list[int]) -> list[int]:
        if any(day < 0 or day > 7 for day in v):
            raise ValueError("days must be weekday numbers between 0 and 7")
        return v


class AutopilotConfigSave(CamelSchema):
    """
    Body of POST /api/autopilot/config.

    Only fields the caller actually sends are applied to an existing row.
    ``aiModel``/``aiTemperature`` are accepted for compatibility and ignored:
    model and temperature always come from the active agent.
    """

    conversation_id: str | None = None
    location_id: str | None = None
    is_enabled: bool | None = None
    reply_delay_minutes: int | None = Field(None, ge=0)
    max_replies_per_conversation: int | None = Field(None, ge=0)
    max_replies_per_day: int | None = Field(None, ge=0)
    operating_hours: OperatingHours | None = None
    ai_agent_id: str | None = None
    ai_model: str | None = None
    ai_temperature: float | None = None
    ai_max_tokens: int | None = Field(None, gt=0)
    fallback_message: str | None = None
    custom_prompt: str | None = None
    cancel_on_user_reply: bool | None = None
    require_human_keywords: list[str] | None = None
    exclude_keywords: list[str] | None = None
    # Free text: unknown values coerce to SMS instead of failing validation
    message_type: str | None = None
    prefer_conversation_type: bool | None = None
    conversation_metadata: dict[str, Any] | None = None
    contact_metadata: dict[str, Any] | None = None

    @field_validator("conversation_id", "location_id", "ai_agent_id")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        return v or None


class AutopilotConfigRead(BaseSchema):
    """Schema for reading an autopilot_configs row."""

    id: UUID
    user_id: UUID
    conversation_id: str | None
    location_id: str | None
    is_enabled: bool
    reply_delay_minutes: int
    max_replies_per_conversation: int
    max_replies_per_day: int
    operating_hours: dict[str, Any]
    ai_agent_id: str | None
    ai_model: str
    ai_temperature: float
    ai_max_tokens: int
    fallback_message: str | None
    custom_prompt: str | None
    cancel_on_user_reply: bool
    require_human_keywords: list[str]
    exclude_keywords: list[str]
    message_type: str
    prefer_conversation_type: bool
    metadata: dict[str, Any] = Field(validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime
    updated_at: datetime


class AutopilotConfigResult(BaseSchema):
    """Outcome of a save. ``tracking_synced`` is None when there was nothing to sync."""

    config: AutopilotConfigRead
    tracking_synced: bool | None = None
    analytics_initialized: bool = False


class AutopilotConfigLookup(BaseSchema):
    config: AutopilotConfigRead | None


# =============================================================================
# TRACKING
# =============================================================================


class TrackingUpsert(CamelSchema):
    """Body of POST /api/autopilot/tracking."""

    conversation_id: str = Field(..., min_length=1)
    location_id: str = Field(..., min_length=1)
    contact_name: str | None = None
    contact_phone: str | None = None
    contact_email: str | None = None
    conversation_status: str | None = None
    conversation_type: str | None = None
    conversation_name: str | None = None
    autopilot_enabled: bool | None = None
    last_seen: str | None = None


class TrackingRead(BaseSchema):
    """Schema for reading an autopilot_conversation_tracking row."""

    id: UUID
    user_id: UUID
    conversation_id: str
    location_id: str
    contact_name: str | None
    contact_phone: str | None
    contact_email: str | None
    conversation_status: str
    conversation_type: str
    autopilot_enabled: bool
    last_seen_message_id: str | None
    last_human_message_at: datetime | None
    last_ai_message_at: datetime | None
    ai_replies_count: int
    ai_replies_today: int
    last_reply_date: date | None
    data: dict[str, Any]
    created_at: datetime
    updated_at: datetime


# =============================================================================
# REPLY RULES
# =============================================================================


class ReplyCheck(CamelSchema):
    """Body of POST /api/autopilot/eligibility: an inbound message awaiting a possible reply."""

    conversation_id: str = Field(..., min_length=1)
    message: str = ""
    message_id: str | None = None


class ReplyDecision(BaseSchema):
    """Whether autopilot may answer now. ``reason`` names the first rule that blocked it."""

    eligible: bool
    reason: str | None = None
    config_id: UUID | None = None
    reply_delay_minutes: int | None = None
    message_type: str | None = None
    fallback_message: str | None = None


class ReplyRecord(CamelSchema):
    """Body of POST /api/autopilot/replies: an AI reply that was sent."""

    conversation_id: str = Field(..., min_length=1)
    message_id: str | None = None


# =============================================================================
# CONVERSATION OVERVIEW
# =============================================================================


class AutopilotConversation(BaseSchema):
    """One configured conversation with its reply counters and best-known contact details."""

    conversation_id: str
    location_id: str | None
    is_active: bool
    responses_today: int
    total_responses: int
    agent_name: str
    contact_name: str
    contact_phone: str
    contact_email: str
    conversation_name: str
    conversation_status: str
    last_activity: datetime
    created_at: datetime
    updated_at: datetime
    settings: dict[str, Any]


class AutopilotConversationStats(BaseSchema):
    total: int = 0
    active: int = 0
    inactive: int = 0
    responses_today: int = 0


class AutopilotConversationList(BaseSchema):
    conversations: list[AutopilotConversation]
    stats: AutopilotConversationStats
