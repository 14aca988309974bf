"""Global AI settings and per-conversation metadata schemas."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, ConfigDict, Field, field_validator

from vox.schemas.base import BaseSchema, CamelSchema

NewConversationBehavior = Literal["greeting", "question", "professional"]

AGENT_ID_FIELDS = (
    "default_agent_id",
    "query_agent_id",
    "suggestions_agent_id",
    "autopilot_agent_id",
    "response_agent_id",
)


class GlobalSettings(BaseSchema):
    """Per-user defaults: a global agent plus optional per-feature agents."""

    model_config = ConfigDict(extra="ignore")

    default_agent_id: str | None = None
    query_agent_id: str | None = None
    suggestions_agent_id: str | None = None
    autopilot_agent_id: str | None = None
    response_agent_id: str | None = None
    use_global_agents: bool = False
    conversation_starters_enabled: bool = True
    new_conversation_behavior: NewConversationBehavior = "greeting"
    updated_at: datetime | None = None

    def agent_ids(self) -> list[str]:
        """All agent ids referenced by these settings."""
        return [getattr(self, name) for name in AGENT_ID_FIELDS if getattr(self, name)]


class GlobalSettingsUpdate(BaseSchema):
    """Partial update of global settings. Empty strings clear an agent id."""

    default_agent_id: str | None = None
    query_agent_id: str | None = None
    suggestions_agent_id: str | None = None
    autopilot_agent_id: str | None = None
    response_agent_id: str | None = None
    use_global_agents: bool | None = None
    conversation_starters_enabled: bool | None = None
    new_conversation_behavior: NewConversationBehavior | None = None

    @field_validator(*AGENT_ID_FIELDS)
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        return v or None

    def agent_ids(self) -> list[str]:
        """Agent ids this update assigns. Cleared fields are not included."""
        return [getattr(self, name) for name in AGENT_ID_FIELDS if getattr(self, name)]


# =============================================================================
# CONVERSATION SETTINGS (conversation_meta_data.data["ai_settings"])
# =============================================================================


class ConversationAgents(CamelSchema):
    """Per-feature agent overrides for one conversation."""

    model_config = ConfigDict(extra="allow")

    query: str | None = None
    suggestions: str | None = None
    autopilot: str | None = None
    response: str | None = None


class ConversationAISettings(CamelSchema):
    """Typed view of the ai_settings blob stored on a conversation."""

    model_config = ConfigDict(extra="allow")

    agents: ConversationAgents = Field(default_factory=ConversationAgents)
    default_agent: str | None = None
    knowledge_base_ids: list[str] = Field(default_factory=list)
    autopilot: dict[str, Any] = Field(default_factory=dict)

    @field_validator("agents", mode="before")
    @classmethod
    def ensure_agents(cls, v: Any) -> Any:
        if v is None:
            return {}
        return v

    @field_validator("knowledge_base_ids", mode="before")
    @classmethod
    def ensure_list(cls, v: Any) -> list:
        if not v:
            return []
        return [str(item) for item in v]

    @field_validator("autopilot", mode="before")
    @classmethod
    def ensure_dict(cls, v: Any) -> dict:
        if not isinstance(v, dict):
            return {}
        return v


class ConversationMetaRead(BaseSchema):
    """Schema for reading a conversation_meta_data row."""

    id: UUID
    conv_id: str
    user_id: UUID
    location_id: str | None
    name: str | None
    lastmessageid: str | None
    data_type: int
    data: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class ConversationMetaUpsert(BaseSchema):
    """
    Create or update conversation metadata.

    Accepts both the row format (conv_id, data) and the dashboard's settings
    format (conversationId, ai_settings).
    """

    conv_id: str = Field(..., min_length=1, validation_alias=AliasChoices("conv_id", "conversationId"))
    location_id: str | None = Field(None, validation_alias=AliasChoices("location_id", "locationId"))
    name: str | None = Field(None, max_length=255)
    lastmessageid: str | None = None
    data_type: int | None = None
    data: dict[str, Any] | None = None
    ai_settings: dict[str, Any] | None = Field(None, validation_alias=AliasChoices("ai_settings", "settings"))
