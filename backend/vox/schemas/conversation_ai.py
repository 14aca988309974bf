"""Request bodies for the conversation AI endpoints (camelCase on the wire)."""

from typing import Any

from pydantic import Field

from vox.schemas.base import CamelSchema


class AIOverrides(CamelSchema):
    """Optional per-request AI parameters; validated by validate_ai_config."""

    model: str | None = None
    temperature: float | None = None
    humanlike_behavior: bool | None = None
    max_tokens: int | None = None


class ConversationMessage(CamelSchema):
    """A message as the dashboard passes it along for context."""

    id: str | None = None
    body: str | None = None
    direction: str | None = None
    date_added: str | None = None


class QueryRequest(AIOverrides):
    conversation_id: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1)


class SuggestionsRequest(AIOverrides):
    conversation_id: str = Field(..., min_length=1)
    query: str | None = None
    context: str | None = None
    recent_messages: list[ConversationMessage] = Field(default_factory=list)
    customer_info: dict[str, Any] = Field(default_factory=dict)
    knowledgebase_id: str | None = None
    limit: int = Field(3, ge=1)


class ResponseSuggestionsRequest(AIOverrides):
    """
    Draft replies to the customer's last message.

    ``autopilot`` selects the autopilot agent; otherwise the response agent.
    """

    conversation_id: str = Field(..., min_length=1)
    last_customer_message: str = Field(..., min_length=1)
    limit: int | None = None
    autopilot: bool = False
    ai_agent_id: str | None = None
    knowledgebase_id: str | None = None
    context: str | None = None
    recent_messages: list[ConversationMessage] = Field(default_factory=list)
    customer_info: dict[str, Any] = Field(default_factory=dict)


class SummaryRequest(AIOverrides):
    conversation_id: str = Field(..., min_length=1)
    regenerate: bool = False
    messages: list[ConversationMessage] = Field(default_factory=list)
    knowledgebase_id: str | None = None
    location_id: str | None = None


class TrainRequest(CamelSchema):
    conversation_id: str = Field(..., min_length=1)
    location_id: str = Field(..., min_length=1)
    messages: list[ConversationMessage] = Field(default_factory=list)
    last_message_id: str | None = None
    knowledgebase_id: str | None = None
    contact_info: dict[str, Any] = Field(default_factory=dict)
    conversation_metadata: dict[str, Any] = Field(default_factory=dict)
