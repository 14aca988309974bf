"""
SQLAlchemy 2.0 Models for VOX.

Tables mirror the Supabase schema the dashboard already uses. Users live in
Supabase auth; every row here is owned through a plain ``user_id`` UUID.
Column types stay portable (Uuid, JSON/JSONB variant) so tests can run on SQLite.
"""

import datetime as dt
from datetime import date, datetime, timezone
from enum import IntEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from vox.db.base import Base, JSONType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class AgentType(IntEnum):
    """Stored agent type codes."""

    GENERIC = 1
    QUERY = 2
    SUGGESTIONS = 3
    AUTOPILOT = 4
    CUSTOM = 99


class KnowledgeBaseType(IntEnum):
    """Stored knowledge base type codes."""

    CONVERSATION = 1
    FILE_UPLOAD = 2
    FAQ = 3
    WEB_SCRAPER = 4


class ProviderType(IntEnum):
    """provider_data.type codes."""

    GHL_LOCATION = 101


# conversation_meta_data.data_type for AI agent / knowledge base settings
AI_SETTINGS_DATA_TYPE = 26

GLOBAL_SCOPE = "global"


# =============================================================================
# MODELS
# =============================================================================


class ProviderData(Base):
    """
    OAuth tokens for an external provider, one row per (user, provider type).

    Mutated only by the authorization-code callback and the refresh flow.
    """

    __tablename__ = "provider_data"
    __table_args__ = (
        UniqueConstraint("auth_provider_id", "type", name="unique_provider_per_user"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="leadconnector")
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=ProviderType.GHL_LOCATION)
    auth_provider_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class AIAgent(Base):
    """
    Conversational AI agent owned by a user.

    At most one active agent per (user, type) for non-generic types. The
    partial unique index enforces it; AgentService deactivates siblings in
    the same transaction that activates an agent.
    """

    __tablename__ = "ai_agents"
    __table_args__ = (
        Index(
            "idx_ai_agents_one_active_per_type",
            "user_id", "type",
            unique=True,
            postgresql_where=text("is_active AND type <> 1"),
            sqlite_where=text("is_active = 1 AND type <> 1"),
        ),
        Index("idx_ai_agents_user_active", "user_id", "is_active"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=AgentType.GENERIC)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    configuration: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    knowledge_base_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class AISettings(Base):
    """Per-user AI settings; scope 'global' holds default and per-feature agents."""

    __tablename__ = "ai_settings"
    __table_args__ = (UniqueConstraint("user_id", "scope", name="unique_user_settings_scope"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    scope: Mapped[str] = mapped_column(String(50), nullable=False, default=GLOBAL_SCOPE)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class ConversationMetaData(Base):
    """
    Per-conversation settings, created lazily on first configuration.

    ``data["ai_settings"]`` carries agent overrides, extra knowledge bases and
    a mirrored ``autopilot.enabled`` flag.
    """

    __tablename__ = "conversation_meta_data"
    __table_args__ = (UniqueConstraint("user_id", "conv_id", name="unique_user_conversation_meta"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conv_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    location_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    lastmessageid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    data_type: Mapped[int] = mapped_column(Integer, nullable=False, default=AI_SETTINGS_DATA_TYPE)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class AutopilotConfig(Base):
    """
    Automation settings for one conversation, or the user's global fallback.

    ``conversation_id IS NULL`` marks the global row. (user_id, conversation_id)
    is the natural key and the idempotency key for saves.
    """

    __tablename__ = "autopilot_configs"
    __table_args__ = (
        Index(
            "idx_autopilot_configs_user_conversation",
            "user_id", "conversation_id",
            unique=True,
            postgresql_where=text("conversation_id IS NOT NULL"),
            sqlite_where=text("conversation_id IS NOT NULL"),
        ),
        Index(
            "idx_autopilot_configs_user_global",
            "user_id",
            unique=True,
            postgresql_where=text("conversation_id IS NULL"),
            sqlite_where=text("conversation_id IS NULL"),
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    conversation_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reply_delay_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_replies_per_conversation: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    max_replies_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    operating_hours: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    ai_agent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ai_model: Mapped[str] = mapped_column(String(100), nullable=False)
    ai_temperature: Mapped[float] = mapped_column(Float, nullable=False)
    ai_max_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=500)
    fallback_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    custom_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancel_on_user_reply: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    require_human_keywords: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    exclude_keywords: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    message_type: Mapped[str] = mapped_column(String(50), nullable=False, default="SMS")
    prefer_conversation_type: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class AutopilotConversationTracking(Base):
    """Denormalized per-conversation autopilot counters, re-synced after config writes."""

    __tablename__ = "autopilot_conversation_tracking"
    __table_args__ = (
        UniqueConstraint("user_id", "conversation_id", name="unique_user_conversation_tracking"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    conversation_id: Mapped[str] = mapped_column(String(255), nullable=False)
    location_id: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    conversation_status: Mapped[str] = mapped_column(String(50), nullable=False, default="open")
    conversation_type: Mapped[str] = mapped_column(String(50), nullable=False, default="SMS")
    autopilot_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_seen_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_human_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_ai_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ai_replies_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_replies_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reply_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class AutopilotAnalytics(Base):
    """Daily autopilot counters per (user, date, location)."""

    __tablename__ = "autopilot_analytics"
    __table_args__ = (
        UniqueConstraint("user_id", "date", "location_id", name="unique_user_day_location_analytics"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    location_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    total_conversations_monitored: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_messages_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_ai_responses_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_responses_cancelled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_responses_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_response_delay_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    conversations_resolved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conversations_escalated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metrics: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class KnowledgeBase(Base):
    """
    Knowledge base record. Content and embeddings live in the inference backend;
    this row holds ownership, type and a JSON blob (including query history for
    conversation knowledge bases).
    """

    __tablename__ = "knowledge_bases"
    __table_args__ = (
        Index("idx_knowledge_bases_user_type", "user_id", "type"),
        Index("idx_knowledge_bases_conversation", "user_id", "provider_type_sub_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=KnowledgeBaseType.FILE_UPLOAD)
    provider_type_sub_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )
