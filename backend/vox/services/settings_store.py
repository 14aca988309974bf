"""Global AI settings and per-conversation metadata."""

import logging
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from vox.config import get_settings
from vox.db.models import AI_SETTINGS_DATA_TYPE, GLOBAL_SCOPE, AIAgent, AISettings, ConversationMetaData
from vox.errors import NotFoundError, ValidationError
from vox.schemas.settings import (
    ConversationAISettings,
    ConversationMetaUpsert,
    GlobalSettings,
    GlobalSettingsUpdate,
)
from vox.services.agent_selection import Feature, describe_selection, select_agent_for_feature

logger = logging.getLogger(__name__)
settings = get_settings()


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``. Nested dicts merge, everything else replaces."""
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def parse_uuid(value: str, label: str = "id") -> UUID:
    """Parse a client-supplied id, reporting a 400 instead of a 500 on garbage."""
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}")


# =============================================================================
# GLOBAL SETTINGS
# =============================================================================


async def _global_settings_row(db: AsyncSession, user_id: UUID) -> AISettings | None:
    result = await db.execute(
        select(AISettings).where(AISettings.user_id == user_id, AISettings.scope == GLOBAL_SCOPE)
    )
    return result.scalar_one_or_none()


async def get_global_settings(db: AsyncSession, user_id: UUID) -> GlobalSettings:
    """The user's global settings, or defaults when none were saved."""
    row = await _global_settings_row(db, user_id)
    if row is None:
        return GlobalSettings()
    return GlobalSettings.model_validate(row.data or {})


async def _ensure_agents_owned(db: AsyncSession, user_id: UUID, agent_ids: list[str]) -> None:
    if not agent_ids:
        return
    wanted = {parse_uuid(agent_id, "agent id") for agent_id in agent_ids}
    result = await db.execute(
        select(AIAgent.id).where(AIAgent.user_id == user_id, AIAgent.id.in_(wanted))
    )
    found = set(result.scalars())
    missing = wanted - found
    if missing:
        raise NotFoundError("Agent not found", detail=", ".join(sorted(str(m) for m in missing)))


async def save_global_settings(
    db: AsyncSession, user_id: UUID, update: GlobalSettingsUpdate
) -> GlobalSettings:
    """
    Apply a partial update to the user's global settings (upsert).

    Only agent ids assigned by this update must belong to the user. Ids already
    stored may point at deleted agents; selection skips those.
    """
    await _ensure_agents_owned(db, user_id, update.agent_ids())
    current = await get_global_settings(db, user_id)
    merged = current.model_copy(update=update.model_dump(exclude_unset=True))
    merged = GlobalSettings.model_validate(
        merged.model_dump() | {"updated_at": datetime.now(timezone.utc)}
    )

    row = await _global_settings_row(db, user_id)
    data = merged.model_dump(mode="json")
    if row is None:
        db.add(AISettings(user_id=user_id, scope=GLOBAL_SCOPE, data=data))
    else:
        row.data = {**(row.data or {}), **data}
    await db.commit()

    logger.info("Saved global AI settings for user %s", user_id)
    return merged


# =============================================================================
# CONVERSATION METADATA
# =============================================================================


async def get_conversation_meta(
    db: AsyncSession, user_id: UUID, conv_id: str
) -> ConversationMetaData | None:
    result = await db.execute(
        select(ConversationMetaData).where(
            ConversationMetaData.user_id == user_id,
            ConversationMetaData.conv_id == conv_id,
        )
    )
    return result.scalar_one_or_none()


async def list_conversation_meta(
    db: AsyncSession, user_id: UUID, location_id: str | None = None
) -> list[ConversationMetaData]:
    query = select(ConversationMetaData).where(ConversationMetaData.user_id == user_id)
    if location_id:
        query = query.where(ConversationMetaData.location_id == location_id)
    query = query.order_by(ConversationMetaData.created_at.desc())
    result = await db.execute(query)
    return list(result.scalars())


def _check_ai_settings(data: dict[str, Any]) -> None:
    """Reject an ai_settings blob the AI routes could not read back."""
    if "ai_settings" not in data:
        return
    try:
        ConversationAISettings.model_validate(data["ai_settings"])
    except SchemaValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in ("ai_settings", *first["loc"]))
        raise ValidationError(f"{location}: {first['msg']}")


async def upsert_conversation_meta(
    db: AsyncSession, user_id: UUID, payload: ConversationMetaUpsert, *, commit: bool = True
) -> ConversationMetaData:
    """
    Create or update a conversation's metadata row.

    ``payload.data`` is deep-merged into the stored blob; ``payload.ai_settings``
    is deep-merged into ``data["ai_settings"]``.
    """
    incoming: dict[str, Any] = dict(payload.data or {})
    if payload.ai_settings is not None:
        incoming = deep_merge(incoming, {"ai_settings": payload.ai_settings})
    _check_ai_settings(incoming)

    meta = await get_conversation_meta(db, user_id, payload.conv_id)
    if meta is None:
        meta = ConversationMetaData(
            user_id=user_id,
            conv_id=payload.conv_id,
            location_id=payload.location_id,
            name=payload.name or f"Conversation {payload.conv_id[:8]}",
            lastmessageid=payload.lastmessageid,
            data_type=payload.data_type or AI_SETTINGS_DATA_TYPE,
            data=incoming,
        )
        db.add(meta)
    else:
        meta.data = deep_merge(meta.data or {}, incoming)
        for attr in ("location_id", "name", "lastmessageid", "data_type"):
            value = getattr(payload, attr)
            if value is not None:
                setattr(meta, attr, value)

    if commit:
        await db.commit()
        await db.refresh(meta)
    return meta


async def delete_conversation_meta(db: AsyncSession, user_id: UUID, conv_id: str) -> bool:
    result = await db.execute(
        delete(ConversationMetaData).where(
            ConversationMetaData.user_id == user_id,
            ConversationMetaData.conv_id == conv_id,
        )
    )
    await db.commit()
    return result.rowcount > 0


def conversation_ai_settings(meta: ConversationMetaData | None) -> ConversationAISettings | None:
    """Typed view of ``meta.data["ai_settings"]``; None when the conversation has none."""
    if meta is None or not meta.data:
        return None
    raw = meta.data.get("ai_settings")
    if not isinstance(raw, dict):
        return None
    try:
        return ConversationAISettings.model_validate(raw)
    except SchemaValidationError:
        logger.warning("Ignoring unreadable ai_settings on conversation %s", meta.conv_id, exc_info=True)
        return None


# =============================================================================
# AGENT SELECTION INPUTS
# =============================================================================


async def list_active_agents(db: AsyncSession, user_id: UUID) -> list[AIAgent]:
    """Active agents, oldest first with id as tie-break, so fallbacks are deterministic."""
    result = await db.execute(
        select(AIAgent)
        .where(AIAgent.user_id == user_id, AIAgent.is_active.is_(True))
        .order_by(AIAgent.created_at, AIAgent.id)
    )
    return list(result.scalars())


@dataclass
class SelectionContext:
    """Everything the selection policy needs for one user and conversation."""

    global_settings: GlobalSettings
    conversation_settings: ConversationAISettings | None
    active_agents: list[AIAgent] = field(default_factory=list)

    @property
    def active_agent_ids(self) -> list[str]:
        return [str(agent.id) for agent in self.active_agents]

    def select(self, feature: Feature) -> AIAgent | None:
        """Resolve the agent for ``feature`` under the configured fallback policy."""
        require_default = settings.agent_fallback_policy == "require_default"
        agent_id = select_agent_for_feature(
            feature,
            self.global_settings,
            self.conversation_settings,
            self.active_agent_ids,
            require_default=require_default,
        )
        logger.info(
            "Agent selection: %s",
            describe_selection(
                feature,
                self.global_settings,
                self.conversation_settings,
                self.active_agent_ids,
                require_default=require_default,
            ),
        )
        if agent_id is None:
            return None
        return next(agent for agent in self.active_agents if str(agent.id) == agent_id)

    def extra_knowledge_base_ids(self, conversation_id: str) -> list[str]:
        """Knowledge bases attached to the conversation, minus the conversation's own."""
        if self.conversation_settings is None:
            return []
        return [kb for kb in self.conversation_settings.knowledge_base_ids if kb != conversation_id]


async def load_selection_context(
    db: AsyncSession, user_id: UUID, conversation_id: str | None
) -> SelectionContext:
    """Load global settings, conversation settings and active agents in one go."""
    global_settings = await get_global_settings(db, user_id)
    conversation_settings = None
    if conversation_id:
        meta = await get_conversation_meta(db, user_id, conversation_id)
        conversation_settings = conversation_ai_settings(meta)
    active_agents = await list_active_agents(db, user_id)
    return SelectionContext(global_settings, conversation_settings, active_agents)
