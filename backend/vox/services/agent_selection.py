"""
Agent selection policy.

Decides which AI agent handles a conversational feature. Pure functions: the
caller loads global settings, conversation settings and the ordered list of
active agent ids, and passes them in.

Resolution order (first match wins):
1. conversation override for the feature, else the conversation default agent
2. global per-feature agent, else the global default agent
3. the first active agent (skipped with require_default=True)
4. None

Tiers 1 and 2 only count when the referenced agent is still active, so a stale
override pointing at a deleted or deactivated agent is ignored.
"""

import logging
from collections.abc import Sequence
from enum import Enum
from typing import Any, Literal

from vox.schemas.settings import ConversationAISettings, GlobalSettings

logger = logging.getLogger(__name__)

Feature = Literal["query", "suggestions", "autopilot", "response"]

FEATURES: tuple[Feature, ...] = ("query", "suggestions", "autopilot", "response")

NO_AGENT_MESSAGE = "No active AI agents found. Please create an AI agent first."


class SelectionTier(str, Enum):
    CONVERSATION = "conversation"
    GLOBAL = "global"
    FALLBACK = "fallback"
    NONE = "none"


def _conversation_candidates(feature: Feature, settings: ConversationAISettings | None) -> list[str]:
    if settings is None:
        return []
    return [c for c in (getattr(settings.agents, feature, None), settings.default_agent) if c]


def _global_candidates(feature: Feature, settings: GlobalSettings | None) -> list[str]:
    if settings is None:
        return []
    return [c for c in (getattr(settings, f"{feature}_agent_id", None), settings.default_agent_id) if c]


def _select(
    feature: Feature,
    global_settings: GlobalSettings | None,
    conversation_settings: ConversationAISettings | None,
    active_agent_ids: Sequence[str],
    require_default: bool,
) -> tuple[str | None, SelectionTier]:
    if feature not in FEATURES:
        raise ValueError(f"Unknown AI feature: {feature}")

    active = [str(agent_id) for agent_id in active_agent_ids]
    active_set = set(active)

    for candidate in _conversation_candidates(feature, conversation_settings):
        if candidate in active_set:
            return candidate, SelectionTier.CONVERSATION

    for candidate in _global_candidates(feature, global_settings):
        if candidate in active_set:
            return candidate, SelectionTier.GLOBAL

    if active and not require_default:
        return active[0], SelectionTier.FALLBACK

    return None, SelectionTier.NONE


def select_agent_for_feature(
    feature: Feature,
    global_settings: GlobalSettings | None,
    conversation_settings: ConversationAISettings | None,
    active_agent_ids: Sequence[str],
    *,
    require_default: bool = False,
) -> str | None:
    """
    Return the agent id to use for ``feature``, or None when no agent applies.

    ``active_agent_ids`` must be ordered deterministically (oldest first, then
    by id); the fallback tier takes its first element.
    """
    agent_id, _ = _select(feature, global_settings, conversation_settings, active_agent_ids, require_default)
    return agent_id


def selection_tier(
    feature: Feature,
    global_settings: GlobalSettings | None,
    conversation_settings: ConversationAISettings | None,
    active_agent_ids: Sequence[str],
    *,
    require_default: bool = False,
) -> SelectionTier:
    """Which tier ``select_agent_for_feature`` would resolve from."""
    _, tier = _select(feature, global_settings, conversation_settings, active_agent_ids, require_default)
    return tier


def describe_selection(
    feature: Feature,
    global_settings: GlobalSettings | None,
    conversation_settings: ConversationAISettings | None,
    active_agent_ids: Sequence[str],
    *,
    require_default: bool = False,
) -> str:
    """One-line summary of a selection, for logs."""
    agent_id, tier = _select(feature, global_settings, conversation_settings, active_agent_ids, require_default)
    if agent_id is None:
        return f"{feature}: no agent available ({len(active_agent_ids)} active)"
    return f"{feature}: agent {agent_id} from {tier.value} settings"


def resolve_active_agent(agents: Sequence[Any], default_agent_id: str | None = None) -> Any | None:
    """
    Global-tier rule used by the autopilot manager.

    ``agents`` are the user's active agents in deterministic order. Returns the
    global default when it is among them, else the first one, else None.
    """
    if not agents:
        return None
    if default_agent_id:
        for agent in agents:
            if str(agent.id) == default_agent_id:
                return agent
    if len(agents) > 1:
        logger.info("Multiple active agents (%d), using the oldest", len(agents))
    return agents[0]
