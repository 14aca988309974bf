"""Pydantic schemas for API request/response validation."""

from vox.schemas.agents import AgentCreate, AgentList, AgentRead, AgentUpdate
from vox.schemas.autopilot import (
    AutopilotConfigLookup,
    AutopilotConfigRead,
    AutopilotConfigResult,
    AutopilotConfigSave,
    AutopilotConversation,
    AutopilotConversationList,
    ReplyCheck,
    ReplyDecision,
    ReplyRecord,
    TrackingRead,
    TrackingUpsert,
)
from vox.schemas.base import Envelope
from vox.schemas.knowledge_bases import (
    KnowledgeBaseCreate,
    KnowledgeBaseList,
    KnowledgeBaseRead,
    KnowledgeBaseUpdate,
)
from vox.schemas.leadconnector import ConversationSearchParams, ConversationSearchResult, GhlTokens
from vox.schemas.settings import (
    ConversationAISettings,
    ConversationMetaRead,
    ConversationMetaUpsert,
    GlobalSettings,
    GlobalSettingsUpdate,
)

__all__ = [
    # Envelope
    "Envelope",
    # Agents
    "AgentCreate",
    "AgentList",
    "AgentRead",
    "AgentUpdate",
    # Knowledge bases
    "KnowledgeBaseCreate",
    "KnowledgeBaseList",
    "KnowledgeBaseRead",
    "KnowledgeBaseUpdate",
    # Settings
    "GlobalSettings",
    "GlobalSettingsUpdate",
    "ConversationAISettings",
    "ConversationMetaRead",
    "ConversationMetaUpsert",
    # Autopilot
    "AutopilotConfigSave",
    "AutopilotConfigRead",
    "AutopilotConfigResult",
    "AutopilotConfigLookup",
    "TrackingUpsert",
    "TrackingRead",
    "ReplyCheck",
    "ReplyDecision",
    "ReplyRecord",
    "AutopilotConversation",
    "AutopilotConversationList",
    # LeadConnector
    "GhlTokens",
    "ConversationSearchParams",
    "ConversationSearchResult",
]
