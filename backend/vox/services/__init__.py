"""Domain services and clients for external integrations."""

from vox.services.agent_service import agent_service
from vox.services.autopilot_manager import autopilot_manager
from vox.services.inference import inference
from vox.services.knowledge_base_service import knowledge_base_service
from vox.services.leadconnector import conversation_search_cache, leadconnector
from vox.services.token_store import token_store

__all__ = [
    "agent_service",
    "autopilot_manager",
    "conversation_search_cache",
    "inference",
    "knowledge_base_service",
    "leadconnector",
    "token_store",
]
