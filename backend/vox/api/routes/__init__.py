"""API routes package."""

from vox.api.routes import (
    agents,
    autopilot,
    conversation_ai,
    conversation_meta,
    dashboard,
    knowledge_bases,
    leadconnector,
    settings,
)

__all__ = [
    "agents",
    "autopilot",
    "conversation_ai",
    "conversation_meta",
    "dashboard",
    "knowledge_bases",
    "leadconnector",
    "settings",
]
