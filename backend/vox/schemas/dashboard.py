"""Dashboard and health schemas."""

from typing import Literal

from vox.schemas.base import BaseSchema


class DashboardStats(BaseSchema):
    """Headline counts. A count that could not be loaded is reported as 0."""

    total_agents: int = 0
    active_agents: int = 0
    knowledge_bases: int = 0
    autopilot_conversations: int = 0


class InferenceHealth(BaseSchema):
    status: Literal["reachable", "unreachable"]
    backend_url: str
    detail: dict | str | None = None
