"""AI agent schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field, field_validator

from vox.db.models import AgentType
from vox.schemas.base import BaseSchema


class AgentBase(BaseSchema):
    """Base agent schema with common fields."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    type: AgentType = AgentType.GENERIC
    system_prompt: str = ""
    configuration: dict[str, Any] = Field(default_factory=dict)
    knowledge_base_ids: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("configuration", "data", mode="before")
    @classmethod
    def ensure_dict(cls, v: Any) -> dict:
        if v is None:
            return {}
        return v

    @field_validator("knowledge_base_ids", mode="before")
    @classmethod
    def ensure_list(cls, v: Any) -> list:
        if v is None:
            return []
        return [str(item) for item in v]


class AgentCreate(AgentBase):
    """Schema for creating an agent."""

    is_active: bool = True


class AgentRead(AgentBase):
    """Schema for reading agent data."""

    id: UUID
    user_id: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AgentUpdate(BaseSchema):
    """Schema for updating an agent. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    type: AgentType | None = None
    system_prompt: str | None = None
    is_active: bool | None = None
    configuration: dict[str, Any] | None = None
    knowledge_base_ids: list[str] | None = None
    data: dict[str, Any] | None = None


class AgentList(BaseSchema):
    """One page of agents."""

    agents: list[AgentRead]
    total: int
    page: int
    limit: int
