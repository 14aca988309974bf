"""Knowledge base schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field, field_validator

from vox.db.models import KnowledgeBaseType
from vox.schemas.base import BaseSchema


class KnowledgeBaseBase(BaseSchema):
    """Base knowledge base schema with common fields."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    type: KnowledgeBaseType = KnowledgeBaseType.FILE_UPLOAD
    provider_type_sub_id: str | None = Field(None, max_length=255)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def ensure_dict(cls, v: Any) -> dict:
        """Ensure data is a dict."""
        if v is None:
            return {}
        return v


class KnowledgeBaseCreate(KnowledgeBaseBase):
    """Schema for creating a knowledge base."""

    is_active: bool = True


class KnowledgeBaseRead(KnowledgeBaseBase):
    """Schema for reading knowledge base data."""

    id: UUID
    user_id: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime


class KnowledgeBaseUpdate(BaseSchema):
    """Schema for updating a knowledge base. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None
    data: dict[str, Any] | None = None


class KnowledgeBaseList(BaseSchema):
    knowledge_bases: list[KnowledgeBaseRead]
    total: int
    page: int
    limit: int
