"""Base schema configuration."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

DataT = TypeVar("DataT")


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class CamelSchema(BaseSchema):
    """Payloads the dashboard exchanges in camelCase (conversationId, aiAgentId, ...)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Envelope(BaseModel, Generic[DataT]):
    """Success envelope: {"success": true, "data": ...}."""

    success: bool = True
    data: DataT
