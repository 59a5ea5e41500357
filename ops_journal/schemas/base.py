"""Base schemas and common types for the Ops Journal API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr

from ..models import Role


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class JournalBaseModel(BaseModel):
    """Base model for responses."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


class JournalRequestModel(BaseModel):
    """Base model for request bodies. Enum fields stay enum members."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
    )


class TimestampMixin(BaseModel):
    """Mixin for created/updated timestamps."""

    created_at: datetime
    updated_at: datetime | None = None


# =============================================================================
# PAGINATION
# =============================================================================


class PaginatedResponse(JournalBaseModel):
    """Wrapper for limit/offset paginated responses."""

    items: list[Any]
    total: int
    limit: int
    offset: int


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorResponse(JournalBaseModel):
    """Standard error response format."""

    error: str
    message: str


# =============================================================================
# COMMON REFERENCE SCHEMAS
# =============================================================================


class UserRef(JournalBaseModel):
    """The authenticated user, as returned by /me."""

    id: UUID
    name: str
    email: EmailStr
    role: Role
