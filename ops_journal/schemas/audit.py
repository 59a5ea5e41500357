"""Pydantic schemas for the admin audit log."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import AuditEventType
from .base import JournalBaseModel, PaginatedResponse


class AuditEventEntry(JournalBaseModel):
    """A single audit event."""

    id: UUID
    type: AuditEventType
    actor_id: UUID | None = None  # None for system actions
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="details")
    created_at: datetime


class AuditLogResponse(PaginatedResponse):
    """Paginated audit log response."""

    items: list[AuditEventEntry]
