"""Pydantic schemas for change records, revisions and feeds."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import ChangeType, ImpactLevel, RecordStatus
from .base import JournalBaseModel, JournalRequestModel, PaginatedResponse, TimestampMixin


class RecordCreate(JournalRequestModel):
    node_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    description: str = Field(..., min_length=1)
    reason: str | None = None
    change_type: ChangeType = ChangeType.OTHER
    impact: ImpactLevel = ImpactLevel.MEDIUM
    status: RecordStatus = RecordStatus.PLANNED
    links: list[str] = Field(default_factory=list, max_length=50)
    occurred_at: datetime | None = None
    secret_ack: bool = False


class RecordUpdate(JournalRequestModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = Field(default=None, min_length=1)
    reason: str | None = None
    change_type: ChangeType | None = None
    impact: ImpactLevel | None = None
    status: RecordStatus | None = None
    links: list[str] | None = Field(default=None, max_length=50)
    occurred_at: datetime | None = None
    secret_ack: bool = False


class RecordResponse(JournalBaseModel, TimestampMixin):
    id: UUID
    node_id: UUID
    occurred_at: datetime
    title: str
    description: str
    reason: str | None = None
    change_type: ChangeType
    impact: ImpactLevel
    status: RecordStatus
    links: list[str]
    created_by_id: UUID
    updated_by_id: UUID | None = None


class RecordWithNode(RecordResponse):
    """Record plus the node fields a feed needs to render."""

    node_name: str
    node_path: str


class RevisionResponse(JournalBaseModel):
    id: UUID
    record_id: UUID
    editor_id: UUID
    snapshot_before: dict[str, Any]
    snapshot_after: dict[str, Any]
    secret_ack: bool | None = None
    created_at: datetime


class FeedResponse(PaginatedResponse):
    items: list[RecordWithNode]
