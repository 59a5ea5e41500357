"""Pydantic schemas for subscriptions."""

from datetime import datetime
from uuid import UUID

from ..models import ImpactLevel
from .base import JournalBaseModel, JournalRequestModel


class SubscriptionCreate(JournalRequestModel):
    node_id: UUID
    include_descendants: bool = True
    notify_on_edit: bool = True
    impact_threshold: ImpactLevel | None = None


class SubscriptionResponse(JournalBaseModel):
    id: UUID
    user_id: UUID
    node_id: UUID
    include_descendants: bool
    notify_on_edit: bool
    impact_threshold: ImpactLevel | None = None
    created_at: datetime
