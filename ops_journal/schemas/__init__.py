"""Ops Journal API Schemas.

Schemas are organized by domain:
- base: Base models, pagination, errors
- nodes: Node tree
- records: Change records, revisions, feeds
- subscriptions: Notification subscriptions
- audit: Admin audit log
"""

from .audit import AuditEventEntry, AuditLogResponse
from .base import (
    ErrorResponse,
    JournalBaseModel,
    JournalRequestModel,
    PaginatedResponse,
    UserRef,
)
from .nodes import NodeCreate, NodeResponse, NodeTreeItem, NodeUpdate
from .records import (
    FeedResponse,
    RecordCreate,
    RecordResponse,
    RecordUpdate,
    RecordWithNode,
    RevisionResponse,
)
from .subscriptions import SubscriptionCreate, SubscriptionResponse

__all__ = [
    # Base
    "JournalBaseModel",
    "JournalRequestModel",
    "PaginatedResponse",
    "ErrorResponse",
    "UserRef",
    # Nodes
    "NodeCreate",
    "NodeUpdate",
    "NodeResponse",
    "NodeTreeItem",
    # Records
    "RecordCreate",
    "RecordUpdate",
    "RecordResponse",
    "RecordWithNode",
    "RevisionResponse",
    "FeedResponse",
    # Subscriptions
    "SubscriptionCreate",
    "SubscriptionResponse",
    # Audit
    "AuditEventEntry",
    "AuditLogResponse",
]
