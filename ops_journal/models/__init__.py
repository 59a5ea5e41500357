"""SQLAlchemy ORM Models for Ops Journal."""

from .base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin, utcnow
from .models import (
    # Enums
    AuditEventType,
    ChangeType,
    ImpactLevel,
    NodeType,
    OutboxEventType,
    OutboxStatus,
    RecordStatus,
    Role,
    VisibilityMode,
    # Users
    User,
    # Tree
    Node,
    # Records
    ChangeRecord,
    RecordRevision,
    # Notifications
    NotificationOutbox,
    Subscription,
    # Audit
    AuditEvent,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "SoftDeleteMixin",
    "utcnow",
    # Enums
    "Role",
    "VisibilityMode",
    "NodeType",
    "ImpactLevel",
    "ChangeType",
    "RecordStatus",
    "OutboxEventType",
    "OutboxStatus",
    "AuditEventType",
    # Users
    "User",
    # Tree
    "Node",
    # Records
    "ChangeRecord",
    "RecordRevision",
    # Notifications
    "Subscription",
    "NotificationOutbox",
    # Audit
    "AuditEvent",
]
