"""SQLAlchemy ORM Models for Ops Journal.

Column types are portable (JSON, Uuid) so the same metadata runs on
PostgreSQL in production and SQLite in the test suite.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin, utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _pg_enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class Role(str, PyEnum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class VisibilityMode(str, PyEnum):
    INHERIT = "inherit"
    PUBLIC_INTERNAL = "public_internal"
    RESTRICTED = "restricted"


class NodeType(str, PyEnum):
    ORG = "org"
    TEAM = "team"
    SYSTEM = "system"
    SERVICE = "service"
    ENVIRONMENT = "environment"
    OTHER = "other"


class ImpactLevel(str, PyEnum):
    """Ordered impact scale: low < medium < high."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return list(ImpactLevel).index(self)

    def meets(self, threshold: "ImpactLevel | None") -> bool:
        """True when this level is at or above ``threshold`` (None always passes)."""
        if threshold is None:
            return True
        return self.rank >= threshold.rank


impact_level_type = _pg_enum(ImpactLevel, "impact_level")


class ChangeType(str, PyEnum):
    FEATURE = "feature"
    FIX = "fix"
    MIGRATION = "migration"
    CONFIG = "config"
    OTHER = "other"


class RecordStatus(str, PyEnum):
    PLANNED = "planned"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    MONITORING = "monitoring"


class OutboxEventType(str, PyEnum):
    NEW_RECORD = "new_record"
    EDITED_RECORD = "edited_record"


class OutboxStatus(str, PyEnum):
    """Delivery status. ``sent`` and ``failed`` are terminal."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AuditEventType(str, PyEnum):
    NODE_CREATE = "node_create"
    NODE_MOVE = "node_move"
    NODE_RENAME = "node_rename"
    NODE_RESTRICT = "node_restrict"
    NODE_DELETE = "node_delete"
    RECORD_CREATE = "record_create"
    RECORD_EDIT = "record_edit"
    RECORD_DELETE = "record_delete"
    SUBSCRIPTION_ADD = "subscription_add"
    SUBSCRIPTION_REMOVE = "subscription_remove"
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILURE = "notification_failure"


# =============================================================================
# USERS
# =============================================================================


class User(Base, UUIDMixin, SoftDeleteMixin):
    """Application user. The role is global to the deployment."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[Role] = mapped_column(
        _pg_enum(Role, "user_role"), default=Role.VIEWER, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# TREE
# =============================================================================


class Node(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """A position in the org/system hierarchy.

    ``path`` and ``path_ids`` denormalize the ancestor chain. Only the tree
    mutator writes them; every descendant is rewritten whenever an ancestor is
    renamed or moved.
    """

    __tablename__ = "nodes"

    parent_id: Mapped[UUID | None] = mapped_column(ForeignKey("nodes.id"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[NodeType] = mapped_column(
        _pg_enum(NodeType, "node_type"), default=NodeType.OTHER, nullable=False
    )
    path: Mapped[str] = mapped_column(Text, nullable=False)
    # Ancestor ids root -> parent, stored as strings
    path_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    visibility_mode: Mapped[VisibilityMode] = mapped_column(
        _pg_enum(VisibilityMode, "visibility_mode"),
        default=VisibilityMode.PUBLIC_INTERNAL,
        nullable=False,
    )
    allowed_roles: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    @property
    def ancestor_ids(self) -> list[UUID]:
        return [UUID(i) for i in self.path_ids or []]

    @property
    def allowed_role_set(self) -> frozenset[Role]:
        return frozenset(Role(r) for r in self.allowed_roles or [])

    __table_args__ = (
        CheckConstraint("parent_id IS NULL OR parent_id != id", name="no_self_parent"),
        Index("idx_nodes_parent", "parent_id"),
        Index(
            "uq_nodes_root_slug",
            "slug",
            unique=True,
            postgresql_where=text("parent_id IS NULL AND deleted_at IS NULL"),
            sqlite_where=text("parent_id IS NULL AND deleted_at IS NULL"),
        ),
    )


# =============================================================================
# CHANGE RECORDS
# =============================================================================


class ChangeRecord(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """A dated entry describing one change, attached to one node."""

    __tablename__ = "change_records"

    node_id: Mapped[UUID] = mapped_column(ForeignKey("nodes.id"), nullable=False)
    # "As of" time of the change itself, independent of created_at
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    change_type: Mapped[ChangeType] = mapped_column(
        _pg_enum(ChangeType, "change_type"), default=ChangeType.OTHER, nullable=False
    )
    impact: Mapped[ImpactLevel] = mapped_column(
        impact_level_type, default=ImpactLevel.MEDIUM, nullable=False
    )
    status: Mapped[RecordStatus] = mapped_column(
        _pg_enum(RecordStatus, "record_status"), default=RecordStatus.PLANNED, nullable=False
    )
    links: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))

    __table_args__ = (
        Index("idx_change_records_node", "node_id", "occurred_at"),
        Index("idx_change_records_occurred", "occurred_at"),
    )


class RecordRevision(Base, UUIDMixin):
    """Before/after snapshot written on every create and edit."""

    __tablename__ = "record_revisions"

    record_id: Mapped[UUID] = mapped_column(ForeignKey("change_records.id"), nullable=False)
    editor_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    snapshot_before: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    snapshot_after: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    secret_ack: Mapped[bool | None] = mapped_column(Boolean)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_record_revisions_record", "record_id", "created_at"),
    )


# =============================================================================
# SUBSCRIPTIONS & OUTBOX
# =============================================================================


class Subscription(Base, UUIDMixin):
    """A user's interest in a node, optionally covering its descendants."""

    __tablename__ = "subscriptions"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    node_id: Mapped[UUID] = mapped_column(ForeignKey("nodes.id"), nullable=False)
    include_descendants: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_edit: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    impact_threshold: Mapped[ImpactLevel | None] = mapped_column(
        impact_level_type, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "node_id"),
        Index("idx_subscriptions_node", "node_id"),
    )


class NotificationOutbox(Base, UUIDMixin):
    """One pending delivery per (user, record, event)."""

    __tablename__ = "notification_outbox"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    record_id: Mapped[UUID] = mapped_column(ForeignKey("change_records.id"), nullable=False)
    subscription_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="SET NULL")
    )
    event_type: Mapped[OutboxEventType] = mapped_column(
        _pg_enum(OutboxEventType, "outbox_event_type"), nullable=False
    )
    status: Mapped[OutboxStatus] = mapped_column(
        _pg_enum(OutboxStatus, "outbox_status"),
        default=OutboxStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    sent_at: Mapped[datetime | None] = mapped_column()
    failed_at: Mapped[datetime | None] = mapped_column()
    error_message: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("user_id", "record_id", "event_type"),
        Index("idx_notification_outbox_status", "status", "created_at"),
    )


# =============================================================================
# AUDIT
# =============================================================================


class AuditEvent(Base, UUIDMixin):
    """Append-only audit trail."""

    __tablename__ = "audit_events"

    type: Mapped[AuditEventType] = mapped_column(
        _pg_enum(AuditEventType, "audit_event_type"), nullable=False
    )
    actor_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    details: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_audit_events_type_time", "type", "created_at"),
        Index("idx_audit_events_actor", "actor_id", "created_at"),
    )
