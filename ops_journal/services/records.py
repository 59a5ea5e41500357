"""
Record Service: change record lifecycle.

Flow for create/edit:
1. Capability and visibility checks on the record's node
2. Secret scan (detected secrets need an explicit acknowledgement)
3. Write the record and a before/after revision, then COMMIT
4. Fan out to the notification outbox
5. Emit the audit event

Notification is a side channel: a failure in step 4 is logged and never
undoes or fails the record mutation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    AuditEventType,
    ChangeRecord,
    ChangeType,
    ImpactLevel,
    Node,
    OutboxEventType,
    RecordRevision,
    RecordStatus,
    utcnow,
)
from .audit import AuditSink
from .errors import NotFoundError, ValidationError
from .permissions import Actor, require_editor
from .secrets import scan_record_for_secrets
from .subscriptions import SubscriptionMatcher
from .tree_store import TreeStore

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateRecordInput:
    """Input for creating a change record."""
    node_id: UUID
    title: str
    description: str
    reason: str | None = None
    change_type: ChangeType = ChangeType.OTHER
    impact: ImpactLevel = ImpactLevel.MEDIUM
    status: RecordStatus = RecordStatus.PLANNED
    links: list[str] = field(default_factory=list)
    occurred_at: datetime | None = None
    secret_ack: bool = False


@dataclass
class EditRecordInput:
    """Partial update of a change record; None leaves a field unchanged.

    ``clear_reason`` removes the reason, which None alone cannot express.
    """
    title: str | None = None
    description: str | None = None
    reason: str | None = None
    change_type: ChangeType | None = None
    impact: ImpactLevel | None = None
    status: RecordStatus | None = None
    links: list[str] | None = None
    occurred_at: datetime | None = None
    clear_reason: bool = False
    secret_ack: bool = False


def record_snapshot(record: ChangeRecord) -> dict[str, Any]:
    """JSON-ready copy of the editable fields of a record."""
    return {
        "title": record.title,
        "description": record.description,
        "reason": record.reason,
        "change_type": record.change_type.value,
        "impact": record.impact.value,
        "status": record.status.value,
        "links": list(record.links or []),
        "occurred_at": record.occurred_at.isoformat(),
    }


# =============================================================================
# SERVICE
# =============================================================================


class RecordService:
    """Create, edit, delete and read change records."""

    def __init__(self, session: AsyncSession, audit: AuditSink):
        self._session = session
        self._store = TreeStore(session)
        self._matcher = SubscriptionMatcher(session)
        self._audit = audit

    async def create(self, actor: Actor, input: CreateRecordInput) -> ChangeRecord:
        require_editor(actor)
        node = await self._store.get_or_raise(input.node_id)
        await self._store.require_visible(actor, node)

        has_secrets = scan_record_for_secrets(
            input.title, input.description, input.reason, input.links
        )
        self._check_secret_ack(has_secrets, input.secret_ack)

        record = ChangeRecord(
            node_id=node.id,
            occurred_at=input.occurred_at or utcnow(),
            title=input.title,
            description=input.description,
            reason=input.reason,
            change_type=input.change_type,
            impact=input.impact,
            status=input.status,
            links=list(input.links),
            created_by_id=actor.id,
        )
        self._session.add(record)
        await self._session.flush()

        self._session.add(RecordRevision(
            record_id=record.id,
            editor_id=actor.id,
            snapshot_before={},
            snapshot_after=record_snapshot(record),
            secret_ack=True if has_secrets else None,
        ))
        await self._session.commit()

        await self._notify(record, OutboxEventType.NEW_RECORD)
        self._audit.record(
            AuditEventType.RECORD_CREATE,
            actor_id=actor.id,
            metadata={"record_id": record.id, "node_id": node.id},
        )
        return record

    async def edit(self, actor: Actor, record_id: UUID, input: EditRecordInput) -> ChangeRecord:
        require_editor(actor)
        record, _ = await self._get_visible(actor, record_id)
        before = record_snapshot(record)

        merged = {
            "title": input.title if input.title is not None else record.title,
            "description": input.description if input.description is not None else record.description,
            "reason": None if input.clear_reason else (
                input.reason if input.reason is not None else record.reason
            ),
            "change_type": input.change_type or record.change_type,
            "impact": input.impact or record.impact,
            "status": input.status or record.status,
            "links": list(input.links) if input.links is not None else list(record.links or []),
            "occurred_at": input.occurred_at or record.occurred_at,
        }
        has_secrets = scan_record_for_secrets(
            merged["title"], merged["description"], merged["reason"], merged["links"]
        )
        self._check_secret_ack(has_secrets, input.secret_ack)

        for name, value in merged.items():
            setattr(record, name, value)
        record.updated_by_id = actor.id
        record.updated_at = utcnow()

        self._session.add(RecordRevision(
            record_id=record.id,
            editor_id=actor.id,
            snapshot_before=before,
            snapshot_after=record_snapshot(record),
            secret_ack=True if has_secrets else None,
        ))
        await self._session.commit()

        await self._notify(record, OutboxEventType.EDITED_RECORD)
        self._audit.record(
            AuditEventType.RECORD_EDIT,
            actor_id=actor.id,
            metadata={"record_id": record.id},
        )
        return record

    async def delete(self, actor: Actor, record_id: UUID) -> None:
        require_editor(actor)
        record, _ = await self._get_visible(actor, record_id)
        record.soft_delete()
        await self._session.commit()

        self._audit.record(
            AuditEventType.RECORD_DELETE,
            actor_id=actor.id,
            metadata={"record_id": record.id},
        )

    async def get(self, actor: Actor, record_id: UUID) -> tuple[ChangeRecord, Node]:
        return await self._get_visible(actor, record_id)

    async def revisions(self, actor: Actor, record_id: UUID) -> Sequence[RecordRevision]:
        """Revision history, newest first."""
        await self._get_visible(actor, record_id)
        result = await self._session.execute(
            select(RecordRevision)
            .where(RecordRevision.record_id == record_id)
            .order_by(RecordRevision.created_at.desc())
        )
        return result.scalars().all()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _get_visible(self, actor: Actor, record_id: UUID) -> tuple[ChangeRecord, Node]:
        result = await self._session.execute(
            select(ChangeRecord).where(
                ChangeRecord.id == record_id,
                ChangeRecord.deleted_at.is_(None),
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"Change record {record_id} not found")

        node = await self._store.get(record.node_id)
        if node is None:
            raise NotFoundError(f"Change record {record_id} not found")
        await self._store.require_visible(actor, node)
        return record, node

    @staticmethod
    def _check_secret_ack(has_secrets: bool, secret_ack: bool) -> None:
        if has_secrets and not secret_ack:
            raise ValidationError(
                "Secret patterns detected; confirm with secret_ack: true"
            )

    async def _notify(self, record: ChangeRecord, event_type: OutboxEventType) -> None:
        """Queue outbox rows for a committed record event."""
        try:
            await self._matcher.on_record_event(record.id, event_type)
            await self._session.commit()
        except Exception:
            logger.exception(f"Failed to queue notifications for record {record.id}")
            await self._session.rollback()
            await self._session.refresh(record)
