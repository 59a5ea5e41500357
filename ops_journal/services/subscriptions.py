"""
Subscriptions and the notification fan-out.

``SubscriptionMatcher.on_record_event`` turns one record event into outbox
rows:

1. Candidates: subscriptions on the record's node, plus subscriptions with
   ``include_descendants`` on any ancestor listed in the node's ``path_ids``
2. Edits only reach subscriptions with ``notify_on_edit``
3. The record's impact must meet the subscription's threshold
4. One row per user (first matching subscription wins)
5. Users who already have a row for (record, event) are skipped, so a
   retried trigger never duplicates pending deliveries

Rows are only flushed; the caller's transaction decides when they become
visible to the outbox worker.
"""

import logging
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    AuditEventType,
    ChangeRecord,
    ImpactLevel,
    Node,
    NotificationOutbox,
    OutboxEventType,
    OutboxStatus,
    Role,
    Subscription,
    User,
)
from .audit import AuditSink
from .errors import NotFoundError
from .permissions import Actor, resolve_visibility
from .tree_store import TreeStore

logger = logging.getLogger(__name__)


# =============================================================================
# MATCHER
# =============================================================================


class SubscriptionMatcher:
    """Matches record events against subscriptions and writes outbox rows."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._store = TreeStore(session)

    async def on_record_event(
        self,
        record_id: UUID,
        event_type: OutboxEventType,
    ) -> list[NotificationOutbox]:
        """Insert pending outbox rows for every interested user.

        Returns only the rows inserted by this call.
        """
        result = await self._session.execute(
            select(ChangeRecord).where(
                ChangeRecord.id == record_id,
                ChangeRecord.deleted_at.is_(None),
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"Change record {record_id} not found")

        node = await self._store.get_or_raise(record.node_id)
        ancestors = await self._store.ancestors(node)
        candidates = await self._candidates(node.id, node.ancestor_ids, event_type)
        if not candidates:
            return []

        users = await self._live_users({s.user_id for s in candidates})
        already_queued = await self._queued_users(record.id, event_type)

        visible_by_role: dict[Role, bool] = {}
        seen: set[UUID] = set()
        rows: list[NotificationOutbox] = []
        for sub in candidates:
            if sub.user_id in seen or sub.user_id in already_queued:
                continue
            if not record.impact.meets(sub.impact_threshold):
                continue
            user = users.get(sub.user_id)
            if user is None:
                continue
            if user.role not in visible_by_role:
                visible_by_role[user.role] = resolve_visibility(user.role, node, ancestors).visible
            if not visible_by_role[user.role]:
                continue

            seen.add(sub.user_id)
            rows.append(
                NotificationOutbox(
                    user_id=sub.user_id,
                    record_id=record.id,
                    subscription_id=sub.id,
                    event_type=event_type,
                    status=OutboxStatus.PENDING,
                )
            )

        if rows:
            self._session.add_all(rows)
            await self._session.flush()

        logger.info(
            f"Record {record.id} {event_type.value}: {len(candidates)} candidate subscriptions, "
            f"{len(rows)} outbox rows queued"
        )
        return rows

    async def _candidates(
        self,
        node_id: UUID,
        ancestor_ids: list[UUID],
        event_type: OutboxEventType,
    ) -> list[Subscription]:
        """Direct subscriptions first, then inherited ones."""
        direct_query = select(Subscription).where(Subscription.node_id == node_id)
        inherited_query = select(Subscription).where(
            Subscription.include_descendants.is_(True),
            Subscription.node_id.in_(ancestor_ids),
        )
        if event_type == OutboxEventType.EDITED_RECORD:
            direct_query = direct_query.where(Subscription.notify_on_edit.is_(True))
            inherited_query = inherited_query.where(Subscription.notify_on_edit.is_(True))

        direct = (await self._session.execute(
            direct_query.order_by(Subscription.created_at.asc())
        )).scalars().all()

        inherited: Sequence[Subscription] = []
        if ancestor_ids:
            inherited = (await self._session.execute(
                inherited_query.order_by(Subscription.created_at.asc())
            )).scalars().all()

        return [*direct, *inherited]

    async def _live_users(self, user_ids: set[UUID]) -> dict[UUID, User]:
        result = await self._session.execute(
            select(User).where(User.id.in_(list(user_ids)), User.deleted_at.is_(None))
        )
        return {u.id: u for u in result.scalars().all()}

    async def _queued_users(self, record_id: UUID, event_type: OutboxEventType) -> set[UUID]:
        result = await self._session.execute(
            select(NotificationOutbox.user_id).where(
                NotificationOutbox.record_id == record_id,
                NotificationOutbox.event_type == event_type,
            )
        )
        return set(result.scalars().all())


# =============================================================================
# SUBSCRIPTION MANAGEMENT
# =============================================================================


class SubscriptionService:
    """Create, list and remove a user's subscriptions."""

    def __init__(self, session: AsyncSession, audit: AuditSink):
        self._session = session
        self._store = TreeStore(session)
        self._audit = audit

    async def subscribe(
        self,
        actor: Actor,
        node_id: UUID,
        include_descendants: bool = True,
        notify_on_edit: bool = True,
        impact_threshold: ImpactLevel | None = None,
    ) -> Subscription:
        """Create the (user, node) subscription, or update it if it exists."""
        node = await self._store.get_or_raise(node_id)
        await self._store.require_visible(actor, node)

        result = await self._session.execute(
            select(Subscription).where(
                Subscription.user_id == actor.id,
                Subscription.node_id == node_id,
            )
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            subscription = Subscription(user_id=actor.id, node_id=node_id)
            self._session.add(subscription)
        subscription.include_descendants = include_descendants
        subscription.notify_on_edit = notify_on_edit
        subscription.impact_threshold = impact_threshold
        await self._session.commit()

        self._audit.record(
            AuditEventType.SUBSCRIPTION_ADD,
            actor_id=actor.id,
            metadata={"subscription_id": subscription.id, "node_id": node_id},
        )
        return subscription

    async def unsubscribe(self, actor: Actor, subscription_id: UUID) -> None:
        """Remove one of the actor's own subscriptions."""
        result = await self._session.execute(
            select(Subscription).where(
                Subscription.id == subscription_id,
                Subscription.user_id == actor.id,
            )
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")

        await self._session.delete(subscription)
        await self._session.commit()

        self._audit.record(
            AuditEventType.SUBSCRIPTION_REMOVE,
            actor_id=actor.id,
            metadata={"subscription_id": subscription_id},
        )

    async def list_for_user(self, actor: Actor) -> list[Subscription]:
        """The actor's subscriptions on nodes they can still see."""
        result = await self._session.execute(
            select(Subscription)
            .where(Subscription.user_id == actor.id)
            .order_by(Subscription.created_at.asc())
        )
        subscriptions = result.scalars().all()
        if not subscriptions:
            return []

        nodes = (await self._session.execute(
            select(Node).where(
                Node.id.in_([s.node_id for s in subscriptions]),
                Node.deleted_at.is_(None),
            )
        )).scalars().all()
        visible_ids = {n.id for n in await self._store.filter_visible(actor.role, nodes)}
        return [s for s in subscriptions if s.node_id in visible_ids]
