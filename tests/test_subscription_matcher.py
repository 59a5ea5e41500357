"""
Tests for the Subscription Matcher and Subscription Service.

These tests verify:
1. Direct and inherited subscriptions both match, one row per user
2. notify_on_edit only gates edited_record events
3. Impact thresholds filter low-impact records
4. Re-running a trigger never duplicates rows
5. Deleted users and users who cannot see the node are skipped
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import make_record, make_user
from ops_journal.models import (
    AuditEventType,
    ImpactLevel,
    Node,
    NotificationOutbox,
    OutboxEventType,
    OutboxStatus,
    Role,
    Subscription,
    User,
    VisibilityMode,
)
from ops_journal.services.errors import ForbiddenError, NotFoundError
from ops_journal.services.permissions import Actor
from ops_journal.services.subscriptions import SubscriptionMatcher, SubscriptionService
from ops_journal.services.tree_mutator import TreeMutator


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
async def nodes(mutator: TreeMutator, admin: Actor) -> dict[str, Node]:
    platform = await mutator.create_node(admin, "Platform")
    api = await mutator.create_node(admin, "API", parent_id=platform.id)
    prod = await mutator.create_node(admin, "Prod", parent_id=api.id)
    return {"platform": platform, "api": api, "prod": prod}


async def subscribe(
    session: AsyncSession,
    user: User,
    node: Node,
    include_descendants: bool = True,
    notify_on_edit: bool = True,
    impact_threshold: ImpactLevel | None = None,
) -> Subscription:
    sub = Subscription(
        user_id=user.id,
        node_id=node.id,
        include_descendants=include_descendants,
        notify_on_edit=notify_on_edit,
        impact_threshold=impact_threshold,
    )
    session.add(sub)
    await session.commit()
    return sub


async def outbox_count(session: AsyncSession) -> int:
    return (await session.execute(select(func.count(NotificationOutbox.id)))).scalar_one()


# =============================================================================
# TEST: MATCHING
# =============================================================================


class TestOnRecordEvent:
    async def test_direct_subscription_matches(
        self, session: AsyncSession, nodes, editor_user: User, admin: Actor
    ):
        sub = await subscribe(session, editor_user, nodes["prod"])
        record = await make_record(session, nodes["prod"], admin)

        rows = await SubscriptionMatcher(session).on_record_event(record.id, OutboxEventType.NEW_RECORD)

        assert len(rows) == 1
        assert rows[0].user_id == editor_user.id
        assert rows[0].subscription_id == sub.id
        assert rows[0].status == OutboxStatus.PENDING

    async def test_inherited_subscription_matches_descendants(
        self, session: AsyncSession, nodes, editor_user: User, admin: Actor
    ):
        await subscribe(session, editor_user, nodes["platform"], include_descendants=True)
        record = await make_record(session, nodes["prod"], admin)

        rows = await SubscriptionMatcher(session).on_record_event(record.id, OutboxEventType.NEW_RECORD)
        assert [r.user_id for r in rows] == [editor_user.id]

    async def test_ancestor_without_include_descendants_does_not_match(
        self, session: AsyncSession, nodes, editor_user: User, admin: Actor
    ):
        await subscribe(session, editor_user, nodes["platform"], include_descendants=False)
        record = await make_record(session, nodes["prod"], admin)

        rows = await SubscriptionMatcher(session).on_record_event(record.id, OutboxEventType.NEW_RECORD)
        assert rows == []

    async def test_edit_dedupes_direct_and_inherited_to_one_row(
        self, session: AsyncSession, nodes, editor_user: User, admin: Actor
    ):
        """Direct sub opts out of edits, inherited one opts in: exactly one row."""
        await subscribe(session, editor_user, nodes["prod"], notify_on_edit=False)
        inherited = await subscribe(
            session, editor_user, nodes["platform"], include_descendants=True, notify_on_edit=True
        )
        record = await make_record(session, nodes["prod"], admin)

        rows = await SubscriptionMatcher(session).on_record_event(
            record.id, OutboxEventType.EDITED_RECORD
        )

        assert len(rows) == 1
        assert rows[0].subscription_id == inherited.id
        assert await outbox_count(session) == 1

    async def test_new_record_ignores_notify_on_edit(
        self, session: AsyncSession, nodes, editor_user: User, admin: Actor
    ):
        await subscribe(session, editor_user, nodes["prod"], notify_on_edit=False)
        record = await make_record(session, nodes["prod"], admin)

        matcher = SubscriptionMatcher(session)
        assert len(await matcher.on_record_event(record.id, OutboxEventType.NEW_RECORD)) == 1
        assert await matcher.on_record_event(record.id, OutboxEventType.EDITED_RECORD) == []

    async def test_impact_threshold(
        self, session: AsyncSession, nodes, editor_user: User, admin: Actor
    ):
        await subscribe(session, editor_user, nodes["prod"], impact_threshold=ImpactLevel.HIGH)
        low = await make_record(session, nodes["prod"], admin, impact=ImpactLevel.LOW)
        high = await make_record(session, nodes["prod"], admin, impact=ImpactLevel.HIGH)

        matcher = SubscriptionMatcher(session)
        assert await matcher.on_record_event(low.id, OutboxEventType.NEW_RECORD) == []
        assert len(await matcher.on_record_event(high.id, OutboxEventType.NEW_RECORD)) == 1

    async def test_threshold_on_one_subscription_does_not_hide_another(
        self, session: AsyncSession, nodes, editor_user: User, admin: Actor
    ):
        await subscribe(session, editor_user, nodes["prod"], impact_threshold=ImpactLevel.HIGH)
        await subscribe(session, editor_user, nodes["platform"])
        record = await make_record(session, nodes["prod"], admin, impact=ImpactLevel.LOW)

        rows = await SubscriptionMatcher(session).on_record_event(record.id, OutboxEventType.NEW_RECORD)
        assert len(rows) == 1

    async def test_rerun_does_not_duplicate(
        self, session: AsyncSession, nodes, editor_user: User, viewer_user: User, admin: Actor
    ):
        await subscribe(session, editor_user, nodes["prod"])
        await subscribe(session, viewer_user, nodes["api"])
        record = await make_record(session, nodes["prod"], admin)

        matcher = SubscriptionMatcher(session)
        first = await matcher.on_record_event(record.id, OutboxEventType.NEW_RECORD)
        await session.commit()
        second = await matcher.on_record_event(record.id, OutboxEventType.NEW_RECORD)

        assert len(first) == 2
        assert second == []
        assert await outbox_count(session) == 2

    async def test_deleted_user_is_skipped(
        self, session: AsyncSession, nodes, admin: Actor
    ):
        gone = await make_user(session, Role.EDITOR)
        await subscribe(session, gone, nodes["prod"])
        gone.soft_delete()
        await session.commit()
        record = await make_record(session, nodes["prod"], admin)

        assert await SubscriptionMatcher(session).on_record_event(
            record.id, OutboxEventType.NEW_RECORD
        ) == []

    async def test_user_who_cannot_see_node_is_skipped(
        self, session: AsyncSession, nodes, mutator: TreeMutator,
        admin: Actor, admin_user: User, viewer_user: User,
    ):
        await subscribe(session, viewer_user, nodes["platform"])
        await subscribe(session, admin_user, nodes["platform"])
        await mutator.restrict(admin, nodes["api"].id, VisibilityMode.RESTRICTED, ["admin"])
        record = await make_record(session, nodes["prod"], admin)

        rows = await SubscriptionMatcher(session).on_record_event(record.id, OutboxEventType.NEW_RECORD)
        assert [r.user_id for r in rows] == [admin_user.id]

    async def test_missing_or_deleted_record_is_not_found(
        self, session: AsyncSession, nodes, admin: Actor
    ):
        matcher = SubscriptionMatcher(session)
        with pytest.raises(NotFoundError):
            await matcher.on_record_event(uuid4(), OutboxEventType.NEW_RECORD)

        record = await make_record(session, nodes["prod"], admin)
        record.soft_delete()
        await session.commit()
        with pytest.raises(NotFoundError):
            await matcher.on_record_event(record.id, OutboxEventType.NEW_RECORD)


# =============================================================================
# TEST: SUBSCRIPTION SERVICE
# =============================================================================


class TestSubscriptionService:
    async def test_subscribe_upserts(self, session: AsyncSession, nodes, editor: Actor, audit):
        service = SubscriptionService(session, audit)

        first = await service.subscribe(editor, nodes["api"].id)
        second = await service.subscribe(
            editor, nodes["api"].id, include_descendants=False, impact_threshold=ImpactLevel.HIGH
        )

        assert first.id == second.id
        assert second.include_descendants is False
        assert second.impact_threshold == ImpactLevel.HIGH
        assert audit.types.count(AuditEventType.SUBSCRIPTION_ADD) == 2

    async def test_cannot_subscribe_to_invisible_node(
        self, session: AsyncSession, nodes, mutator: TreeMutator, admin: Actor, viewer: Actor, audit
    ):
        await mutator.restrict(admin, nodes["api"].id, VisibilityMode.RESTRICTED, ["admin"])
        with pytest.raises(ForbiddenError):
            await SubscriptionService(session, audit).subscribe(viewer, nodes["prod"].id)

    async def test_only_owner_can_unsubscribe(
        self, session: AsyncSession, nodes, editor: Actor, viewer: Actor, audit
    ):
        service = SubscriptionService(session, audit)
        sub = await service.subscribe(editor, nodes["api"].id)

        with pytest.raises(NotFoundError):
            await service.unsubscribe(viewer, sub.id)

        await service.unsubscribe(editor, sub.id)
        assert await service.list_for_user(editor) == []
        assert audit.types[-1] == AuditEventType.SUBSCRIPTION_REMOVE

    async def test_list_hides_nodes_no_longer_visible(
        self, session: AsyncSession, nodes, mutator: TreeMutator, admin: Actor, viewer: Actor, audit
    ):
        service = SubscriptionService(session, audit)
        await service.subscribe(viewer, nodes["platform"].id)
        await service.subscribe(viewer, nodes["prod"].id)

        await mutator.restrict(admin, nodes["api"].id, VisibilityMode.RESTRICTED, ["admin"])

        listed = await service.list_for_user(viewer)
        assert [s.node_id for s in listed] == [nodes["platform"].id]
