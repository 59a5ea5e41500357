"""
Shared fixtures: an in-memory SQLite database built from the ORM metadata,
users of every role, and a recording audit sink.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MAIL_BACKEND", "log")
os.environ.setdefault("OUTBOX_WORKER_ENABLED", "false")

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ops_journal.models import (
    AuditEventType,
    Base,
    ChangeRecord,
    ImpactLevel,
    Node,
    Role,
    User,
)
from ops_journal.services.audit import AuditSink
from ops_journal.services.permissions import Actor
from ops_journal.services.tree_mutator import TreeMutator


class RecordingAuditSink(AuditSink):
    """Keeps audit events in memory for assertions."""

    def __init__(self):
        self.events: list[tuple[AuditEventType, UUID | None, dict[str, Any]]] = []

    def record(self, event_type, actor_id=None, metadata=None) -> None:
        self.events.append((event_type, actor_id, metadata or {}))

    @property
    def types(self) -> list[AuditEventType]:
        return [event_type for event_type, _, _ in self.events]

    def of_type(self, event_type: AuditEventType) -> list[dict[str, Any]]:
        return [metadata for t, _, metadata in self.events if t == event_type]


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def mutator(session, audit) -> TreeMutator:
    return TreeMutator(session, audit)


# =============================================================================
# USERS
# =============================================================================


async def make_user(session: AsyncSession, role: Role, email: str | None = None) -> User:
    user = User(
        email=email or f"{role.value}-{uuid4().hex[:8]}@example.com",
        name=f"{role.value.title()} User",
        role=role,
    )
    session.add(user)
    await session.commit()
    return user


def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


@pytest.fixture
async def admin_user(session) -> User:
    return await make_user(session, Role.ADMIN, "admin@example.com")


@pytest.fixture
async def editor_user(session) -> User:
    return await make_user(session, Role.EDITOR, "editor@example.com")


@pytest.fixture
async def viewer_user(session) -> User:
    return await make_user(session, Role.VIEWER, "viewer@example.com")


@pytest.fixture
def admin(admin_user) -> Actor:
    return actor_for(admin_user)


@pytest.fixture
def editor(editor_user) -> Actor:
    return actor_for(editor_user)


@pytest.fixture
def viewer(viewer_user) -> Actor:
    return actor_for(viewer_user)


# =============================================================================
# RECORDS
# =============================================================================


async def make_record(
    session: AsyncSession,
    node: Node,
    author: Actor,
    title: str = "Deploy v2",
    impact: ImpactLevel = ImpactLevel.MEDIUM,
    occurred_at: datetime | None = None,
) -> ChangeRecord:
    """Insert a record directly, without notifications."""
    record = ChangeRecord(
        node_id=node.id,
        occurred_at=occurred_at or datetime.now(timezone.utc),
        title=title,
        description="Rolled out to all regions",
        impact=impact,
        links=[],
        created_by_id=author.id,
    )
    session.add(record)
    await session.commit()
    return record
