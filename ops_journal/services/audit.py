"""Audit service: fire-and-forget event sink and admin queries.

Mutating services call ``AuditSink.record`` after their transaction commits.
The call only enqueues; a background writer persists events in its own
sessions, so a failing audit write can never fail or slow the caller.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import AuditEvent, AuditEventType

logger = logging.getLogger(__name__)

# Queued by stop() to wake the writer once the queue is closing.
_STOP = object()


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, datetime)):
        return str(value)
    return value


# =============================================================================
# SINKS
# =============================================================================


class AuditSink(ABC):
    """Accepts structured audit events. Must never raise or block."""

    @abstractmethod
    def record(
        self,
        event_type: AuditEventType,
        actor_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        pass


class QueuedAuditSink(AuditSink):
    """Audit sink backed by an in-process queue and a writer task.

    ``stop`` never cancels the writer: it queues a stop marker, lets the
    batch in flight commit, then flushes anything recorded meanwhile.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_queue_size: int = 10_000,
        batch_size: int = 100,
    ):
        self._session_factory = session_factory
        self._queue: asyncio.Queue[tuple[AuditEventType, UUID | None, dict] | object] = asyncio.Queue(
            maxsize=max_queue_size
        )
        self._batch_size = batch_size
        self._task: asyncio.Task | None = None
        self._closing = False

    def record(
        self,
        event_type: AuditEventType,
        actor_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            self._queue.put_nowait((event_type, actor_id, _jsonable(metadata or {})))
        except asyncio.QueueFull:
            logger.warning(f"Audit queue full, dropping {event_type.value} event")

    def start(self) -> None:
        if self._task is None:
            self._closing = False
            self._task = asyncio.create_task(self._run(), name="audit-writer")

    async def stop(self) -> None:
        """Stop the writer and persist whatever is still queued."""
        if self._task is not None:
            self._closing = True
            await self._queue.put(_STOP)
            await self._task
            self._task = None
        await self.flush()

    async def flush(self) -> int:
        """Write every queued event now. Returns the number written."""
        written = 0
        while not self._queue.empty():
            batch = self._take_batch()
            written += await self._write(batch)
        return written

    def _take_batch(self, first: tuple | None = None) -> list[tuple]:
        batch = [first] if first is not None else []
        while len(batch) < self._batch_size and not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _STOP:
                batch.append(item)
        return batch

    async def _run(self) -> None:
        while True:
            first = await self._queue.get()
            if first is not _STOP:
                await self._write(self._take_batch(first))
            if self._closing and self._queue.empty():
                logger.info("Audit writer stopped")
                return

    async def _write(self, batch: list[tuple]) -> int:
        if not batch:
            return 0
        try:
            async with self._session_factory() as session:
                service = AuditService(session)
                for event_type, actor_id, metadata in batch:
                    await service.log_event(event_type, actor_id=actor_id, metadata=metadata)
                await session.commit()
            return len(batch)
        except Exception as e:
            logger.error(f"Failed to write {len(batch)} audit events: {e}")
            return 0


# =============================================================================
# PERSISTENCE AND QUERIES
# =============================================================================


class AuditService:
    """Service for audit persistence and the admin audit log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_event(
        self,
        event_type: AuditEventType,
        actor_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Insert one audit event in the current session."""
        event = AuditEvent(
            type=event_type,
            actor_id=actor_id,
            details=_jsonable(metadata or {}),
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def get_audit_log(
        self,
        event_type: AuditEventType | None = None,
        actor_id: UUID | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[AuditEvent], int]:
        """Query the audit log with filters, newest first."""
        query = select(AuditEvent)

        if event_type:
            query = query.where(AuditEvent.type == event_type)
        if actor_id:
            query = query.where(AuditEvent.actor_id == actor_id)
        if start_date:
            query = query.where(AuditEvent.created_at >= start_date)
        if end_date:
            query = query.where(AuditEvent.created_at <= end_date)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        query = query.order_by(AuditEvent.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(query)

        return result.scalars().all(), total
