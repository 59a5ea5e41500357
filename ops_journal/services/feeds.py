"""Feed queries over change records."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ChangeRecord, ChangeType, ImpactLevel, Node, RecordStatus
from .permissions import Actor
from .tree_store import TreeStore

DEFAULT_FEED_LIMIT = 50
MAX_FEED_LIMIT = 100


@dataclass
class FeedFilter:
    start_date: datetime | None = None
    end_date: datetime | None = None
    node_id: UUID | None = None
    include_descendants: bool = False
    created_by_id: UUID | None = None
    change_type: ChangeType | None = None
    impact: ImpactLevel | None = None
    status: RecordStatus | None = None
    limit: int = DEFAULT_FEED_LIMIT
    offset: int = 0


@dataclass
class FeedPage:
    items: list[tuple[ChangeRecord, Node]]
    total: int
    limit: int
    offset: int


class FeedService:
    """Newest-first record listing, filtered down to what the actor can see."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._store = TreeStore(session)

    async def list_records(self, actor: Actor, filters: FeedFilter) -> FeedPage:
        limit = max(1, min(filters.limit, MAX_FEED_LIMIT))
        offset = max(0, filters.offset)

        query = (
            select(ChangeRecord, Node)
            .join(Node, Node.id == ChangeRecord.node_id)
            .where(ChangeRecord.deleted_at.is_(None), Node.deleted_at.is_(None))
        )

        if filters.node_id is not None:
            if filters.include_descendants:
                query = query.where(self._store.subtree_clause(filters.node_id))
            else:
                query = query.where(ChangeRecord.node_id == filters.node_id)
        if filters.start_date:
            query = query.where(ChangeRecord.occurred_at >= filters.start_date)
        if filters.end_date:
            query = query.where(ChangeRecord.occurred_at <= filters.end_date)
        if filters.created_by_id:
            query = query.where(ChangeRecord.created_by_id == filters.created_by_id)
        if filters.change_type:
            query = query.where(ChangeRecord.change_type == filters.change_type)
        if filters.impact:
            query = query.where(ChangeRecord.impact == filters.impact)
        if filters.status:
            query = query.where(ChangeRecord.status == filters.status)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self._session.execute(count_query)).scalar() or 0

        result = await self._session.execute(
            query.order_by(ChangeRecord.occurred_at.desc()).limit(limit).offset(offset)
        )
        rows = result.all()

        visible = await self._store.filter_visible(actor.role, {n.id: n for _, n in rows}.values())
        visible_ids = {n.id for n in visible}
        items = [(record, node) for record, node in rows if node.id in visible_ids]
        return FeedPage(items=items, total=total, limit=limit, offset=offset)
