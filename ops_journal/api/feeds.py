"""API routes for the change feed."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core import CurrentUserDep, SessionDep
from ..models import ChangeType, ImpactLevel, RecordStatus
from ..schemas import FeedResponse
from ..services import FeedFilter, FeedService
from ..services.feeds import DEFAULT_FEED_LIMIT, MAX_FEED_LIMIT
from .records import build_record_response

router = APIRouter(prefix="/feed", tags=["feed"])


def get_feed_service(session: SessionDep) -> FeedService:
    return FeedService(session)


FeedServiceDep = Annotated[FeedService, Depends(get_feed_service)]


@router.get(
    "",
    response_model=FeedResponse,
    summary="Change records, newest first",
    description="""
    Filters combine with AND. Records on nodes the caller cannot see are
    dropped from `items`; `total` counts matches before that filter.
    """,
)
async def get_feed(
    current_user: CurrentUserDep,
    service: FeedServiceDep,
    start_date: datetime | None = Query(None, alias="from"),
    end_date: datetime | None = Query(None, alias="to"),
    node_id: UUID | None = None,
    include_descendants: bool = False,
    created_by_id: UUID | None = None,
    change_type: ChangeType | None = None,
    impact: ImpactLevel | None = None,
    status: RecordStatus | None = None,
    limit: int = Query(DEFAULT_FEED_LIMIT, ge=1, le=MAX_FEED_LIMIT),
    offset: int = Query(0, ge=0),
):
    page = await service.list_records(
        current_user.actor,
        FeedFilter(
            start_date=start_date,
            end_date=end_date,
            node_id=node_id,
            include_descendants=include_descendants,
            created_by_id=created_by_id,
            change_type=change_type,
            impact=impact,
            status=status,
            limit=limit,
            offset=offset,
        ),
    )
    return FeedResponse(
        items=[build_record_response(record, node) for record, node in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )
