"""API routes for the admin audit log."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core import AdminDep, SessionDep
from ..models import AuditEventType
from ..schemas import AuditEventEntry, AuditLogResponse
from ..services import AuditService

router = APIRouter(prefix="/admin/audit", tags=["audit"])


def get_audit_service(session: SessionDep) -> AuditService:
    return AuditService(session)


AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]


@router.get("", response_model=AuditLogResponse)
async def get_audit_log(
    current_user: AdminDep,  # Only admins can view audit logs
    service: AuditServiceDep,
    type: AuditEventType | None = None,
    actor_id: UUID | None = None,
    start_date: datetime | None = Query(None, alias="from"),
    end_date: datetime | None = Query(None, alias="to"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Query the audit log with filters. Requires admin privileges."""
    events, total = await service.get_audit_log(
        event_type=type,
        actor_id=actor_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return AuditLogResponse(
        items=[AuditEventEntry.model_validate(e) for e in events],
        total=total,
        limit=limit,
        offset=offset,
    )
