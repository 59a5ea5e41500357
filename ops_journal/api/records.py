"""API routes for change records."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from ..core import AuditSinkDep, CurrentUserDep, SessionDep, WriterDep
from ..models import ChangeRecord, Node
from ..schemas import (
    RecordCreate,
    RecordResponse,
    RecordUpdate,
    RecordWithNode,
    RevisionResponse,
)
from ..services import CreateRecordInput, EditRecordInput, RecordService

router = APIRouter(prefix="/records", tags=["records"])


def get_record_service(session: SessionDep, audit: AuditSinkDep) -> RecordService:
    return RecordService(session, audit)


RecordServiceDep = Annotated[RecordService, Depends(get_record_service)]


def build_record_response(record: ChangeRecord, node: Node) -> RecordWithNode:
    return RecordWithNode(
        **RecordResponse.model_validate(record).model_dump(),
        node_name=node.name,
        node_path=node.path,
    )


@router.post(
    "",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a change record",
    description="""
    Creates the record and its first revision, then queues notifications for
    subscribers of the node and its ancestors.

    Text that looks like a credential is rejected with 400 unless
    `secret_ack` is true.
    """,
)
async def create_record(request: RecordCreate, current_user: WriterDep, service: RecordServiceDep):
    input_data = CreateRecordInput(
        node_id=request.node_id,
        title=request.title,
        description=request.description,
        reason=request.reason,
        change_type=request.change_type,
        impact=request.impact,
        status=request.status,
        links=request.links,
        occurred_at=request.occurred_at,
        secret_ack=request.secret_ack,
    )
    return await service.create(current_user.actor, input_data)


@router.get("/{record_id}", response_model=RecordWithNode)
async def get_record(record_id: UUID, current_user: CurrentUserDep, service: RecordServiceDep):
    record, node = await service.get(current_user.actor, record_id)
    return build_record_response(record, node)


@router.patch("/{record_id}", response_model=RecordResponse, summary="Edit a change record")
async def edit_record(
    record_id: UUID,
    request: RecordUpdate,
    current_user: WriterDep,
    service: RecordServiceDep,
):
    input_data = EditRecordInput(
        title=request.title,
        description=request.description,
        reason=request.reason,
        change_type=request.change_type,
        impact=request.impact,
        status=request.status,
        links=request.links,
        occurred_at=request.occurred_at,
        clear_reason="reason" in request.model_fields_set and request.reason is None,
        secret_ack=request.secret_ack,
    )
    return await service.edit(current_user.actor, record_id, input_data)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_record(record_id: UUID, current_user: WriterDep, service: RecordServiceDep):
    await service.delete(current_user.actor, record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{record_id}/revisions", response_model=list[RevisionResponse])
async def list_revisions(record_id: UUID, current_user: CurrentUserDep, service: RecordServiceDep):
    """Revision history of a record, newest first."""
    return await service.revisions(current_user.actor, record_id)
