"""Pydantic schemas for the node tree."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import NodeType, Role, VisibilityMode
from .base import JournalBaseModel, JournalRequestModel, TimestampMixin


class NodeCreate(JournalRequestModel):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: UUID | None = None
    type: NodeType = NodeType.OTHER
    visibility_mode: VisibilityMode = VisibilityMode.INHERIT
    allowed_roles: list[Role] | None = None


class NodeUpdate(JournalRequestModel):
    """
    Partial node update.

    Each group is applied only when present in the body: ``name`` renames,
    ``type`` retypes, ``parent_id`` moves (an explicit null moves to the root
    level), and ``visibility_mode`` and/or ``allowed_roles`` restrict.
    """

    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: NodeType | None = None
    parent_id: UUID | None = None
    visibility_mode: VisibilityMode | None = None
    allowed_roles: list[Role] | None = None


class NodeResponse(JournalBaseModel, TimestampMixin):
    id: UUID
    parent_id: UUID | None = None
    name: str
    slug: str
    type: NodeType
    path: str
    path_ids: list[str]
    visibility_mode: VisibilityMode
    allowed_roles: list[str]
    created_by_id: UUID
    deleted_at: datetime | None = None


class NodeTreeItem(NodeResponse):
    children: list["NodeTreeItem"] = []
