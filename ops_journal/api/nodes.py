"""API routes for the node tree."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from ..core import AuditSinkDep, CurrentUserDep, SessionDep, WriterDep
from ..schemas import NodeCreate, NodeResponse, NodeTreeItem, NodeUpdate
from ..services import NodeChanges, TreeMutator, TreeStore

router = APIRouter(prefix="/nodes", tags=["nodes"])


def get_tree_store(session: SessionDep) -> TreeStore:
    return TreeStore(session)


def get_tree_mutator(session: SessionDep, audit: AuditSinkDep) -> TreeMutator:
    return TreeMutator(session, audit)


TreeStoreDep = Annotated[TreeStore, Depends(get_tree_store)]
TreeMutatorDep = Annotated[TreeMutator, Depends(get_tree_mutator)]


@router.get("", response_model=list[NodeResponse], summary="List visible root nodes")
async def list_roots(current_user: CurrentUserDep, store: TreeStoreDep):
    roots = await store.list_roots()
    return await store.filter_visible(current_user.role, roots)


@router.get(
    "/tree",
    response_model=list[NodeTreeItem],
    summary="Nested tree of every visible node",
    description="""
    Nodes are nested under their parent when the parent is visible too.
    A visible node under an invisible parent (a re-opened subtree) is
    returned at the top level.
    """,
)
async def get_tree(current_user: CurrentUserDep, store: TreeStoreDep):
    nodes = await store.filter_visible(current_user.role, await store.list_all())
    items = {n.id: NodeTreeItem.model_validate(n) for n in nodes}

    top_level: list[NodeTreeItem] = []
    for node in nodes:
        parent = items.get(node.parent_id) if node.parent_id else None
        if parent is not None:
            parent.children.append(items[node.id])
        else:
            top_level.append(items[node.id])
    return top_level


@router.get("/{node_id}", response_model=NodeResponse)
async def get_node(node_id: UUID, current_user: CurrentUserDep, store: TreeStoreDep):
    node = await store.get_or_raise(node_id)
    return await store.require_visible(current_user.actor, node)


@router.post(
    "",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a node",
    description="""
    Editors may create nodes that inherit visibility from their parent.
    An explicit visibility mode or role list requires an admin.
    """,
)
async def create_node(request: NodeCreate, current_user: WriterDep, mutator: TreeMutatorDep):
    return await mutator.create_node(
        current_user.actor,
        name=request.name,
        parent_id=request.parent_id,
        type=request.type,
        visibility_mode=request.visibility_mode,
        allowed_roles=request.allowed_roles,
    )


@router.patch(
    "/{node_id}",
    response_model=NodeResponse,
    summary="Rename, move, retype or restrict a node",
    description="""
    Applies whichever groups the body contains, all in one transaction:

    - `name` / `type`: rename or retype (editor), a new name cascades the path
    - `parent_id`: move (admin) when it differs from the current parent;
      `null` moves the node to the root level
    - `visibility_mode` / `allowed_roles`: restrict (admin); either may be
      sent alone and the other keeps its current value

    Every permission and validation check runs first, so a rejected request
    changes nothing.
    """,
)
async def update_node(
    node_id: UUID,
    request: NodeUpdate,
    current_user: WriterDep,
    mutator: TreeMutatorDep,
):
    changes = NodeChanges(
        name=request.name,
        type=request.type,
        move="parent_id" in request.model_fields_set,
        parent_id=request.parent_id,
        visibility_mode=request.visibility_mode,
        allowed_roles=request.allowed_roles,
    )
    return await mutator.update(current_user.actor, node_id, changes)


@router.delete("/{node_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_node(node_id: UUID, current_user: WriterDep, mutator: TreeMutatorDep):
    await mutator.delete(current_user.actor, node_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
