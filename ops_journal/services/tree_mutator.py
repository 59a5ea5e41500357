"""
Tree Mutator: the only writer of node position and path data.

Guarantees:
1. ``path`` / ``path_ids`` of a node and of every descendant are rewritten in
   the same transaction as the rename or move that invalidated them
2. Subtree rows are locked (SELECT ... FOR UPDATE) before rewriting, so two
   cascades over one subtree serialize
3. Validation happens before any write; a rejected move leaves the tree as is
4. All groups of an update commit together; one audit event per applied
   group (rename, move, restrict) is emitted after the commit
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AuditEventType, Node, NodeType, Role, VisibilityMode, utcnow
from .audit import AuditSink
from .errors import ConflictError, ValidationError
from .permissions import Actor, require_admin, require_editor
from .tree_store import TreeStore

logger = logging.getLogger(__name__)

PLACEHOLDER_SLUG = "node"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', trim dashes."""
    return _NON_ALNUM.sub("-", name.lower()).strip("-") or PLACEHOLDER_SLUG


def build_path(parent_path: str | None, slug: str) -> str:
    return f"{parent_path}/{slug}" if parent_path else f"/{slug}"


def build_path_ids(parent: Node) -> list[str]:
    return [*parent.path_ids, str(parent.id)]


def normalize_roles(roles: Iterable[Role | str] | None) -> list[str]:
    """Coerce a role set to sorted unique tags, rejecting unknown ones."""
    normalized: set[str] = set()
    for role in roles or []:
        try:
            normalized.add(Role(role).value)
        except ValueError:
            raise ValidationError(f"Unknown role: {role!r}")
    return sorted(normalized)


@dataclass
class NodeChanges:
    """Partial node update; None leaves a group unchanged.

    ``move`` marks ``parent_id`` as set, since None there means "to the root".
    """
    name: str | None = None
    type: NodeType | None = None
    move: bool = False
    parent_id: UUID | None = None
    visibility_mode: VisibilityMode | None = None
    allowed_roles: Iterable[Role | str] | None = None


class TreeMutator:
    """Create, rename, move, restrict and delete nodes."""

    def __init__(self, session: AsyncSession, audit: AuditSink):
        self._session = session
        self._store = TreeStore(session)
        self._audit = audit

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_node(
        self,
        actor: Actor,
        name: str,
        parent_id: UUID | None = None,
        type: NodeType = NodeType.OTHER,
        visibility_mode: VisibilityMode = VisibilityMode.INHERIT,
        allowed_roles: Iterable[Role | str] | None = None,
    ) -> Node:
        """
        Create a node under ``parent_id`` (or as a root).

        Editors may create nodes that inherit their visibility; anything else
        is a visibility decision and needs an admin.
        """
        require_editor(actor)
        if visibility_mode != VisibilityMode.INHERIT or allowed_roles:
            require_admin(actor)
        roles = self._roles_for_mode(visibility_mode, allowed_roles)

        slug = slugify(name)
        if parent_id is not None:
            parent = await self._store.get_or_raise(parent_id)
            await self._store.require_visible(actor, parent)
            path = build_path(parent.path, slug)
            path_ids = build_path_ids(parent)
        else:
            if await self._store.root_slug_taken(slug):
                raise ConflictError(f'Root node with slug "{slug}" already exists')
            path = build_path(None, slug)
            path_ids = []

        node = Node(
            parent_id=parent_id,
            name=name,
            slug=slug,
            type=type,
            path=path,
            path_ids=path_ids,
            visibility_mode=visibility_mode,
            allowed_roles=roles,
            created_by_id=actor.id,
        )
        self._session.add(node)
        await self._commit()

        self._audit.record(
            AuditEventType.NODE_CREATE,
            actor_id=actor.id,
            metadata={"node_id": node.id, "name": name, "parent_id": parent_id},
        )
        return node

    # =========================================================================
    # UPDATE (rename / move / restrict / retype)
    # =========================================================================

    async def update(self, actor: Actor, node_id: UUID, changes: NodeChanges) -> Node:
        """
        Apply any combination of rename, move, restrict and retype as one unit.

        Every capability and validation check runs before the first write, and
        all groups commit together, so a rejected request changes nothing.
        """
        require_editor(actor)
        node = await self._store.get_or_raise(node_id, lock=True)

        moving = changes.move and changes.parent_id != node.parent_id
        restricting = changes.visibility_mode is not None or changes.allowed_roles is not None
        if moving or restricting:
            require_admin(actor)
        # Admins may move or restrict a node that has hidden itself from them
        if changes.name is not None or changes.type is not None or not (moving or restricting):
            await self._store.require_visible(actor, node)

        if moving and changes.parent_id == node.id:
            raise ValidationError("A node cannot be its own parent")

        mode = changes.visibility_mode or node.visibility_mode
        roles = self._roles_for_mode(
            mode,
            changes.allowed_roles if changes.allowed_roles is not None else node.allowed_roles,
        )

        slug = slugify(changes.name) if changes.name is not None else node.slug
        new_parent: Node | None = None
        if moving and changes.parent_id is not None:
            new_parent = await self._store.get_or_raise(changes.parent_id, lock=True)
            if node.id in new_parent.ancestor_ids:
                raise ValidationError("Cannot move a node under one of its descendants")

        becomes_root = node.parent_id is None if not moving else changes.parent_id is None
        if becomes_root and (moving or slug != node.slug):
            if await self._store.root_slug_taken(slug, exclude_id=node.id):
                raise ConflictError(f'Root node with slug "{slug}" already exists')

        # All checks passed: apply
        old_name = node.name
        old_parent_id = node.parent_id
        if changes.name is not None:
            node.name = changes.name
            node.slug = slug
        if changes.type is not None:
            node.type = changes.type
        if moving:
            node.parent_id = changes.parent_id
            node.path = build_path(new_parent.path if new_parent else None, slug)
            node.path_ids = build_path_ids(new_parent) if new_parent else []
        elif changes.name is not None:
            node.path = build_path(node.path.rsplit("/", 1)[0], slug)
        if restricting:
            node.visibility_mode = mode
            node.allowed_roles = roles
        node.updated_at = utcnow()

        rewritten = 0
        if moving or changes.name is not None:
            rewritten = await self._cascade(node)
        await self._commit()

        if moving or changes.name is not None:
            logger.info(f"Updated node {node.id} at {node.path}, {rewritten} descendants rewritten")
        if changes.name is not None:
            self._audit.record(
                AuditEventType.NODE_RENAME,
                actor_id=actor.id,
                metadata={"node_id": node.id, "from": old_name, "name": changes.name},
            )
        if moving:
            self._audit.record(
                AuditEventType.NODE_MOVE,
                actor_id=actor.id,
                metadata={"node_id": node.id, "from": old_parent_id, "to": changes.parent_id},
            )
        if restricting:
            self._audit.record(
                AuditEventType.NODE_RESTRICT,
                actor_id=actor.id,
                metadata={"node_id": node.id, "visibility_mode": mode, "allowed_roles": roles},
            )
        return node

    async def rename(self, actor: Actor, node_id: UUID, new_name: str) -> Node:
        """Rename a node; the new path prefix cascades to every descendant."""
        return await self.update(actor, node_id, NodeChanges(name=new_name))

    async def move(self, actor: Actor, node_id: UUID, new_parent_id: UUID | None) -> Node:
        """
        Move a node (and its subtree) under ``new_parent_id``.

        ``None`` moves the node to the root level. Moving a node under itself
        or under one of its descendants is rejected before anything changes.
        """
        require_admin(actor)
        if new_parent_id == node_id:
            raise ValidationError("A node cannot be its own parent")
        return await self.update(actor, node_id, NodeChanges(move=True, parent_id=new_parent_id))

    async def restrict(
        self,
        actor: Actor,
        node_id: UUID,
        visibility_mode: VisibilityMode,
        allowed_roles: Iterable[Role | str] | None = None,
    ) -> Node:
        """Change a node's visibility policy. Descendants resolve it on read."""
        require_admin(actor)
        return await self.update(
            actor,
            node_id,
            NodeChanges(visibility_mode=visibility_mode, allowed_roles=allowed_roles),
        )

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, actor: Actor, node_id: UUID) -> Node:
        """Soft-delete a node. Its descendants keep their (now orphaned) paths."""
        require_editor(actor)
        node = await self._store.get_or_raise(node_id)
        await self._store.require_visible(actor, node)

        node.soft_delete()
        await self._commit()

        self._audit.record(
            AuditEventType.NODE_DELETE,
            actor_id=actor.id,
            metadata={"node_id": node.id},
        )
        return node

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _roles_for_mode(
        visibility_mode: VisibilityMode,
        allowed_roles: Iterable[Role | str] | None,
    ) -> list[str]:
        roles = normalize_roles(allowed_roles)
        return roles if visibility_mode == VisibilityMode.RESTRICTED else []

    async def _cascade(self, root: Node) -> int:
        """Recompute path data below ``root`` from its (already updated) values.

        Walks parent -> children edges with an explicit stack over an arena
        loaded (and locked) up front, so deep trees never recurse.
        """
        children_by_parent = await self._store.load_subtree(root, lock=True)
        rewritten = 0
        stack = [root]
        while stack:
            parent = stack.pop()
            for child in children_by_parent.get(parent.id, []):
                child.path = build_path(parent.path, child.slug)
                child.path_ids = build_path_ids(parent)
                stack.append(child)
                rewritten += 1
        return rewritten

    async def _commit(self) -> None:
        try:
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            raise ConflictError(f"Tree update conflicted with another write: {e.orig}")
