"""
Tree Store: reads over persisted nodes and their denormalized ancestry.

Ancestors are fetched by the ids in ``Node.path_ids`` (one query, O(depth));
subtrees are loaded level by level over ``parent_id`` edges into an arena
keyed by parent id, optionally locking every row for the enclosing
transaction. Reads that only need subtree membership filter on ``path_ids``
containment in SQL instead.
"""

from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import ColumnElement, func, literal, or_, select, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Node, Role
from .errors import ForbiddenError, NotFoundError
from .permissions import Actor, VisibilityResolution, resolve_visibility


class TreeStore:
    """Node lookups, ancestor chains, subtree arenas and visibility checks."""

    def __init__(self, session: AsyncSession):
        self._session = session

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get(
        self,
        node_id: UUID,
        include_deleted: bool = False,
        lock: bool = False,
    ) -> Node | None:
        query = select(Node).where(Node.id == node_id)
        if not include_deleted:
            query = query.where(Node.deleted_at.is_(None))
        if lock:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_raise(self, node_id: UUID, lock: bool = False) -> Node:
        node = await self.get(node_id, lock=lock)
        if node is None:
            raise NotFoundError(f"Node {node_id} not found")
        return node

    async def list_roots(self) -> Sequence[Node]:
        result = await self._session.execute(
            select(Node)
            .where(Node.parent_id.is_(None), Node.deleted_at.is_(None))
            .order_by(Node.name.asc())
        )
        return result.scalars().all()

    async def list_all(self) -> Sequence[Node]:
        result = await self._session.execute(
            select(Node).where(Node.deleted_at.is_(None)).order_by(Node.path.asc())
        )
        return result.scalars().all()

    async def root_slug_taken(self, slug: str, exclude_id: UUID | None = None) -> bool:
        query = select(Node.id).where(
            Node.parent_id.is_(None),
            Node.slug == slug,
            Node.deleted_at.is_(None),
        )
        if exclude_id is not None:
            query = query.where(Node.id != exclude_id)
        result = await self._session.execute(query.limit(1))
        return result.first() is not None

    # =========================================================================
    # ANCESTRY
    # =========================================================================

    async def ancestors(self, node: Node) -> list[Node]:
        """Ancestor nodes ordered root -> parent."""
        chains = await self.ancestor_chains([node])
        return chains[node.id]

    async def ancestor_chains(self, nodes: Iterable[Node]) -> dict[UUID, list[Node]]:
        """Ancestor chains for many nodes with a single query."""
        nodes = list(nodes)
        wanted = {ancestor_id for n in nodes for ancestor_id in n.ancestor_ids}
        by_id: dict[UUID, Node] = {}
        if wanted:
            result = await self._session.execute(select(Node).where(Node.id.in_(list(wanted))))
            by_id = {n.id: n for n in result.scalars().all()}
        return {
            n.id: [by_id[a] for a in n.ancestor_ids if a in by_id]
            for n in nodes
        }

    async def load_subtree(self, root: Node, lock: bool = False) -> dict[UUID, list[Node]]:
        """All descendants of ``root`` (soft-deleted included), keyed by parent id."""
        children_by_parent: dict[UUID, list[Node]] = {}
        frontier = [root.id]
        while frontier:
            query = select(Node).where(Node.parent_id.in_(frontier))
            if lock:
                query = query.with_for_update()
            result = await self._session.execute(query)
            level = result.scalars().all()
            for child in level:
                children_by_parent.setdefault(child.parent_id, []).append(child)
            frontier = [child.id for child in level]
        return children_by_parent

    def subtree_clause(self, root_id: UUID) -> ColumnElement[bool]:
        """Match ``root_id`` and every node whose ``path_ids`` contain it."""
        root = str(root_id)
        if self._session.get_bind().dialect.name == "postgresql":
            below = type_coerce(Node.path_ids, JSONB).contains([root])
        else:
            entries = func.json_each(Node.path_ids).table_valued("value")
            below = (
                select(literal(1))
                .select_from(entries)
                .where(entries.c.value == root)
                .correlate(Node)
                .exists()
            )
        return or_(Node.id == root_id, below)

    # =========================================================================
    # VISIBILITY
    # =========================================================================

    async def resolve(self, role: Role, node: Node) -> VisibilityResolution:
        return resolve_visibility(role, node, await self.ancestors(node))

    async def is_visible(self, role: Role, node: Node) -> bool:
        return (await self.resolve(role, node)).visible

    async def require_visible(self, actor: Actor, node: Node) -> Node:
        resolution = await self.resolve(actor.role, node)
        if not resolution.visible:
            raise ForbiddenError(f"Node {node.id} is not visible: {resolution.reason}")
        return node

    async def filter_visible(self, role: Role, nodes: Iterable[Node]) -> list[Node]:
        """Keep only the nodes ``role`` may see, preserving order."""
        nodes = list(nodes)
        chains = await self.ancestor_chains(nodes)
        return [n for n in nodes if resolve_visibility(role, n, chains[n.id]).visible]
