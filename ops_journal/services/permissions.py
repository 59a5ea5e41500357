"""
Permission evaluation for node visibility and node capabilities.

Visibility is resolved from the node's stored ancestor chain (``path_ids``),
never by walking the tree. The nearest node in the root-to-self chain whose
mode is not ``inherit`` decides:

- ``public_internal``: everyone may see it
- ``restricted``: only roles in that node's ``allowed_roles`` (empty = nobody)
- all ``inherit``: the root default, ``public_internal``

A ``restricted`` ancestor followed by a nearer ``public_internal`` one is
re-opened.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from ..models import Node, Role, VisibilityMode
from .errors import ForbiddenError


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as supplied by the session layer."""
    id: UUID
    role: Role


@dataclass(frozen=True)
class VisibilityResolution:
    visible: bool
    reason: str | None = None


VISIBLE = VisibilityResolution(visible=True)

ROOT_DEFAULT_MODE = VisibilityMode.PUBLIC_INTERNAL


def resolve_visibility(
    role: Role,
    node: Node,
    ancestors: Sequence[Node],
) -> VisibilityResolution:
    """Decide whether ``role`` may see ``node``.

    ``ancestors`` must be ordered root -> parent, exactly as ``node.path_ids``.
    """
    effective_mode = ROOT_DEFAULT_MODE
    effective_roles: Sequence[str] = ()

    for current in (*ancestors, node):
        if current.visibility_mode == VisibilityMode.INHERIT:
            continue
        effective_mode = current.visibility_mode
        effective_roles = current.allowed_roles or ()

    if effective_mode == VisibilityMode.PUBLIC_INTERNAL:
        return VISIBLE
    if effective_mode == VisibilityMode.RESTRICTED:
        if not effective_roles:
            return VisibilityResolution(False, "restricted with no allowed roles")
        if role not in effective_roles:
            return VisibilityResolution(False, "role not in allowed roles")
        return VISIBLE
    raise AssertionError(f"unhandled visibility mode: {effective_mode!r}")


# =============================================================================
# CAPABILITIES
# =============================================================================


def can_edit_nodes(role: Role) -> bool:
    """Editors and admins may create, rename and delete nodes and records."""
    return role in (Role.ADMIN, Role.EDITOR)


def can_admin_nodes(role: Role) -> bool:
    """Only admins may move nodes or change their visibility."""
    return role == Role.ADMIN


def require_editor(actor: Actor) -> Actor:
    if not can_edit_nodes(actor.role):
        raise ForbiddenError("Editor or admin role required")
    return actor


def require_admin(actor: Actor) -> Actor:
    if not can_admin_nodes(actor.role):
        raise ForbiddenError("Admin role required")
    return actor
