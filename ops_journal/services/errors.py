"""Domain errors raised by the journal services.

Services raise these synchronously and never swallow them; the API layer maps
each one to an HTTP status via ``status_code``.
"""


class JournalError(Exception):
    """Base exception for journal operations."""

    status_code = 500
    code = "journal_error"


class NotFoundError(JournalError):
    """Referenced node, record, parent or subscription is absent or soft-deleted."""

    status_code = 404
    code = "not_found"


class ValidationError(JournalError):
    """Cyclic move, self-parent, malformed role set, unacknowledged secrets."""

    status_code = 400
    code = "validation_error"


class ConflictError(JournalError):
    """Duplicate root slug or a competing write."""

    status_code = 409
    code = "conflict"


class ForbiddenError(JournalError):
    """The actor's role lacks the required capability or cannot see the node."""

    status_code = 403
    code = "forbidden"
