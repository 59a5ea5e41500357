"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    build_engine,
    close_db,
    engine,
    get_session,
    init_db,
)
from .dependencies import (
    AdminDep,
    AuditSinkDep,
    CurrentUser,
    CurrentUserDep,
    SessionDep,
    WriterDep,
    get_current_user,
    require_admin,
)
from .rate_limit import InMemoryRateLimitStore, RateLimiter, RateLimitStore
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "build_engine",
    "engine",
    "async_session_factory",
    "get_session",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "require_admin",
    "CurrentUserDep",
    "WriterDep",
    "AdminDep",
    "SessionDep",
    "AuditSinkDep",
    # Rate limiting
    "RateLimiter",
    "RateLimitStore",
    "InMemoryRateLimitStore",
    # Security
    "create_access_token",
    "decode_token",
]
