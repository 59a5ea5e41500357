"""API routes for Ops Journal."""

from fastapi import APIRouter

from .audit import router as audit_router
from .feeds import router as feeds_router
from .nodes import router as nodes_router
from .records import router as records_router
from .subscriptions import router as subscriptions_router
from .users import router as users_router

# Main API router
api_router = APIRouter()

api_router.include_router(users_router)
api_router.include_router(nodes_router)
api_router.include_router(records_router)
api_router.include_router(feeds_router)
api_router.include_router(subscriptions_router)

# Admin-only
api_router.include_router(audit_router)

__all__ = ["api_router"]
