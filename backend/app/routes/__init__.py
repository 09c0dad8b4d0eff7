"""API routes."""

from .admin import router as admin_router
from .ai import router as ai_router
from .sync import router as sync_router

__all__ = [
    "admin_router",
    "ai_router",
    "sync_router",
]
