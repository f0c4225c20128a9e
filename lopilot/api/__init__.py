"""API module."""

from .chat import router as chat_router
from .sessions import router as sessions_router
from .inventory import router as inventory_router

__all__ = ['chat_router', 'sessions_router', 'inventory_router']
