"""
API v1 routes package.
YamiFit coaching core routes.
"""

from .health_routes import router as health_router
from .coach_routes import router as coach_router
from .assignment_routes import router as assignment_router
from .message_routes import router as message_router
from .attachment_routes import router as attachment_router
from .stream_routes import router as stream_router
from .chatbot_routes import router as chatbot_router
from .admin_routes import router as admin_router

__all__ = [
    "health_router",
    "coach_router",
    "assignment_router",
    "message_router",
    "attachment_router",
    "stream_router",
    "chatbot_router",
    "admin_router"
]
