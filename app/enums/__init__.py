"""
Shared enums for the application.
"""

from .principal_enums import Role, Plan
from .coaching_enums import (
    AssignmentStatus,
    EndedReason,
    MessageRole,
    MessageType,
    ChatbotRole,
    EventType
)

__all__ = [
    "Role",
    "Plan",
    "AssignmentStatus",
    "EndedReason",
    "MessageRole",
    "MessageType",
    "ChatbotRole",
    "EventType"
]
