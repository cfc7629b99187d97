"""
Coaching-related enums: assignments, coach chat and the chatbot log.
"""

from enum import Enum


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


class EndedReason(str, Enum):
    SWITCHED_COACH = "switched_coach"
    ENDED_BY_CLIENT = "ended_by_client"


class MessageRole(str, Enum):
    """Side of the pair a chat message was written from."""
    CLIENT = "client"
    COACH = "coach"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class ChatbotRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class EventType(str, Enum):
    MESSAGE_CREATED = "message.created"
    MESSAGE_READ = "message.read"
    ASSIGNMENT_CHANGED = "assignment.changed"
    STREAM_OVERFLOW = "stream.overflow"
