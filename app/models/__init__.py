"""
Models package for the application.
"""

from .user import User
from .coach_profile import CoachProfile
from .coach_assignment import CoachAssignment
from .conversation import Conversation, make_pair_key
from .chat_attachment import ChatAttachment
from .chat_message import ChatMessage
from .chatbot_message import ChatbotMessage

__all__ = [
    "User",
    "CoachProfile",
    "CoachAssignment",
    "Conversation",
    "make_pair_key",
    "ChatAttachment",
    "ChatMessage",
    "ChatbotMessage",
]
