"""
Row-level access predicates.

Each predicate answers "may this principal read/write this row" and each
`*_scope` helper returns the matching SQL filter, so list queries only ever
see admissible rows. Services call these on every row operation; routes have
no other path to the tables.
"""

from sqlalchemy import or_, true

from app.core.identity import Principal
from app.exceptions.errors import Forbidden
from app.models import ChatbotMessage, ChatMessage, CoachAssignment, CoachProfile, Conversation


# Assignment
def can_read_assignment(principal: Principal, row: CoachAssignment) -> bool:
    return principal.is_admin or principal.id in (row.client_id, row.coach_id)


def can_write_assignment(principal: Principal, row: CoachAssignment) -> bool:
    return principal.is_admin or principal.id == row.client_id


def assignment_scope(principal: Principal):
    if principal.is_admin:
        return true()
    return or_(CoachAssignment.client_id == principal.id, CoachAssignment.coach_id == principal.id)


# Conversation / ChatMessage
def is_pair_member(principal: Principal, conversation: Conversation) -> bool:
    return principal.id in (conversation.client_id, conversation.coach_id)


def can_read_conversation(principal: Principal, conversation: Conversation) -> bool:
    return principal.is_admin or is_pair_member(principal, conversation)


def can_write_message(principal: Principal, conversation: Conversation, sender_id: str) -> bool:
    # Admins can read any pair but only members can write, and only as themselves
    return is_pair_member(principal, conversation) and sender_id == principal.id


def can_read_message(principal: Principal, row: ChatMessage, conversation: Conversation) -> bool:
    return row.pair_key == conversation.pair_key and can_read_conversation(principal, conversation)


# ChatbotMessage
def can_access_chatbot_message(principal: Principal, row: ChatbotMessage) -> bool:
    return principal.id == row.user_id


def chatbot_scope(principal: Principal):
    return ChatbotMessage.user_id == principal.id


# CoachProfile
def can_read_coach_profile(principal: Principal, row: CoachProfile) -> bool:
    return True


def can_write_coach_profile(principal: Principal, row: CoachProfile) -> bool:
    return principal.is_admin or principal.id == row.coach_id


def require(allowed: bool, message: str = None) -> None:
    """Raise Forbidden unless the predicate admitted the operation."""
    if not allowed:
        raise Forbidden(message)
