from typing import Optional
from fastapi import status
from fastapi.responses import JSONResponse


class ApplicationException(Exception):
    """Base for every error surfaced to API callers as `{error, code, ...}`."""

    code = "ApplicationError"
    default_message = "Request could not be processed"
    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, **details):
        self.message = message or self.default_message
        self.status_code = status_code or self.default_status
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.details}

    def to_response(self):
        headers = {"WWW-Authenticate": "Bearer"} if self.status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_dict(),
            headers=headers,
        )


# Identity
class Unauthenticated(ApplicationException):
    code = "Unauthenticated"
    default_message = "Missing or invalid authorization token"
    default_status = status.HTTP_401_UNAUTHORIZED


class SessionExpired(ApplicationException):
    code = "SessionExpired"
    default_message = "Session expired, please sign in again"
    default_status = status.HTTP_401_UNAUTHORIZED


# Policy
class Forbidden(ApplicationException):
    code = "Forbidden"
    default_message = "You do not have access to this resource"
    default_status = status.HTTP_403_FORBIDDEN


class NotFound(ApplicationException):
    code = "NotFound"
    default_message = "Resource not found"
    default_status = status.HTTP_404_NOT_FOUND


class InvalidRequest(ApplicationException):
    code = "InvalidRequest"
    default_message = "Invalid request"
    default_status = status.HTTP_400_BAD_REQUEST


# Assignment rules
class PlanRequired(ApplicationException):
    code = "PlanRequired"
    default_message = "A PRO plan is required to choose a coach"
    default_status = status.HTTP_402_PAYMENT_REQUIRED


class CapacityExceeded(ApplicationException):
    code = "CapacityExceeded"
    default_message = "Coach is at maximum capacity. Please select another coach."
    default_status = status.HTTP_409_CONFLICT


class CoachUnavailable(ApplicationException):
    code = "CoachUnavailable"
    default_message = "Coach is not accepting new clients"
    default_status = status.HTTP_409_CONFLICT


class CooldownNotElapsed(ApplicationException):
    code = "CooldownNotElapsed"
    default_status = status.HTTP_409_CONFLICT

    def __init__(self, remaining_days: int, cooldown_days: int):
        super().__init__(
            f"You can change your coach {cooldown_days} days after your last selection. "
            f"Please wait {remaining_days} more day(s).",
            remaining_days=remaining_days,
        )
        self.remaining_days = remaining_days


# Conversation rules
class NoCoach(ApplicationException):
    code = "NoCoach"
    default_message = "You need an active coach to send messages"
    default_status = status.HTTP_409_CONFLICT


class AttachmentRejected(ApplicationException):
    code = "AttachmentRejected"
    default_status = 422

    REASON_STATUS = {
        "too_large": 413,
        "mime_not_allowed": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    }

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(
            message or f"Attachment rejected: {reason}",
            status_code=self.REASON_STATUS.get(reason, self.default_status),
            reason=reason,
        )
        self.reason = reason


# Chatbot
class AssistantUnavailable(ApplicationException):
    code = "AssistantUnavailable"
    default_message = "The assistant could not answer right now. Please try again."
    default_status = status.HTTP_502_BAD_GATEWAY


class HistoryUnavailable(ApplicationException):
    code = "HistoryUnavailable"
    default_message = "Your message was answered but could not be saved to history"
    default_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, assistant_text: str):
        super().__init__(assistant_text=assistant_text)
        self.assistant_text = assistant_text


# Infrastructure
class Transient(ApplicationException):
    code = "Transient"
    default_message = "Service temporarily unavailable, please retry"
    default_status = status.HTTP_503_SERVICE_UNAVAILABLE
