"""
Error taxonomy shared by the driver, the orchestrators and the services.

Every error carries a machine-readable ``code`` and the HTTP ``status_code``
a route layer should answer with, so callers can react programmatically
instead of parsing messages.
"""
from enum import StrEnum
from typing import Any, Optional


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONVERSATION_CLOSED = "CONVERSATION_CLOSED"
    CONVERSATION_RUNNING = "CONVERSATION_RUNNING"
    NO_STUDENTS = "NO_STUDENTS"
    NO_PAIRS = "NO_PAIRS"
    NO_BATCH = "NO_BATCH"
    BATCH_NOT_COMPLETED = "BATCH_NOT_COMPLETED"
    RATE_LIMIT = "RATE_LIMIT"
    MISSING_CONVERSATIONS = "MISSING_CONVERSATIONS"
    API_KEY_MISSING = "API_KEY_MISSING"
    API_ERROR = "API_ERROR"
    GENERATION_ERROR = "GENERATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


class TutorLabError(Exception):
    """Base class for all classified errors."""

    code: ErrorCode = ErrorCode.API_ERROR
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "errorCode": str(self.code)}


class InvalidRequestError(TutorLabError):
    """A required field is missing or malformed."""
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class NotFoundError(TutorLabError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class ConversationClosedError(TutorLabError):
    code = ErrorCode.CONVERSATION_CLOSED
    status_code = 400


class ConversationBusyError(TutorLabError):
    """Another driver currently owns the conversation."""
    code = ErrorCode.CONVERSATION_RUNNING
    status_code = 409


class NoStudentsError(TutorLabError):
    code = ErrorCode.NO_STUDENTS
    status_code = 400


class NoPairsError(TutorLabError):
    code = ErrorCode.NO_PAIRS
    status_code = 400


class NoBatchError(TutorLabError):
    code = ErrorCode.NO_BATCH
    status_code = 400


class BatchNotCompletedError(TutorLabError):
    code = ErrorCode.BATCH_NOT_COMPLETED
    status_code = 400


class APIKeyMissingError(TutorLabError):
    code = ErrorCode.API_KEY_MISSING
    status_code = 500


_STATUS_CODES = {
    429: ErrorCode.RATE_LIMIT,
    400: ErrorCode.MISSING_CONVERSATIONS,
    422: ErrorCode.VALIDATION_ERROR,
}


class TutoringAPIError(TutorLabError):
    """
    Non-success answer (or transport failure) from the Tutoring/Catalog API.

    Args:
        status: HTTP status returned upstream, None for transport errors
        detail: Response body or transport error text
    """

    def __init__(self, status: Optional[int], detail: str = ""):
        self.status = status
        self.detail = detail
        self.code = _STATUS_CODES.get(status, ErrorCode.API_ERROR)
        self.status_code = status if status in _STATUS_CODES else 502
        prefix = f"API Error: {status}" if status is not None else "API Error"
        super().__init__(f"{prefix} - {detail}" if detail else prefix)


class GenerationError(TutorLabError):
    code = ErrorCode.GENERATION_ERROR
    status_code = 502


class PersistenceError(TutorLabError):
    code = ErrorCode.DATABASE_ERROR
    status_code = 500


class EvaluationNotSavedError(PersistenceError):
    """The upstream evaluation happened but its record could not be stored."""

    def __init__(self, message: str, result: Any):
        super().__init__(message)
        self.result = result
