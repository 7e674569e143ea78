"""
Error taxonomy for the lesson turn engine.

Every failure the core surfaces to a caller is a LessonError subclass carrying
a stable ``kind`` string and the HTTP status the API layer reports it with.
"""

from typing import Optional


class LessonError(Exception):
    """Base class for typed lesson failures."""
    kind = "LessonError"
    status_code = 500
    default_message = "Lesson request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidInput(LessonError):
    kind = "InvalidInput"
    status_code = 400
    default_message = "Session ID and user message are required"


class Unauthenticated(LessonError):
    kind = "Unauthenticated"
    status_code = 401
    default_message = "User must be authenticated to perform this action"


class NotFound(LessonError):
    # Also used for sessions owned by someone else, so existence never leaks
    kind = "NotFound"
    status_code = 404
    default_message = "Lesson not found or access denied"


class AlreadyCompleted(LessonError):
    kind = "AlreadyCompleted"
    status_code = 409
    default_message = "This lesson has already been completed"


class GenerationFailed(LessonError):
    kind = "GenerationFailed"
    status_code = 500
    default_message = "Error generating AI response"


class StorageFailed(LessonError):
    kind = "StorageFailed"
    status_code = 500
    default_message = "Lesson storage request failed"


ERROR_KINDS = {
    cls.kind: cls
    for cls in (InvalidInput, Unauthenticated, NotFound, AlreadyCompleted, GenerationFailed, StorageFailed)
}


def error_from_kind(kind: Optional[str], message: Optional[str] = None) -> LessonError:
    """Rebuild a typed error from its wire representation."""
    cls = ERROR_KINDS.get(kind or "", LessonError)
    return cls(message)


class SpeechError(Exception):
    """Non-fatal speech capture/playback failure."""


class SpeechPlaybackError(SpeechError):
    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)
