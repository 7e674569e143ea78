"""AI-tutored English lesson engine: turn orchestration, session lifecycle and speech I/O."""
from .errors import (
    AlreadyCompleted,
    GenerationFailed,
    InvalidInput,
    LessonError,
    NotFound,
    StorageFailed,
    Unauthenticated,
)
from .session_state import CurrentUser, TurnRequest, TurnResult
from .turn_orchestrator import TurnOrchestrator

__all__ = [
    "AlreadyCompleted",
    "CurrentUser",
    "GenerationFailed",
    "InvalidInput",
    "LessonError",
    "NotFound",
    "StorageFailed",
    "TurnOrchestrator",
    "TurnRequest",
    "TurnResult",
    "Unauthenticated",
]
