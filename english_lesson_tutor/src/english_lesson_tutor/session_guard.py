"""
Session Guard

Decides whether a caller may enter or continue a lesson session. Read-only.
"""

import logging
import re
from typing import Optional

from english_lesson_tutor.errors import AlreadyCompleted, InvalidInput, NotFound, Unauthenticated
from english_lesson_tutor.session_state import CurrentUser, LessonSession

logger = logging.getLogger(__name__)

# 8-4-4-4-12 hex, version nibble 1-5, variant nibble 8/9/a/b
SESSION_ID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$',
    re.IGNORECASE,
)


def is_valid_session_id(session_id) -> bool:
    return isinstance(session_id, str) and SESSION_ID_PATTERN.fullmatch(session_id) is not None


class SessionGuard:
    """Existence, ownership and state gate in front of every session access."""

    def __init__(self, store):
        self.store = store

    async def load(self, session_id: str, current_user: Optional[CurrentUser]) -> LessonSession:
        """
        Load a session the caller owns, whatever its status.

        Raises:
            InvalidInput: malformed session id (checked before any I/O)
            Unauthenticated: no current user
            NotFound: session absent or owned by another user
        """
        if not session_id:
            raise InvalidInput("Session ID is required")
        if not is_valid_session_id(session_id):
            raise InvalidInput(f"Invalid UUID format for session ID: {session_id}")
        if current_user is None or not current_user.id:
            raise Unauthenticated()

        session = await self.store.get_session(session_id, current_user.id)
        # Same error for "missing" and "not yours"
        if session is None or session.user_id != current_user.id:
            logger.info(f"🔒 [SessionGuard] Session {session_id[:8]}... not found for caller")
            raise NotFound()
        return session

    async def authorize(self, session_id: str, current_user: Optional[CurrentUser]) -> LessonSession:
        """Load a session and require that it still accepts turns."""
        session = await self.load(session_id, current_user)
        if session.is_completed:
            raise AlreadyCompleted()
        return session
