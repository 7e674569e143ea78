"""
Session Store for Lesson Persistence

Persistence gateway for lesson sessions and their messages. Owns no teaching
logic, only CRUD plus ordering guarantees:

- messages are returned oldest first
- a session's status only ever moves from "active" to "completed"
- ownership is enforced on every session read and write

Two interchangeable implementations share the same async interface:
InMemorySessionStore (tests, local development) and SupabaseSessionStore.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from english_lesson_tutor.errors import StorageFailed
from english_lesson_tutor.session_state import (
    LessonMessage,
    LessonSession,
    MessageRole,
    ProficiencyLevel,
    SessionStatus,
)

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "lesson_sessions"
MESSAGES_TABLE = "lesson_messages"


class InMemorySessionStore:
    """
    Process-local store.

    Message timestamps are forced to be strictly increasing per session so
    that ordering by creation time is always the insertion order.
    """

    def __init__(self):
        self._sessions: Dict[str, LessonSession] = {}
        self._messages: Dict[str, List[LessonMessage]] = {}

    async def create_session(self, topic: str, level: ProficiencyLevel, owner_id: str) -> LessonSession:
        session = LessonSession(
            id=str(uuid.uuid4()),
            user_id=owner_id,
            topic=topic,
            level=ProficiencyLevel(level),
        )
        self._sessions[session.id] = session
        self._messages[session.id] = []
        return self._copy(session)

    async def list_sessions(self, owner_id: str) -> List[LessonSession]:
        owned = [s for s in self._sessions.values() if s.user_id == owner_id]
        owned.sort(key=lambda s: s.created_at, reverse=True)
        return [self._copy(s) for s in owned]

    async def get_session(self, session_id: str, owner_id: str) -> Optional[LessonSession]:
        session = self._sessions.get(session_id)
        if session is None or session.user_id != owner_id:
            return None
        copy = self._copy(session)
        copy.messages = list(self._messages.get(session_id, []))
        return copy

    async def update_status(self, session_id: str, owner_id: str, status: SessionStatus) -> Optional[LessonSession]:
        session = self._sessions.get(session_id)
        if session is None or session.user_id != owner_id:
            return None
        # One-way: a completed lesson never goes back to active
        if session.status == SessionStatus.ACTIVE:
            session.status = SessionStatus(status)
        return self._copy(session)

    async def insert_message(self, session_id: str, role: MessageRole, content: str) -> LessonMessage:
        if session_id not in self._sessions:
            raise StorageFailed(f"Cannot add message: unknown session {session_id}")
        messages = self._messages[session_id]
        created_at = datetime.now(timezone.utc)
        if messages and created_at <= messages[-1].created_at:
            created_at = messages[-1].created_at + timedelta(microseconds=1)
        message = LessonMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=MessageRole(role),
            content=content,
            created_at=created_at,
        )
        messages.append(message)
        return message

    async def list_messages(self, session_id: str) -> List[LessonMessage]:
        return list(self._messages.get(session_id, []))

    @staticmethod
    def _copy(session: LessonSession) -> LessonSession:
        return LessonSession(
            id=session.id,
            user_id=session.user_id,
            topic=session.topic,
            level=session.level,
            status=session.status,
            created_at=session.created_at,
        )


class SupabaseSessionStore:
    """
    Supabase-backed store over the ``lesson_sessions`` and ``lesson_messages``
    tables.

    The backend uses the service role key, which bypasses row level security,
    so every session query filters on ``user_id`` explicitly.
    """

    def __init__(self, supabase_client):
        """
        Args:
            supabase_client: Supabase client instance
        """
        self.supabase = supabase_client

    async def create_session(self, topic: str, level: ProficiencyLevel, owner_id: str) -> LessonSession:
        row = {
            "topic": topic,
            "level": ProficiencyLevel(level).value,
            "status": SessionStatus.ACTIVE.value,
            "user_id": owner_id,
        }
        try:
            result = self.supabase.table(SESSIONS_TABLE).insert(row).execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error creating lesson session: {e}")
            raise StorageFailed("Failed to create lesson session") from e

        if not result.data:
            raise StorageFailed("Failed to create lesson session")
        return LessonSession.from_row(result.data[0])

    async def list_sessions(self, owner_id: str) -> List[LessonSession]:
        try:
            result = self.supabase.table(SESSIONS_TABLE) \
                .select('*') \
                .eq('user_id', owner_id) \
                .order('created_at', desc=True) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error fetching lesson sessions: {e}")
            raise StorageFailed("Failed to load lesson sessions") from e

        return [LessonSession.from_row(row) for row in result.data or []]

    async def get_session(self, session_id: str, owner_id: str) -> Optional[LessonSession]:
        try:
            result = self.supabase.table(SESSIONS_TABLE) \
                .select(f'*, {MESSAGES_TABLE}(id, session_id, role, content, created_at)') \
                .eq('id', session_id) \
                .eq('user_id', owner_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error fetching lesson session: {e}")
            raise StorageFailed("Failed to load lesson session") from e

        if not result.data:
            return None
        return LessonSession.from_row(result.data[0])

    async def update_status(self, session_id: str, owner_id: str, status: SessionStatus) -> Optional[LessonSession]:
        """
        Flip the session status.

        The ``status = 'active'`` filter makes the write an optimistic check:
        two near-simultaneous completions update the row once and a completed
        lesson can never be reactivated.
        """
        try:
            result = self.supabase.table(SESSIONS_TABLE) \
                .update({'status': SessionStatus(status).value}) \
                .eq('id', session_id) \
                .eq('user_id', owner_id) \
                .eq('status', SessionStatus.ACTIVE.value) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error updating lesson session status: {e}")
            raise StorageFailed("Failed to update lesson status") from e

        if result.data:
            return LessonSession.from_row(result.data[0])
        # Nothing matched: either already completed or not visible to this owner
        return await self.get_session(session_id, owner_id)

    async def insert_message(self, session_id: str, role: MessageRole, content: str) -> LessonMessage:
        row = {"session_id": session_id, "role": MessageRole(role).value, "content": content}
        try:
            result = self.supabase.table(MESSAGES_TABLE).insert(row).execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error adding {row['role']} message: {e}")
            raise StorageFailed(f"Failed to store {row['role']} message") from e

        if not result.data:
            raise StorageFailed(f"Failed to store {row['role']} message")
        return LessonMessage.from_row(result.data[0])

    async def list_messages(self, session_id: str) -> List[LessonMessage]:
        try:
            result = self.supabase.table(MESSAGES_TABLE) \
                .select('*') \
                .eq('session_id', session_id) \
                .order('created_at', desc=False) \
                .execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error fetching lesson messages: {e}")
            raise StorageFailed("Failed to load lesson messages") from e

        return [LessonMessage.from_row(row) for row in result.data or []]
