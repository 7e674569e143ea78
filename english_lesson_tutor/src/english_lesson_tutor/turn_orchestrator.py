"""
Lesson Turn Orchestrator

Runs one tutoring turn end to end:
- Guard the session (format, auth, ownership, not completed)
- Persist the student's message immediately
- Rebuild the transcript and the adaptive instruction
- Single LLM call
- Detect and strip the completion marker
- Persist the tutor's reply and any status change

Also exposes the guarded lesson lifecycle operations the API needs
(start, list, load, read messages, end).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from english_lesson_tutor.completion_detector import CompletionDetector
from english_lesson_tutor.config import TutorConfig
from english_lesson_tutor.errors import InvalidInput, StorageFailed, Unauthenticated
from english_lesson_tutor.proficiency_aggregator import ProficiencyAggregator
from english_lesson_tutor.prompt_composer import PromptComposer
from english_lesson_tutor.session_guard import SessionGuard
from english_lesson_tutor.session_state import (
    CurrentUser,
    LessonMessage,
    LessonSession,
    MessageRole,
    ProficiencyLevel,
    SessionStatus,
    TurnRequest,
    TurnResult,
)

logger = logging.getLogger(__name__)

# Stored role -> chat completion role
_MODEL_ROLES = {
    MessageRole.USER: "user",
    MessageRole.AI: "assistant",
}


def to_model_messages(messages: List[LessonMessage]) -> List[Dict[str, str]]:
    return [{"role": _MODEL_ROLES[m.role], "content": m.content} for m in messages]


class TurnOrchestrator:
    """
    One canonical turn flow per lesson.

    Turns for the same session are serialized with a per-session lock: a second
    submit waits for the first to finish, then runs its own guard check. Nothing
    is retried here; a failure after the user message is stored leaves an
    orphan user message, which the client recovers from by resubmitting.
    """

    def __init__(
        self,
        store,
        language_model,
        proficiency_source,
        config: Optional[TutorConfig] = None,
        guard: Optional[SessionGuard] = None,
        aggregator: Optional[ProficiencyAggregator] = None,
        composer: Optional[PromptComposer] = None,
        detector: Optional[CompletionDetector] = None,
    ):
        self.config = config or TutorConfig()
        self.store = store
        self.language_model = language_model
        self.guard = guard or SessionGuard(store)
        self.aggregator = aggregator or ProficiencyAggregator(
            proficiency_source, window_size=self.config.proficiency_window
        )
        self.composer = composer or PromptComposer()
        self.detector = detector or CompletionDetector()
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    @asynccontextmanager
    async def _session_lock(self, session_id: str):
        # Entries live only while some coroutine holds or awaits the lock
        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        self._lock_holders[session_id] = self._lock_holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[session_id] -= 1
            if self._lock_holders[session_id] == 0:
                del self._lock_holders[session_id]
                del self._session_locks[session_id]

    def is_turn_pending(self, session_id: str) -> bool:
        lock = self._session_locks.get(session_id)
        return lock is not None and lock.locked()

    async def submit_turn(self, request: TurnRequest, current_user: Optional[CurrentUser]) -> TurnResult:
        """
        Run one turn.

        Raises:
            InvalidInput, Unauthenticated, NotFound, AlreadyCompleted,
            GenerationFailed, StorageFailed
        """
        user_text = request.user_message.strip() if isinstance(request.user_message, str) else ""
        if not request.session_id or not user_text:
            raise InvalidInput()

        async with self._session_lock(request.session_id):
            return await self._run_turn(request.session_id, user_text, current_user)

    async def _run_turn(self, session_id: str, user_text: str, current_user: Optional[CurrentUser]) -> TurnResult:
        session = await self.guard.authorize(session_id, current_user)
        logger.info(f"📥 [TurnOrchestrator] Turn for session {session_id[:8]}... ({len(user_text)} chars)")

        # Stored before the model call so the student's text survives a failed generation
        user_message = await self.store.insert_message(session.id, MessageRole.USER, user_text)

        history = [m for m in await self.store.list_messages(session.id) if m.id != user_message.id]
        transcript = to_model_messages(history)
        transcript.append({"role": "user", "content": user_text})

        profile = await self.aggregator.aggregate(session.user_id, session.level.value)
        instruction = self.composer.compose(session.topic, session.level.value, profile)

        raw_reply = await self.language_model.generate(instruction, transcript)
        detection = self.detector.detect(raw_reply)

        await self.store.insert_message(session.id, MessageRole.AI, detection.cleaned_text)

        completed = detection.completed
        if not completed and self._reached_message_cap(len(history) + 2):
            logger.info(f"🏁 [TurnOrchestrator] Message cap reached for session {session_id[:8]}...")
            completed = True

        if completed:
            await self.store.update_status(session.id, session.user_id, SessionStatus.COMPLETED)
            logger.info(f"🎉 [TurnOrchestrator] Lesson {session_id[:8]}... completed")

        return TurnResult(
            ai_message=detection.cleaned_text,
            status=SessionStatus.COMPLETED if completed else SessionStatus.ACTIVE,
        )

    def _reached_message_cap(self, message_count: int) -> bool:
        cap = self.config.lesson_max_messages
        return cap > 0 and message_count >= cap

    # ==================== Lesson lifecycle ====================

    async def start_lesson(self, topic: str, level: str, current_user: Optional[CurrentUser]) -> LessonSession:
        """Create a new active lesson for the caller."""
        if current_user is None or not current_user.id:
            raise Unauthenticated()
        topic = topic.strip() if isinstance(topic, str) else ""
        if not topic:
            raise InvalidInput("Lesson topic is required")
        try:
            lesson_level = ProficiencyLevel(level)
        except ValueError:
            allowed = ", ".join(l.value for l in ProficiencyLevel)
            raise InvalidInput(f"Invalid level '{level}'. Expected one of: {allowed}") from None

        session = await self.store.create_session(topic, lesson_level, current_user.id)
        logger.info(f"📚 [TurnOrchestrator] Started lesson {session.id[:8]}... on '{topic}' ({lesson_level.value})")
        return session

    async def list_lessons(self, current_user: Optional[CurrentUser]) -> List[LessonSession]:
        if current_user is None or not current_user.id:
            raise Unauthenticated()
        return await self.store.list_sessions(current_user.id)

    async def get_lesson(self, session_id: str, current_user: Optional[CurrentUser]) -> LessonSession:
        """Session with its ordered transcript; completed lessons are readable."""
        return await self.guard.load(session_id, current_user)

    async def get_messages(self, session_id: str, current_user: Optional[CurrentUser]) -> List[LessonMessage]:
        session = await self.guard.load(session_id, current_user)
        return await self.store.list_messages(session.id)

    async def end_lesson(self, session_id: str, current_user: Optional[CurrentUser]) -> LessonSession:
        """Mark a lesson completed on the student's request. Idempotent."""
        session = await self.guard.load(session_id, current_user)
        if session.is_completed:
            return session
        async with self._session_lock(session.id):
            updated = await self.store.update_status(session.id, session.user_id, SessionStatus.COMPLETED)
        if updated is None:
            raise StorageFailed("Failed to update lesson status")
        logger.info(f"🏁 [TurnOrchestrator] Lesson {session_id[:8]}... ended by student")
        return updated
