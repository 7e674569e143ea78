"""
Lesson Conversation (client flow)

Drives one open lesson the way the chat view does: microphone toggle, send,
optimistic display, reload of the authoritative transcript, spoken replies
and completion. Talks to the server through a transport exposing
``submit_turn``, ``get_messages`` and ``end_lesson``: either LessonApiClient
over HTTP or LocalLessonTransport around an in-process orchestrator.
"""

import logging
from typing import List, Optional

from english_lesson_tutor.errors import LessonError, SpeechPlaybackError
from english_lesson_tutor.message_overlay import DisplayMessage, PendingMessageOverlay
from english_lesson_tutor.session_state import CurrentUser, LessonMessage, SessionStatus, TurnRequest, TurnResult
from english_lesson_tutor.speech_io import SpeechIOCoordinator

logger = logging.getLogger(__name__)


class LocalLessonTransport:
    """Binds a TurnOrchestrator to one authenticated user."""

    def __init__(self, orchestrator, current_user: CurrentUser):
        self.orchestrator = orchestrator
        self.current_user = current_user

    async def submit_turn(self, session_id: str, user_message: str) -> TurnResult:
        return await self.orchestrator.submit_turn(TurnRequest(session_id, user_message), self.current_user)

    async def get_messages(self, session_id: str) -> List[LessonMessage]:
        return await self.orchestrator.get_messages(session_id, self.current_user)

    async def end_lesson(self, session_id: str):
        return await self.orchestrator.end_lesson(session_id, self.current_user)


class LessonConversation:
    def __init__(self, session_id: str, transport, speech: Optional[SpeechIOCoordinator] = None, speak_replies: bool = True):
        self.session_id = session_id
        self.transport = transport
        self.speech = speech or SpeechIOCoordinator()
        self.speak_replies = speak_replies
        self.overlay = PendingMessageOverlay()
        self.messages: List[LessonMessage] = []
        self.input_text = ""
        self.processing = False
        self.completed = False
        self.error: Optional[str] = None

    @property
    def display(self) -> List[DisplayMessage]:
        return self.overlay.view(self.messages)

    async def load(self) -> bool:
        """Fetch the persisted transcript. Returns False (and sets ``error``) on failure."""
        try:
            self.messages = await self.transport.get_messages(self.session_id)
        except LessonError as e:
            logger.warning(f"⚠️ [LessonConversation] Failed to load lesson messages: {e}")
            self.error = e.message
            return False
        self.error = None
        return True

    def toggle_microphone(self):
        if self.speech.listening:
            self.speech.stop_listening()
            spoken = self.speech.take_input()
            if spoken:
                self.input_text = spoken
            self.speech.reset_capture()
        else:
            self.speech.reset_capture()
            self.speech.start_listening()

    async def send(self, text: Optional[str] = None) -> Optional[TurnResult]:
        """
        Submit the typed text (or, failing that, the spoken transcript).

        Returns the turn result, or None when nothing was sent or the turn failed
        (``error`` then holds the message; the student may resend).
        """
        candidate = text if text is not None else self.input_text
        message_text = candidate.strip() or self.speech.pending_text.strip()
        if not message_text or self.processing or self.completed:
            return None

        local_id = self.overlay.add(message_text)
        self.input_text = ""
        self.speech.reset_capture()
        self.processing = True
        self.error = None
        try:
            result = None
            try:
                result = await self.transport.submit_turn(self.session_id, message_text)
            except LessonError as e:
                logger.warning(f"⚠️ [LessonConversation] Turn failed ({e.kind}): {e.message}")
                self.error = e.message

            # The persisted list is authoritative, including an orphaned user message
            failed_error = self.error
            reloaded = await self.load()
            if failed_error:
                self.error = failed_error
            if reloaded or result is None:
                self.overlay.settle(local_id)
            else:
                # Keep showing the sent text until a later load() succeeds
                logger.warning("⚠️ [LessonConversation] Reply received but transcript reload failed")

            if result is None:
                return None
            if result.status == SessionStatus.COMPLETED:
                self.completed = True
            if self.speak_replies and self.speech.playback_supported:
                await self._speak(result.ai_message)
            return result
        finally:
            self.processing = False

    async def replay(self, message):
        """Read an AI bubble aloud again."""
        role = getattr(message, "role", None)
        role = getattr(role, "value", role)
        text = getattr(message, "text", None) or getattr(message, "content", None)
        if role == "ai" and text:
            await self._speak(text)

    async def end_lesson(self):
        await self.transport.end_lesson(self.session_id)
        self.completed = True

    def visibility_changed(self, hidden: bool):
        self.speech.visibility_changed(hidden)

    async def _speak(self, text: str):
        try:
            await self.speech.speak(text)
        except SpeechPlaybackError as e:
            # Playback problems never fail the lesson
            logger.warning(f"⚠️ [LessonConversation] TTS playback failed: {e}")
