"""
Speech I/O Coordinator

Bundles the capture and playback state machines for one lesson view. Each
view gets its own engines (injected), so nothing is shared across lessons.

Capture and playback are meant to be used one at a time: callers should not
start listening while the tutor's reply is still being spoken. This is not
enforced here; a warning is logged when it happens.
"""

import logging
from typing import Optional

from english_lesson_tutor.speech_capture import CaptureState, SpeechCapture, SpeechCaptureController
from english_lesson_tutor.speech_playback import (
    PlaybackState,
    SpeechPlaybackController,
    SpeechSettings,
    SpeechSynthesizer,
)

logger = logging.getLogger(__name__)


class SpeechIOCoordinator:
    def __init__(
        self,
        capture: Optional[SpeechCapture] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        settings: Optional[SpeechSettings] = None,
    ):
        self.capture = SpeechCaptureController(capture)
        self.playback = SpeechPlaybackController(synthesizer, settings)

    # Capability flags; a missing engine never raises
    @property
    def capture_supported(self) -> bool:
        return self.capture.supported

    @property
    def playback_supported(self) -> bool:
        return self.playback.supported

    @property
    def capture_state(self) -> CaptureState:
        return self.capture.state

    @property
    def playback_state(self) -> PlaybackState:
        return self.playback.state

    @property
    def listening(self) -> bool:
        return self.capture.listening

    @property
    def speaking(self) -> bool:
        return self.playback.speaking

    @property
    def pending_text(self) -> str:
        return self.capture.pending_text

    @property
    def capture_error(self) -> Optional[str]:
        return self.capture.error

    @property
    def playback_error(self) -> Optional[str]:
        return self.playback.error

    def start_listening(self):
        if self.playback.speaking:
            logger.warning("⚠️ [SpeechIO] Listening started while the tutor is still speaking")
        self.capture.start()

    def stop_listening(self):
        self.capture.stop()

    def take_input(self) -> str:
        return self.capture.take_input()

    def reset_capture(self):
        self.capture.reset()

    async def speak(self, text: str, **options):
        await self.playback.speak(text, **options)

    def pause(self):
        self.playback.pause()

    def resume(self):
        self.playback.resume()

    def stop_speaking(self):
        self.playback.stop()

    def visibility_changed(self, hidden: bool):
        """Host page visibility changed (tab switch, minimize)."""
        self.playback.visibility_changed(hidden)
