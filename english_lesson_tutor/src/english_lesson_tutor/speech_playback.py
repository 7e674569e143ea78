"""
Speech Playback State Machine

Text-to-speech for tutor replies:

    IDLE --play--> SPEAKING --end/error--> IDLE
                   SPEAKING <--pause/resume--> PAUSED

Rules:
- At most one utterance is active; starting playback cancels the current one
- Signals for a superseded utterance are ignored
- Losing page visibility while speaking pauses; regaining it resumes
- An "interrupted" termination resolves the caller's await, any other error
  rejects it with SpeechPlaybackError
"""

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Protocol, Tuple

from english_lesson_tutor.errors import SpeechPlaybackError

logger = logging.getLogger(__name__)

INTERRUPTED = "interrupted"

ERROR_MESSAGES = {
    INTERRUPTED: "Speech was interrupted. This may happen when the page loses focus or another speech starts.",
    "network": "Network error occurred during speech synthesis.",
    "synthesis-failed": "Speech synthesis failed. Please try again.",
    "synthesis-unavailable": "Speech synthesis is unavailable. Please check your browser settings.",
    "audio-busy": "Audio system is busy. Please wait and try again.",
    "not-allowed": "Speech synthesis not allowed. Please check permissions.",
}

RATE_RANGE = (0.1, 10.0)
PITCH_RANGE = (0.0, 2.0)
VOLUME_RANGE = (0.0, 1.0)


def error_message(code: Optional[str]) -> str:
    return ERROR_MESSAGES.get(code or "", f"Speech synthesis error: {code}")


def _clamp(value: float, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


class PlaybackState(Enum):
    IDLE = "idle"
    SPEAKING = "speaking"
    PAUSED = "paused"


@dataclass
class Voice:
    name: str
    uri: str = ""
    lang: str = ""


@dataclass
class SpeechSettings:
    """Student's saved voice preferences."""
    voice: Optional[str] = None
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0


@dataclass
class Utterance:
    id: int
    text: str
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    voice: Optional[Voice] = None


@dataclass
class PlaybackSignal:
    """Engine notification: kind is start, end, error, pause or resume."""
    kind: str
    utterance_id: int
    error: Optional[str] = None


class SpeechSynthesizer(Protocol):
    """Text-to-speech engine provided by the host platform."""

    def voices(self) -> List[Voice]: ...

    def speak(self, utterance: Utterance) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def cancel(self) -> None: ...

    def subscribe(self, listener: Callable[[PlaybackSignal], None]) -> None: ...


class PlaybackEventType(Enum):
    PLAY = "play"
    STARTED = "started"
    ENDED = "ended"
    ERRORED = "errored"
    SPEAK_FAILED = "speak_failed"
    ENGINE_PAUSED = "engine_paused"
    ENGINE_RESUMED = "engine_resumed"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    VISIBILITY_HIDDEN = "visibility_hidden"
    VISIBILITY_VISIBLE = "visibility_visible"


@dataclass
class PlaybackEvent:
    type: PlaybackEventType
    utterance_id: Optional[int] = None
    error: Optional[str] = None


class PlaybackEffectType(Enum):
    SPEAK = "speak"
    CANCEL = "cancel"
    PAUSE = "pause"
    RESUME = "resume"
    RESOLVE = "resolve"
    REJECT = "reject"


@dataclass
class PlaybackEffect:
    type: PlaybackEffectType
    utterance_id: Optional[int] = None
    code: Optional[str] = None
    message: Optional[str] = None


@dataclass
class PlaybackModel:
    state: PlaybackState = PlaybackState.IDLE
    active_id: Optional[int] = None
    # Set only when the pause came from the page going hidden
    paused_by_visibility: bool = False
    error: Optional[str] = None


def _finish(model: PlaybackModel, error: Optional[str] = None) -> PlaybackModel:
    return replace(model, state=PlaybackState.IDLE, active_id=None, paused_by_visibility=False, error=error)


def transition(model: PlaybackModel, event: PlaybackEvent) -> Tuple[PlaybackModel, List[PlaybackEffect]]:
    """Apply one event. Returns the new model and the effects to run."""
    kind = event.type
    is_active = event.utterance_id is not None and event.utterance_id == model.active_id

    if kind == PlaybackEventType.PLAY:
        effects = [PlaybackEffect(PlaybackEffectType.CANCEL)]
        if model.active_id is not None:
            # The superseded utterance ends as an interruption
            effects.append(PlaybackEffect(PlaybackEffectType.RESOLVE, model.active_id))
        effects.append(PlaybackEffect(PlaybackEffectType.SPEAK, event.utterance_id))
        return replace(
            model,
            state=PlaybackState.SPEAKING,
            active_id=event.utterance_id,
            paused_by_visibility=False,
            error=None,
        ), effects

    if kind == PlaybackEventType.STARTED:
        if not is_active or model.state == PlaybackState.PAUSED:
            return model, []
        return replace(model, state=PlaybackState.SPEAKING, error=None), []

    if kind == PlaybackEventType.ENDED:
        if not is_active:
            return model, []
        return _finish(model), [PlaybackEffect(PlaybackEffectType.RESOLVE, event.utterance_id)]

    if kind in (PlaybackEventType.ERRORED, PlaybackEventType.SPEAK_FAILED):
        if not is_active:
            return model, []
        if kind == PlaybackEventType.SPEAK_FAILED:
            code, message = "speak-failed", f"Failed to start speech: {event.error}"
        else:
            code, message = event.error, error_message(event.error)
        if code == INTERRUPTED:
            return _finish(model), [PlaybackEffect(PlaybackEffectType.RESOLVE, event.utterance_id)]
        return _finish(model, message), [
            PlaybackEffect(PlaybackEffectType.REJECT, event.utterance_id, code=code, message=message)
        ]

    if kind == PlaybackEventType.ENGINE_PAUSED:
        if is_active and model.state == PlaybackState.SPEAKING:
            return replace(model, state=PlaybackState.PAUSED), []
        return model, []

    if kind == PlaybackEventType.ENGINE_RESUMED:
        if is_active and model.state == PlaybackState.PAUSED:
            return replace(model, state=PlaybackState.SPEAKING, paused_by_visibility=False), []
        return model, []

    if kind == PlaybackEventType.PAUSE:
        if model.state != PlaybackState.SPEAKING:
            return model, []
        return replace(model, state=PlaybackState.PAUSED), [PlaybackEffect(PlaybackEffectType.PAUSE)]

    if kind == PlaybackEventType.RESUME:
        if model.state != PlaybackState.PAUSED:
            return model, []
        return replace(model, state=PlaybackState.SPEAKING, paused_by_visibility=False), [
            PlaybackEffect(PlaybackEffectType.RESUME)
        ]

    if kind == PlaybackEventType.STOP:
        effects = [PlaybackEffect(PlaybackEffectType.CANCEL)]
        if model.active_id is not None:
            effects.append(PlaybackEffect(PlaybackEffectType.RESOLVE, model.active_id))
        return _finish(model, model.error), effects

    if kind == PlaybackEventType.VISIBILITY_HIDDEN:
        if model.state != PlaybackState.SPEAKING:
            return model, []
        return replace(model, state=PlaybackState.PAUSED, paused_by_visibility=True), [
            PlaybackEffect(PlaybackEffectType.PAUSE)
        ]

    if kind == PlaybackEventType.VISIBILITY_VISIBLE:
        if model.state != PlaybackState.PAUSED or not model.paused_by_visibility:
            return model, []
        return replace(model, state=PlaybackState.SPEAKING, paused_by_visibility=False), [
            PlaybackEffect(PlaybackEffectType.RESUME)
        ]

    return model, []


class SpeechPlaybackController:
    """Owns one synthesis engine for one lesson view."""

    _SIGNAL_EVENTS = {
        "start": PlaybackEventType.STARTED,
        "end": PlaybackEventType.ENDED,
        "error": PlaybackEventType.ERRORED,
        "pause": PlaybackEventType.ENGINE_PAUSED,
        "resume": PlaybackEventType.ENGINE_RESUMED,
    }

    def __init__(self, synthesizer: Optional[SpeechSynthesizer] = None, settings: Optional[SpeechSettings] = None):
        self.synthesizer = synthesizer
        self.supported = synthesizer is not None
        self.settings = settings or SpeechSettings()
        self.model = PlaybackModel()
        self._ids = itertools.count(1)
        self._utterances: Dict[int, Utterance] = {}
        self._waiters: Dict[int, asyncio.Future] = {}
        self._queue: Deque[PlaybackEvent] = deque()
        self._draining = False

        if self.supported:
            synthesizer.subscribe(self.handle_signal)
        else:
            self.model.error = "Text-to-speech is not supported on this device."

    @property
    def state(self) -> PlaybackState:
        return self.model.state

    @property
    def speaking(self) -> bool:
        return self.model.state in (PlaybackState.SPEAKING, PlaybackState.PAUSED)

    @property
    def paused(self) -> bool:
        return self.model.state == PlaybackState.PAUSED

    @property
    def error(self) -> Optional[str]:
        return self.model.error

    def find_voice(self, voice_name: Optional[str]) -> Optional[Voice]:
        """Match a saved voice by name, URI or language tag."""
        if not voice_name or not self.supported:
            return None
        for voice in self.synthesizer.voices():
            if voice_name in (voice.name, voice.uri, voice.lang):
                return voice
        return None

    def build_utterance(
        self,
        text: str,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
        volume: Optional[float] = None,
        voice: Optional[str] = None,
    ) -> Utterance:
        return Utterance(
            id=next(self._ids),
            text=text,
            rate=_clamp(self.settings.rate if rate is None else rate, RATE_RANGE),
            pitch=_clamp(self.settings.pitch if pitch is None else pitch, PITCH_RANGE),
            volume=_clamp(self.settings.volume if volume is None else volume, VOLUME_RANGE),
            voice=self.find_voice(voice or self.settings.voice),
        )

    async def speak(self, text: str, **options) -> None:
        """
        Speak ``text`` and wait until it finishes.

        Options (rate, pitch, volume, voice) override the saved settings.

        Raises:
            SpeechPlaybackError: unsupported engine, empty text, or a
                non-interruption engine error
        """
        if not self.supported:
            raise SpeechPlaybackError("Speech synthesis not supported", code="unsupported")
        if not text or not text.strip():
            raise SpeechPlaybackError("No text provided", code="empty-text")

        utterance = self.build_utterance(text, **options)
        waiter = asyncio.get_running_loop().create_future()
        self._utterances[utterance.id] = utterance
        self._waiters[utterance.id] = waiter
        self.dispatch(PlaybackEvent(PlaybackEventType.PLAY, utterance.id))
        await waiter

    def pause(self):
        self.dispatch(PlaybackEvent(PlaybackEventType.PAUSE))

    def resume(self):
        self.dispatch(PlaybackEvent(PlaybackEventType.RESUME))

    def stop(self):
        self.dispatch(PlaybackEvent(PlaybackEventType.STOP))

    def visibility_changed(self, hidden: bool):
        event_type = PlaybackEventType.VISIBILITY_HIDDEN if hidden else PlaybackEventType.VISIBILITY_VISIBLE
        self.dispatch(PlaybackEvent(event_type))

    def handle_signal(self, signal: PlaybackSignal):
        event_type = self._SIGNAL_EVENTS.get(signal.kind)
        if event_type is None:
            logger.debug(f"🔈 [SpeechPlayback] Ignoring unknown signal: {signal.kind}")
            return
        self.dispatch(PlaybackEvent(event_type, signal.utterance_id, signal.error))

    def dispatch(self, event: PlaybackEvent):
        self._queue.append(event)
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue:
                next_event = self._queue.popleft()
                self.model, effects = transition(self.model, next_event)
                for effect in effects:
                    self._run(effect)
        finally:
            self._draining = False

    def _run(self, effect: PlaybackEffect):
        kind = effect.type
        if kind == PlaybackEffectType.SPEAK:
            utterance = self._utterances.get(effect.utterance_id)
            try:
                self.synthesizer.speak(utterance)
            except Exception as e:
                logger.warning(f"⚠️ [SpeechPlayback] Engine refused utterance: {e}")
                self._queue.append(PlaybackEvent(PlaybackEventType.SPEAK_FAILED, effect.utterance_id, str(e)))
        elif kind == PlaybackEffectType.CANCEL:
            if self.supported:
                self.synthesizer.cancel()
        elif kind == PlaybackEffectType.PAUSE:
            self.synthesizer.pause()
        elif kind == PlaybackEffectType.RESUME:
            self.synthesizer.resume()
        elif kind == PlaybackEffectType.RESOLVE:
            waiter = self._release(effect.utterance_id)
            if waiter is not None and not waiter.done():
                waiter.set_result(None)
        elif kind == PlaybackEffectType.REJECT:
            logger.warning(f"⚠️ [SpeechPlayback] {effect.message}")
            waiter = self._release(effect.utterance_id)
            if waiter is not None and not waiter.done():
                waiter.set_exception(SpeechPlaybackError(effect.message, code=effect.code))

    def _release(self, utterance_id: Optional[int]) -> Optional[asyncio.Future]:
        self._utterances.pop(utterance_id, None)
        return self._waiters.pop(utterance_id, None)
