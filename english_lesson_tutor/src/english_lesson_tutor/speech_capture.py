"""
Speech Capture State Machine

Live speech-to-text input for a lesson view:

    IDLE --start--> LISTENING --stop--> IDLE

While listening, interim transcripts are buffered but never submitted. An
explicit stop finalizes the buffer into the input field exactly once. If the
engine ends the stream on its own while we still intend to listen, one
restart is attempted; a failing restart forces IDLE and surfaces an error.

``transition`` is pure; SpeechCaptureController feeds it from a FIFO event
queue and executes the resulting effects against the injected engine.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Deque, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

UNSUPPORTED_MESSAGE = "Speech recognition is not supported on this device."


class CaptureState(Enum):
    IDLE = "idle"
    LISTENING = "listening"


class CaptureEventType(Enum):
    START = "start"
    STOP = "stop"
    RESULT = "result"
    STREAM_END = "stream_end"
    STREAM_ERROR = "stream_error"
    START_FAILED = "start_failed"
    RESTART_FAILED = "restart_failed"
    REPORT_ERROR = "report_error"
    RESET = "reset"


class CaptureEffect(Enum):
    OPEN_STREAM = "open_stream"
    CLOSE_STREAM = "close_stream"
    RESTART_STREAM = "restart_stream"


@dataclass
class CaptureEvent:
    type: CaptureEventType
    transcript: str = ""
    error: Optional[str] = None


@dataclass
class CaptureSignal:
    """Raw engine notification: kind is "result", "end" or "error"."""
    kind: str
    transcript: str = ""
    error: Optional[str] = None


@dataclass
class CaptureModel:
    state: CaptureState = CaptureState.IDLE
    # Latest interim transcript of the current listening run
    pending_text: str = ""
    # Finalized text waiting to be picked up by the input field
    input_text: str = ""
    error: Optional[str] = None


class SpeechCapture(Protocol):
    """Speech-to-text engine provided by the host platform."""

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def subscribe(self, listener: Callable[[CaptureSignal], None]) -> None: ...


def transition(model: CaptureModel, event: CaptureEvent) -> Tuple[CaptureModel, List[CaptureEffect]]:
    """Apply one event. Returns the new model and the effects to run."""
    listening = model.state == CaptureState.LISTENING
    kind = event.type

    if kind == CaptureEventType.START:
        if listening:
            return model, []
        return replace(model, state=CaptureState.LISTENING, pending_text="", error=None), [CaptureEffect.OPEN_STREAM]

    if kind == CaptureEventType.RESULT:
        if not listening:
            return model, []
        return replace(model, pending_text=event.transcript), []

    if kind == CaptureEventType.STOP:
        if not listening:
            return model, []
        finalized = model.pending_text.strip()
        return replace(
            model,
            state=CaptureState.IDLE,
            pending_text="",
            input_text=finalized or model.input_text,
        ), [CaptureEffect.CLOSE_STREAM]

    if kind == CaptureEventType.STREAM_END:
        if not listening:
            return model, []
        return model, [CaptureEffect.RESTART_STREAM]

    if kind == CaptureEventType.STREAM_ERROR:
        return replace(model, state=CaptureState.IDLE, error=f"Speech recognition error: {event.error}"), []

    if kind == CaptureEventType.START_FAILED:
        return replace(
            model, state=CaptureState.IDLE, error=f"Error starting speech recognition: {event.error}"
        ), []

    if kind == CaptureEventType.RESTART_FAILED:
        # Buffered interim text is kept so the student can still send it
        return replace(
            model, state=CaptureState.IDLE, error=f"Speech recognition stopped unexpectedly: {event.error}"
        ), []

    if kind == CaptureEventType.REPORT_ERROR:
        return replace(model, error=event.error), []

    if kind == CaptureEventType.RESET:
        return replace(model, pending_text="", input_text="", error=None), []

    return model, []


class SpeechCaptureController:
    """Owns one capture engine for one lesson view."""

    def __init__(self, capture: Optional[SpeechCapture] = None):
        self.capture = capture
        self.supported = capture is not None
        self.model = CaptureModel()
        self._queue: Deque[CaptureEvent] = deque()
        self._draining = False

        if self.supported:
            capture.subscribe(self.handle_signal)
        else:
            self.model.error = UNSUPPORTED_MESSAGE

    @property
    def state(self) -> CaptureState:
        return self.model.state

    @property
    def listening(self) -> bool:
        return self.model.state == CaptureState.LISTENING

    @property
    def pending_text(self) -> str:
        return self.model.pending_text

    @property
    def error(self) -> Optional[str]:
        return self.model.error

    def start(self):
        if not self.supported:
            self.model.error = UNSUPPORTED_MESSAGE
            return
        self.dispatch(CaptureEvent(CaptureEventType.START))

    def stop(self):
        self.dispatch(CaptureEvent(CaptureEventType.STOP))

    def reset(self):
        self.dispatch(CaptureEvent(CaptureEventType.RESET))

    def take_input(self) -> str:
        """Hand the finalized transcript to the caller; later calls return ""."""
        text = self.model.input_text
        self.model = replace(self.model, input_text="")
        return text

    def handle_signal(self, signal: CaptureSignal):
        if signal.kind == "result":
            self.dispatch(CaptureEvent(CaptureEventType.RESULT, transcript=signal.transcript))
        elif signal.kind == "end":
            self.dispatch(CaptureEvent(CaptureEventType.STREAM_END))
        elif signal.kind == "error":
            self.dispatch(CaptureEvent(CaptureEventType.STREAM_ERROR, error=signal.error or "unknown"))
        else:
            logger.debug(f"🎙️ [SpeechCapture] Ignoring unknown signal: {signal.kind}")

    def dispatch(self, event: CaptureEvent):
        """Queue an event; engine callbacks fired mid-effect are handled after it."""
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

    def _run(self, effect: CaptureEffect):
        if effect == CaptureEffect.OPEN_STREAM:
            try:
                self.capture.start()
            except Exception as e:
                logger.warning(f"⚠️ [SpeechCapture] Could not start recognition: {e}")
                self._queue.append(CaptureEvent(CaptureEventType.START_FAILED, error=str(e)))
        elif effect == CaptureEffect.RESTART_STREAM:
            logger.info("🎙️ [SpeechCapture] Stream ended while listening, restarting once")
            try:
                self.capture.start()
            except Exception as e:
                logger.warning(f"⚠️ [SpeechCapture] Restart failed: {e}")
                self._queue.append(CaptureEvent(CaptureEventType.RESTART_FAILED, error=str(e)))
        elif effect == CaptureEffect.CLOSE_STREAM:
            try:
                self.capture.stop()
            except Exception as e:
                logger.warning(f"⚠️ [SpeechCapture] Could not stop recognition: {e}")
                self._queue.append(
                    CaptureEvent(CaptureEventType.REPORT_ERROR, error=f"Error stopping speech recognition: {e}")
                )
