"""
Shared fixtures and test doubles.

The lesson engine is exercised against the in-memory store and proficiency
source; the LLM and the speech engines are replaced by scripted fakes.
"""

import asyncio
import os
import sys
from typing import Callable, List, Optional

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "english_lesson_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from english_lesson_tutor.errors import GenerationFailed
from english_lesson_tutor.session_manager import InMemorySessionStore
from english_lesson_tutor.session_state import CurrentUser, ProficiencyLevel
from english_lesson_tutor.speech_capture import CaptureSignal
from english_lesson_tutor.speech_playback import PlaybackSignal, Utterance, Voice
from english_lesson_tutor.turn_orchestrator import TurnOrchestrator
from english_lesson_tutor.user_profile_manager import InMemoryProficiencySource


class FakeLanguageModel:
    """Returns scripted replies and records every call."""

    def __init__(self, replies: Optional[List[str]] = None, default_reply: str = "Great! What else?"):
        self.replies = list(replies or [])
        self.default_reply = default_reply
        self.calls = []
        self.fail_with: Optional[Exception] = None
        # When set, generate() blocks until the event is set
        self.gate: Optional[asyncio.Event] = None

    async def generate(self, instruction, messages):
        self.calls.append({"instruction": instruction, "messages": [dict(m) for m in messages]})
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        if self.replies:
            return self.replies.pop(0)
        return self.default_reply


class FakeCapture:
    """Speech-to-text engine driven by the test."""

    def __init__(self):
        self.listener: Optional[Callable[[CaptureSignal], None]] = None
        self.start_calls = 0
        self.stop_calls = 0
        self.start_error: Optional[Exception] = None
        # Fail only restarts (second and later start calls)
        self.restart_error: Optional[Exception] = None

    def subscribe(self, listener):
        self.listener = listener

    def start(self):
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        if self.start_calls > 1 and self.restart_error is not None:
            raise self.restart_error

    def stop(self):
        self.stop_calls += 1

    def result(self, transcript: str):
        self.listener(CaptureSignal("result", transcript=transcript))

    def end(self):
        self.listener(CaptureSignal("end"))

    def error(self, code: str):
        self.listener(CaptureSignal("error", error=code))


class FakeSynthesizer:
    """Text-to-speech engine driven by the test."""

    def __init__(self, voices: Optional[List[Voice]] = None):
        self.listener: Optional[Callable[[PlaybackSignal], None]] = None
        self._voices = voices or []
        self.spoken: List[Utterance] = []
        self.cancel_calls = 0
        self.pause_calls = 0
        self.resume_calls = 0
        self.speak_error: Optional[Exception] = None

    def subscribe(self, listener):
        self.listener = listener

    def voices(self):
        return list(self._voices)

    def speak(self, utterance):
        if self.speak_error is not None:
            raise self.speak_error
        self.spoken.append(utterance)

    def pause(self):
        self.pause_calls += 1

    def resume(self):
        self.resume_calls += 1

    def cancel(self):
        self.cancel_calls += 1

    def emit(self, kind: str, utterance_id: int, error: Optional[str] = None):
        self.listener(PlaybackSignal(kind, utterance_id, error))

    @property
    def last_id(self) -> int:
        return self.spoken[-1].id


ALICE = CurrentUser(id="user-alice", email="alice@example.com")
BOB = CurrentUser(id="user-bob", email="bob@example.com")


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def proficiency_source():
    return InMemoryProficiencySource()


@pytest.fixture
def language_model():
    return FakeLanguageModel()


@pytest.fixture
def orchestrator(store, language_model, proficiency_source):
    return TurnOrchestrator(store=store, language_model=language_model, proficiency_source=proficiency_source)


@pytest.fixture
def alice():
    return ALICE


@pytest.fixture
def bob():
    return BOB


@pytest.fixture
def lesson_factory(store):
    """Create a lesson directly in the store."""
    async def create(owner: CurrentUser = ALICE, topic: str = "Travel", level: str = "intermediate"):
        return await store.create_session(topic, ProficiencyLevel(level), owner.id)
    return create


def generation_failure():
    return GenerationFailed("Error generating AI response")
