"""
Unit Tests for Turn Orchestrator

Covers the turn flow, failure handling, completion and the lesson lifecycle.
"""

import asyncio
import uuid

import pytest

from conftest import FakeLanguageModel, generation_failure
from english_lesson_tutor.config import TutorConfig
from english_lesson_tutor.errors import (
    AlreadyCompleted,
    GenerationFailed,
    InvalidInput,
    NotFound,
    StorageFailed,
    Unauthenticated,
)
from english_lesson_tutor.session_manager import InMemorySessionStore
from english_lesson_tutor.session_state import (
    LessonMessage,
    MessageRole,
    ProficiencyLevel,
    ProficiencySnapshot,
    SessionStatus,
    TurnRequest,
)
from english_lesson_tutor.turn_orchestrator import TurnOrchestrator, to_model_messages


class TestTurnFlow:

    @pytest.mark.asyncio
    async def test_single_turn_persists_both_messages(self, orchestrator, store, lesson_factory, alice):
        lesson = await lesson_factory(owner=alice)
        result = await orchestrator.submit_turn(TurnRequest(lesson.id, "Hello, I like trains."), alice)

        assert result.ai_message == "Great! What else?"
        assert result.status == SessionStatus.ACTIVE
        messages = await store.list_messages(lesson.id)
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.AI]
        assert messages[0].content == "Hello, I like trains."
        assert messages[1].content == "Great! What else?"

    @pytest.mark.asyncio
    async def test_user_text_is_trimmed(self, orchestrator, store, lesson_factory, alice):
        lesson = await lesson_factory(owner=alice)
        await orchestrator.submit_turn(TurnRequest(lesson.id, "   hi there \n"), alice)
        messages = await store.list_messages(lesson.id)
        assert messages[0].content == "hi there"

    @pytest.mark.asyncio
    async def test_transcript_sent_to_model_in_order(self, orchestrator, language_model, lesson_factory, alice):
        lesson = await lesson_factory(owner=alice)
        language_model.replies = ["First reply", "Second reply"]
        await orchestrator.submit_turn(TurnRequest(lesson.id, "one"), alice)
        await orchestrator.submit_turn(TurnRequest(lesson.id, "two"), alice)

        sent = language_model.calls[1]["messages"]
        assert sent == [
            {"role": "user", "content": "one"},
            {"role": "assistant", "content": "First reply"},
            {"role": "user", "content": "two"},
        ]

    @pytest.mark.asyncio
    async def test_instruction_reflects_lesson_and_profile(
        self, orchestrator, language_model, proficiency_source, lesson_factory, alice
    ):
        proficiency_source.record(alice.id, ProficiencySnapshot(0.3, 0.3, 0.3, 0.3))
        lesson = await lesson_factory(owner=alice, topic="Cooking", level="beginner")
        await orchestrator.submit_turn(TurnRequest(lesson.id, "I cook pasta"), alice)

        instruction = language_model.calls[0]["instruction"]
        assert "The current topic is: Cooking." in instruction
        assert "level beginner English" in instruction
        assert "Overall accuracy from past lessons: 30%" in instruction
        assert "struggles with grammar" in instruction

    @pytest.mark.asyncio
    async def test_n_turns_give_2n_alternating_messages(self, orchestrator, store, lesson_factory, alice):
        lesson = await lesson_factory(owner=alice)
        for i in range(4):
            await orchestrator.submit_turn(TurnRequest(lesson.id, f"message {i}"), alice)

        messages = await store.list_messages(lesson.id)
        assert len(messages) == 8
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.AI] * 4
        timestamps = [m.created_at for m in messages]
        assert timestamps == sorted(timestamps)
        assert len(set(timestamps)) == len(timestamps)


class TestTurnValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_message_rejected(self, orchestrator, store, lesson_factory, alice, text):
        lesson = await lesson_factory(owner=alice)
        with pytest.raises(InvalidInput):
            await orchestrator.submit_turn(TurnRequest(lesson.id, text), alice)
        assert await store.list_messages(lesson.id) == []

    @pytest.mark.asyncio
    async def test_missing_session_id_rejected(self, orchestrator, alice):
        with pytest.raises(InvalidInput):
            await orchestrator.submit_turn(TurnRequest("", "hello"), alice)

    @pytest.mark.asyncio
    async def test_malformed_session_id_rejected(self, orchestrator, language_model, alice):
        with pytest.raises(InvalidInput):
            await orchestrator.submit_turn(TurnRequest("session-1", "hello"), alice)
        assert language_model.calls == []

    @pytest.mark.asyncio
    async def test_anonymous_caller_rejected(self, orchestrator, lesson_factory):
        lesson = await lesson_factory()
        with pytest.raises(Unauthenticated):
            await orchestrator.submit_turn(TurnRequest(lesson.id, "hello"), None)

    @pytest.mark.asyncio
    async def test_foreign_session_not_found_and_untouched(self, orchestrator, store, lesson_factory, alice, bob):
        lesson = await lesson_factory(owner=alice)
        with pytest.raises(NotFound):
            await orchestrator.submit_turn(TurnRequest(lesson.id, "hi"), bob)
        assert await store.list_messages(lesson.id) == []

    @pytest.mark.asyncio
    async def test_unknown_session_not_found(self, orchestrator, alice):
        with pytest.raises(NotFound):
            await orchestrator.submit_turn(TurnRequest(str(uuid.uuid4()), "hi"), alice)


class TestTurnFailures:

    @pytest.mark.asyncio
    async def test_generation_failure_leaves_orphan_user_message(
        self, orchestrator, language_model, store, lesson_factory, alice
    ):
        lesson = await lesson_factory(owner=alice)
        language_model.fail_with = generation_failure()

        with pytest.raises(GenerationFailed):
            await orchestrator.submit_turn(TurnRequest(lesson.id, "Are you there?"), alice)

        messages = await store.list_messages(lesson.id)
        assert len(messages) == 1
        assert messages[0].role == MessageRole.USER
        session = await store.get_session(lesson.id, alice.id)
        assert session.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_resubmit_after_failure_sends_orphan_too(
        self, orchestrator, language_model, store, lesson_factory, alice
    ):
        lesson = await lesson_factory(owner=alice)
        language_model.fail_with = generation_failure()
        with pytest.raises(GenerationFailed):
            await orchestrator.submit_turn(TurnRequest(lesson.id, "first try"), alice)

        language_model.fail_with = None
        await orchestrator.submit_turn(TurnRequest(lesson.id, "second try"), alice)

        sent = language_model.calls[-1]["messages"]
        assert sent == [
            {"role": "user", "content": "first try"},
            {"role": "user", "content": "second try"},
        ]
        roles = [m.role for m in await store.list_messages(lesson.id)]
        assert roles == [MessageRole.USER, MessageRole.USER, MessageRole.AI]

    @pytest.mark.asyncio
    async def test_reply_storage_failure_keeps_only_user_message(self, proficiency_source, alice):
        class ReplyRejectingStore(InMemorySessionStore):
            async def insert_message(self, session_id, role, content):
                if role == MessageRole.AI:
                    raise StorageFailed()
                return await super().insert_message(session_id, role, content)

        store = ReplyRejectingStore()
        orchestrator = TurnOrchestrator(
            store=store,
            language_model=FakeLanguageModel(replies=['All done! {"status":"completed"}']),
            proficiency_source=proficiency_source,
        )
        lesson = await store.create_session("Travel", ProficiencyLevel.BEGINNER, alice.id)

        with pytest.raises(StorageFailed):
            await orchestrator.submit_turn(TurnRequest(lesson.id, "Goodbye"), alice)

        messages = await store.list_messages(lesson.id)
        assert [(m.role, m.content) for m in messages] == [(MessageRole.USER, "Goodbye")]
        session = await store.get_session(lesson.id, alice.id)
        assert session.status == SessionStatus.ACTIVE
        assert orchestrator._session_locks == {}


class TestCompletion:

    @pytest.mark.asyncio
    async def test_marker_completes_lesson_once(self, orchestrator, language_model, store, lesson_factory, alice):
        lesson = await lesson_factory(owner=alice)
        language_model.replies = ['Excellent work today! {"status":"completed"}']

        result = await orchestrator.submit_turn(TurnRequest(lesson.id, "Thank you"), alice)

        assert result.status == SessionStatus.COMPLETED
        assert result.ai_message == "Excellent work today!"
        messages = await store.list_messages(lesson.id)
        assert messages[-1].content == "Excellent work today!"
        session = await store.get_session(lesson.id, alice.id)
        assert session.status == SessionStatus.COMPLETED

        with pytest.raises(AlreadyCompleted):
            await orchestrator.submit_turn(TurnRequest(lesson.id, "One more?"), alice)
        assert len(await store.list_messages(lesson.id)) == 2

    @pytest.mark.asyncio
    async def test_message_cap_completes_lesson(self, store, proficiency_source, lesson_factory, alice):
        orchestrator = TurnOrchestrator(
            store=store,
            language_model=FakeLanguageModel(),
            proficiency_source=proficiency_source,
            config=TutorConfig(lesson_max_messages=4),
        )
        lesson = await lesson_factory(owner=alice)

        first = await orchestrator.submit_turn(TurnRequest(lesson.id, "one"), alice)
        second = await orchestrator.submit_turn(TurnRequest(lesson.id, "two"), alice)

        assert first.status == SessionStatus.ACTIVE
        assert second.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_no_cap_by_default(self, orchestrator, lesson_factory, alice):
        lesson = await lesson_factory(owner=alice)
        for i in range(12):
            result = await orchestrator.submit_turn(TurnRequest(lesson.id, f"turn {i}"), alice)
        assert result.status == SessionStatus.ACTIVE


class TestConcurrentTurns:

    @pytest.mark.asyncio
    async def test_overlapping_turns_are_serialized(self, orchestrator, language_model, store, lesson_factory, alice):
        lesson = await lesson_factory(owner=alice)
        language_model.gate = asyncio.Event()
        language_model.replies = ["reply A", "reply B"]

        first = asyncio.ensure_future(orchestrator.submit_turn(TurnRequest(lesson.id, "A"), alice))
        second = asyncio.ensure_future(orchestrator.submit_turn(TurnRequest(lesson.id, "B"), alice))
        await asyncio.sleep(0.01)

        assert orchestrator.is_turn_pending(lesson.id)
        # Only the first turn has reached the model
        assert len(language_model.calls) == 1
        language_model.gate.set()
        await asyncio.gather(first, second)

        messages = await store.list_messages(lesson.id)
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.USER, "A"),
            (MessageRole.AI, "reply A"),
            (MessageRole.USER, "B"),
            (MessageRole.AI, "reply B"),
        ]
        assert not orchestrator.is_turn_pending(lesson.id)
        assert orchestrator._session_locks == {}

    @pytest.mark.asyncio
    async def test_queued_turn_rechecks_completion(self, orchestrator, language_model, store, lesson_factory, alice):
        lesson = await lesson_factory(owner=alice)
        language_model.gate = asyncio.Event()
        language_model.replies = ['Goodbye! "status":"completed"']

        first = asyncio.ensure_future(orchestrator.submit_turn(TurnRequest(lesson.id, "bye"), alice))
        second = asyncio.ensure_future(orchestrator.submit_turn(TurnRequest(lesson.id, "wait"), alice))
        await asyncio.sleep(0.01)
        language_model.gate.set()

        results = await asyncio.gather(first, second, return_exceptions=True)
        assert results[0].status == SessionStatus.COMPLETED
        assert isinstance(results[1], AlreadyCompleted)
        assert len(await store.list_messages(lesson.id)) == 2

    @pytest.mark.asyncio
    async def test_different_sessions_do_not_block(self, orchestrator, language_model, lesson_factory, alice):
        first_lesson = await lesson_factory(owner=alice)
        second_lesson = await lesson_factory(owner=alice)
        language_model.gate = asyncio.Event()

        first = asyncio.ensure_future(orchestrator.submit_turn(TurnRequest(first_lesson.id, "A"), alice))
        second = asyncio.ensure_future(orchestrator.submit_turn(TurnRequest(second_lesson.id, "B"), alice))
        await asyncio.sleep(0.01)

        assert len(language_model.calls) == 2
        language_model.gate.set()
        await asyncio.gather(first, second)

    @pytest.mark.asyncio
    async def test_session_lock_released_only_after_last_waiter(
        self, orchestrator, language_model, lesson_factory, alice
    ):
        lesson = await lesson_factory(owner=alice)
        language_model.gate = asyncio.Event()

        first = asyncio.ensure_future(orchestrator.submit_turn(TurnRequest(lesson.id, "A"), alice))
        await asyncio.sleep(0.01)
        ending = asyncio.ensure_future(orchestrator.end_lesson(lesson.id, alice))
        await asyncio.sleep(0.01)

        assert list(orchestrator._session_locks) == [lesson.id]
        language_model.gate.set()
        await first
        ended = await ending

        assert ended.status == SessionStatus.COMPLETED
        assert orchestrator._session_locks == {}
        assert not orchestrator.is_turn_pending(lesson.id)

    @pytest.mark.asyncio
    async def test_sequential_turns_leave_no_locks(self, orchestrator, lesson_factory, alice):
        for _ in range(3):
            lesson = await lesson_factory(owner=alice)
            await orchestrator.submit_turn(TurnRequest(lesson.id, "Hello"), alice)
        assert orchestrator._session_locks == {}


class TestLessonLifecycle:

    @pytest.mark.asyncio
    async def test_start_lesson(self, orchestrator, alice):
        lesson = await orchestrator.start_lesson("  Shopping  ", "beginner", alice)
        assert lesson.topic == "Shopping"
        assert lesson.level.value == "beginner"
        assert lesson.status == SessionStatus.ACTIVE
        assert lesson.user_id == alice.id

    @pytest.mark.asyncio
    async def test_start_lesson_validates_input(self, orchestrator, alice):
        with pytest.raises(InvalidInput):
            await orchestrator.start_lesson("", "beginner", alice)
        with pytest.raises(InvalidInput):
            await orchestrator.start_lesson("Shopping", "expert", alice)
        with pytest.raises(Unauthenticated):
            await orchestrator.start_lesson("Shopping", "beginner", None)

    @pytest.mark.asyncio
    async def test_list_lessons_only_returns_own(self, orchestrator, alice, bob):
        await orchestrator.start_lesson("Travel", "intermediate", alice)
        await orchestrator.start_lesson("Work", "advanced", alice)
        await orchestrator.start_lesson("Music", "beginner", bob)

        topics = {lesson.topic for lesson in await orchestrator.list_lessons(alice)}
        assert topics == {"Travel", "Work"}

    @pytest.mark.asyncio
    async def test_get_lesson_includes_transcript(self, orchestrator, alice):
        lesson = await orchestrator.start_lesson("Travel", "intermediate", alice)
        await orchestrator.submit_turn(TurnRequest(lesson.id, "hello"), alice)

        loaded = await orchestrator.get_lesson(lesson.id, alice)
        assert [m.role for m in loaded.messages] == [MessageRole.USER, MessageRole.AI]

    @pytest.mark.asyncio
    async def test_get_messages_guarded(self, orchestrator, alice, bob):
        lesson = await orchestrator.start_lesson("Travel", "intermediate", alice)
        with pytest.raises(NotFound):
            await orchestrator.get_messages(lesson.id, bob)

    @pytest.mark.asyncio
    async def test_end_lesson_is_idempotent(self, orchestrator, alice):
        lesson = await orchestrator.start_lesson("Travel", "intermediate", alice)
        ended = await orchestrator.end_lesson(lesson.id, alice)
        again = await orchestrator.end_lesson(lesson.id, alice)
        assert ended.status == SessionStatus.COMPLETED
        assert again.status == SessionStatus.COMPLETED

        with pytest.raises(AlreadyCompleted):
            await orchestrator.submit_turn(TurnRequest(lesson.id, "hello?"), alice)


def test_model_messages_map_ai_to_assistant():
    messages = [
        LessonMessage(id="1", session_id="s", role=MessageRole.USER, content="hi"),
        LessonMessage(id="2", session_id="s", role=MessageRole.AI, content="hello"),
    ]
    assert to_model_messages(messages) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]
