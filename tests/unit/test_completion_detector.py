"""
Unit Tests for Completion Detector
"""

import pytest

from english_lesson_tutor.completion_detector import COMPLETION_MARKER, CompletionDetector


class TestCompletionDetector:

    @pytest.fixture
    def detector(self):
        return CompletionDetector()

    def test_plain_reply_untouched(self, detector):
        result = detector.detect("Nice answer! Where did you go last summer?")
        assert result.completed is False
        assert result.cleaned_text == "Nice answer! Where did you go last summer?"

    def test_plain_reply_not_trimmed(self, detector):
        result = detector.detect("  Hello there  ")
        assert result.cleaned_text == "  Hello there  "

    def test_trailing_marker_stripped(self, detector):
        result = detector.detect('Well done today! "status":"completed"')
        assert result.completed is True
        assert result.cleaned_text == "Well done today!"

    def test_json_wrapped_marker_stripped(self, detector):
        result = detector.detect('Great lesson, see you next time. {"status":"completed"}')
        assert result.completed is True
        assert result.cleaned_text == "Great lesson, see you next time."

    def test_wrapped_marker_with_spaces(self, detector):
        result = detector.detect('Bye! { "status":"completed" }')
        assert result.completed is True
        assert result.cleaned_text == "Bye!"

    def test_marker_matched_case_insensitively(self, detector):
        result = detector.detect('All done "STATUS":"Completed"')
        assert result.completed is True
        assert result.cleaned_text == "All done"

    def test_every_occurrence_removed(self, detector):
        raw = f'{COMPLETION_MARKER} Good job. {COMPLETION_MARKER}'
        result = detector.detect(raw)
        assert result.completed is True
        assert COMPLETION_MARKER not in result.cleaned_text
        assert result.cleaned_text == "Good job."

    def test_spliced_marker_removed(self, detector):
        # Removing the inner marker leaves a new one behind
        raw = '"status":"com"status":"completed"pleted" Thanks!'
        result = detector.detect(raw)
        assert result.completed is True
        assert result.cleaned_text == "Thanks!"

    def test_marker_only_reply(self, detector):
        result = detector.detect(COMPLETION_MARKER)
        assert result.completed is True
        assert result.cleaned_text == ""

    def test_spaced_out_marker_not_detected(self, detector):
        result = detector.detect('"status": "completed"')
        assert result.completed is False

    def test_non_string_input(self, detector):
        result = detector.detect(None)
        assert result.completed is False
        assert result.cleaned_text == ""

    @pytest.mark.parametrize("raw", [
        'Bye! {"status":"completed"}',
        '"status":"com"status":"completed"pleted" Thanks!',
        f'{COMPLETION_MARKER} Good job. {COMPLETION_MARKER}',
        "No marker here.",
    ])
    def test_detecting_cleaned_text_again_changes_nothing(self, detector, raw):
        first = detector.detect(raw)
        second = detector.detect(first.cleaned_text)
        assert second.cleaned_text == first.cleaned_text
        assert second.completed is False
