"""
Completion Detector

The tutor signals the end of a lesson by appending ``"status":"completed"``
to its reply. This module finds and strips that marker.
"""

import re
from dataclasses import dataclass

COMPLETION_MARKER = '"status":"completed"'

# The marker alone, or wrapped as a tiny JSON object: {"status":"completed"}
_MARKER_PATTERN = re.compile(
    r'\{\s*' + re.escape(COMPLETION_MARKER) + r'\s*\}|' + re.escape(COMPLETION_MARKER),
    re.IGNORECASE,
)


@dataclass
class CompletionResult:
    cleaned_text: str
    completed: bool


class CompletionDetector:
    """Pure marker detection; never raises."""

    def detect(self, raw_text) -> CompletionResult:
        text = raw_text if isinstance(raw_text, str) else ""
        if not _MARKER_PATTERN.search(text):
            return CompletionResult(cleaned_text=text, completed=False)

        cleaned = text
        # Removing one marker can splice two fragments into a new one
        while True:
            cleaned, removed = _MARKER_PATTERN.subn("", cleaned)
            if not removed:
                break
        return CompletionResult(cleaned_text=cleaned.strip(), completed=True)
