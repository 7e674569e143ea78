"""
Pending Message Overlay

The student's message is shown as soon as it is sent, before the server has
stored it. Instead of inserting it into the transcript and removing it again
on failure, pending messages live in a separate overlay that is laid on top of
the authoritative persisted list and dropped once that list has been
reloaded.
"""

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from english_lesson_tutor.session_state import LessonMessage


@dataclass
class DisplayMessage:
    id: str
    role: str
    text: str
    timestamp: datetime
    pending: bool = False


@dataclass
class PendingMessage:
    local_id: str
    text: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PendingMessageOverlay:
    def __init__(self):
        self._pending: Dict[str, PendingMessage] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, text: str) -> str:
        local_id = f"pending-{next(self._ids)}"
        self._pending[local_id] = PendingMessage(local_id=local_id, text=text)
        return local_id

    def get(self, local_id: str) -> Optional[PendingMessage]:
        return self._pending.get(local_id)

    def settle(self, local_id: str):
        """Drop a pending entry once the persisted list reflects the outcome."""
        self._pending.pop(local_id, None)

    def discard(self, local_id: str):
        self._pending.pop(local_id, None)

    def view(self, persisted: List[LessonMessage]) -> List[DisplayMessage]:
        """Persisted transcript followed by still-pending messages."""
        shown = [
            DisplayMessage(id=m.id, role=m.role.value, text=m.content, timestamp=m.created_at)
            for m in persisted
        ]
        for pending in sorted(self._pending.values(), key=lambda p: p.created_at):
            shown.append(
                DisplayMessage(
                    id=pending.local_id,
                    role="user",
                    text=pending.text,
                    timestamp=pending.created_at,
                    pending=True,
                )
            )
        return shown
