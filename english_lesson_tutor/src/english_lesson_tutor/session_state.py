"""
Lesson Session Data Model

Defines the dataclasses shared by the turn engine: persisted lesson sessions
and messages, read-only proficiency snapshots, and the ephemeral per-turn
request/result objects.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ProficiencyLevel(str, Enum):
    """Stated English level of a lesson or a student."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class SessionStatus(str, Enum):
    """Lesson lifecycle. Only ACTIVE -> COMPLETED is ever applied."""
    ACTIVE = "active"
    COMPLETED = "completed"


class MessageRole(str, Enum):
    """Author of a persisted lesson message."""
    USER = "user"
    AI = "ai"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    """Parse a database timestamp (ISO string or datetime)."""
    if isinstance(value, datetime):
        return value
    if not value:
        return _utcnow()
    # Postgres returns "+00:00" offsets, but older rows may carry a trailing "Z"
    text = str(value).replace("Z", "+00:00")
    return datetime.fromisoformat(text)


@dataclass
class LessonMessage:
    """One immutable turn half (user or ai) inside a lesson session."""
    id: str
    session_id: str
    role: MessageRole
    content: str
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LessonMessage":
        return cls(
            id=str(row["id"]),
            session_id=str(row["session_id"]),
            role=MessageRole(row["role"]),
            content=row.get("content") or "",
            created_at=_parse_timestamp(row.get("created_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class LessonSession:
    """Persistent container for one lesson's status and transcript."""
    id: str
    user_id: str
    topic: str
    level: ProficiencyLevel
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = field(default_factory=_utcnow)
    # Join-loaded transcript, oldest first. Empty when not requested.
    messages: List[LessonMessage] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LessonSession":
        messages = [LessonMessage.from_row(m) for m in row.get("lesson_messages") or []]
        messages.sort(key=lambda m: m.created_at)
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            topic=row.get("topic") or "",
            level=ProficiencyLevel(row.get("level") or ProficiencyLevel.INTERMEDIATE.value),
            status=SessionStatus(row.get("status") or SessionStatus.ACTIVE.value),
            created_at=_parse_timestamp(row.get("created_at")),
            messages=messages,
        )

    def to_dict(self, include_messages: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "topic": self.topic,
            "level": self.level.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


@dataclass
class ProficiencySnapshot:
    """Historical per-lesson scores written by the analytics collaborator."""
    vocabulary_accuracy: float = 0.0
    grammar_accuracy: float = 0.0
    pronunciation_score: float = 0.0
    fluency_score: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ProficiencySnapshot":
        # Missing scores count as zero in the average
        return cls(
            vocabulary_accuracy=float(row.get("vocabulary_accuracy") or 0.0),
            grammar_accuracy=float(row.get("grammar_accuracy") or 0.0),
            pronunciation_score=float(row.get("pronunciation_score") or 0.0),
            fluency_score=float(row.get("fluency_score") or 0.0),
        )


@dataclass
class ProficiencyProfile:
    """Averaged recent scores used to adapt the tutor's instruction."""
    proficiency_level: str
    vocabulary_accuracy: float = 0.7
    grammar_accuracy: float = 0.7
    pronunciation_score: float = 0.7
    fluency_score: float = 0.7

    @property
    def overall_score(self) -> float:
        """Mean of all four skill scores (0-1)."""
        return (
            self.vocabulary_accuracy
            + self.grammar_accuracy
            + self.pronunciation_score
            + self.fluency_score
        ) / 4


@dataclass
class CurrentUser:
    """Authenticated principal making the request."""
    id: str
    email: Optional[str] = None


@dataclass
class TurnRequest:
    session_id: str
    user_message: str


@dataclass
class TurnResult:
    ai_message: str
    status: SessionStatus = SessionStatus.ACTIVE

    def to_dict(self) -> Dict[str, str]:
        return {"aiMessage": self.ai_message, "status": self.status.value}
