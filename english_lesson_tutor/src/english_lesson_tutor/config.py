"""
Runtime configuration read from the environment (.env supported).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')  # Also try parent directory when launched from backend/

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3000",
]


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class TutorConfig:
    """Settings shared by the turn engine and the API layer."""
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 500
    # Number of recent analytics rows averaged into the proficiency profile
    proficiency_window: int = 5
    # Hard completion cutoff in persisted messages; 0 leaves completion to the model
    lesson_max_messages: int = 0
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    @classmethod
    def from_env(cls) -> "TutorConfig":
        origins = os.getenv("CORS_ORIGINS")
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            temperature=_float_env("OPENAI_TEMPERATURE", 0.7),
            max_tokens=_int_env("OPENAI_MAX_TOKENS", 500),
            proficiency_window=_int_env("PROFICIENCY_WINDOW", 5),
            lesson_max_messages=_int_env("LESSON_MAX_MESSAGES", 0),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else list(DEFAULT_CORS_ORIGINS),
        )
