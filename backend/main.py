"""
FastAPI Backend for the English Lesson Tutor

Provides REST API endpoints with:
- JWT Authentication (Supabase access tokens)
- Supabase persistence for lessons and messages
- One LLM-generated tutor reply per lesson turn
"""

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Any, Dict, List, Optional
import os
import sys
import time
import logging

from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)
logger = get_logger("backend.main")

# Make the english_lesson_tutor package importable when running from a checkout
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'english_lesson_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client
from lib.auth import get_current_user

from english_lesson_tutor.config import TutorConfig
from english_lesson_tutor.errors import LessonError
from english_lesson_tutor.language_model import LanguageModel
from english_lesson_tutor.session_manager import SupabaseSessionStore
from english_lesson_tutor.session_state import CurrentUser, TurnRequest
from english_lesson_tutor.turn_orchestrator import TurnOrchestrator
from english_lesson_tutor.user_profile_manager import SupabaseProficiencySource

config = TutorConfig.from_env()

# Singleton orchestrator; its per-session locks must be shared across requests
_orchestrator_instance: Optional[TurnOrchestrator] = None


def get_orchestrator() -> TurnOrchestrator:
    """Get or create the shared TurnOrchestrator."""
    global _orchestrator_instance
    if _orchestrator_instance is None:
        supabase = get_supabase_client()
        _orchestrator_instance = TurnOrchestrator(
            store=SupabaseSessionStore(supabase),
            language_model=LanguageModel(config),
            proficiency_source=SupabaseProficiencySource(supabase),
            config=config,
        )
        logger.success("Turn orchestrator initialized", data={"model": config.openai_model})
    return _orchestrator_instance


def to_current_user(user: Dict[str, Any]) -> CurrentUser:
    return CurrentUser(
        id=user["id"],
        email=user.get("email"),
    )


app = FastAPI(
    title="English Lesson Tutor API",
    description="REST API for AI-tutored English conversation lessons with Supabase",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class TurnBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    user_message: str = Field(alias="userMessage")


class TurnResponse(BaseModel):
    aiMessage: str
    status: str


class CreateLessonBody(BaseModel):
    topic: str
    level: str = "intermediate"


class LessonMessageOut(BaseModel):
    id: str
    session_id: str
    role: str
    content: str
    created_at: str


class LessonOut(BaseModel):
    id: str
    user_id: str
    topic: str
    level: str
    status: str
    created_at: str
    messages: Optional[List[LessonMessageOut]] = None


# ==================== Error Handling ====================

_HTTP_ERROR_KINDS = {
    400: "InvalidInput",
    401: "Unauthenticated",
    404: "NotFound",
    409: "AlreadyCompleted",
}


@app.exception_handler(LessonError)
async def lesson_error_handler(request: Request, exc: LessonError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}", data={"message": exc.message})
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.kind}", data={"message": exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def describe_validation_errors(errors) -> str:
    parts = []
    for error in errors:
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        parts.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"{request.method} {request.url.path} invalid body", data={"errors": len(exc.errors())})
    return JSONResponse(
        status_code=400,
        content={
            "error": "InvalidInput",
            "message": describe_validation_errors(exc.errors()),
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    kind = _HTTP_ERROR_KINDS.get(exc.status_code, "LessonError")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": kind, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "English Lesson Tutor API",
        "version": "1.0.0",
        "openai_configured": bool(config.openai_api_key),
    }


@app.post("/api/lessons/turn", response_model=TurnResponse)
async def lesson_turn(
    body: TurnBody,
    user: dict = Depends(get_current_user),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """
    Submit the student's message and get the tutor's reply.
    Returns {"aiMessage", "status"}; status becomes "completed" when the
    tutor ends the lesson.
    """
    start_time = time.time()
    logger.request("POST", "/api/lessons/turn", user_id=user["id"], data={
        "session_id": body.session_id,
        "message_length": len(body.user_message),
    })

    result = await orchestrator.submit_turn(
        TurnRequest(session_id=body.session_id, user_message=body.user_message),
        to_current_user(user),
    )

    logger.response(200, "/api/lessons/turn", duration=time.time() - start_time, data={
        "status": result.status.value,
        "reply_length": len(result.ai_message),
    })
    return result.to_dict()


@app.post("/api/lessons", response_model=LessonOut, status_code=201)
async def create_lesson(
    body: CreateLessonBody,
    user: dict = Depends(get_current_user),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """Start a new lesson on a topic at the given level."""
    session = await orchestrator.start_lesson(body.topic, body.level, to_current_user(user))
    return session.to_dict()


@app.get("/api/lessons", response_model=List[LessonOut])
async def list_lessons(
    user: dict = Depends(get_current_user),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """All lessons of the current user, newest first."""
    sessions = await orchestrator.list_lessons(to_current_user(user))
    return [s.to_dict() for s in sessions]


@app.get("/api/lessons/{session_id}", response_model=LessonOut)
async def get_lesson(
    session_id: str,
    user: dict = Depends(get_current_user),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    session = await orchestrator.get_lesson(session_id, to_current_user(user))
    return session.to_dict(include_messages=True)


@app.get("/api/lessons/{session_id}/messages", response_model=List[LessonMessageOut])
async def get_lesson_messages(
    session_id: str,
    user: dict = Depends(get_current_user),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """Lesson transcript in creation order."""
    messages = await orchestrator.get_messages(session_id, to_current_user(user))
    return [m.to_dict() for m in messages]


@app.post("/api/lessons/{session_id}/complete", response_model=LessonOut)
async def complete_lesson(
    session_id: str,
    user: dict = Depends(get_current_user),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """End a lesson on the student's request."""
    session = await orchestrator.end_lesson(session_id, to_current_user(user))
    logger.info("Lesson ended", data={"session_id": session_id, "status": session.status.value})
    return session.to_dict()


if __name__ == "__main__":
    import uvicorn

    logger.section("English Lesson Tutor API", {
        "model": config.openai_model,
        "cors_origins": ", ".join(config.cors_origins),
    })
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
