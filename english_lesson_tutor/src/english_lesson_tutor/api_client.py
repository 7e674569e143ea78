"""
Async HTTP client for the lesson API.

Error responses ({"error": kind, "message": ...}) come back as the same typed
LessonError subclasses the server raised.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from english_lesson_tutor.errors import InvalidInput, LessonError, Unauthenticated, error_from_kind
from english_lesson_tutor.session_state import LessonMessage, LessonSession, SessionStatus, TurnResult

logger = logging.getLogger(__name__)

_STATUS_KINDS = {
    400: "InvalidInput",
    401: "Unauthenticated",
    404: "NotFound",
    409: "AlreadyCompleted",
}


class LessonApiClient:
    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise Unauthenticated()
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json, headers=self._headers())
        except httpx.RequestError as e:
            logger.error(f"❌ [LessonApiClient] {method} {path} failed: {e}")
            raise LessonError(f"Could not reach lesson service: {e}") from e

        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        kind = body.get("error") or _STATUS_KINDS.get(response.status_code)
        message = body.get("message") or body.get("detail") or response.text or None
        raise error_from_kind(kind, message if isinstance(message, str) else None)

    async def submit_turn(self, session_id: str, user_message: str) -> TurnResult:
        if not session_id or not user_message or not user_message.strip():
            raise InvalidInput()
        data = await self._request(
            "POST", "/api/lessons/turn", json={"sessionId": session_id, "userMessage": user_message}
        )
        return TurnResult(
            ai_message=data["aiMessage"],
            status=SessionStatus(data.get("status") or SessionStatus.ACTIVE.value),
        )

    async def create_lesson(self, topic: str, level: str) -> LessonSession:
        data = await self._request("POST", "/api/lessons", json={"topic": topic, "level": level})
        return LessonSession.from_row(data)

    async def list_lessons(self) -> List[LessonSession]:
        data = await self._request("GET", "/api/lessons")
        return [LessonSession.from_row(row) for row in data]

    async def get_messages(self, session_id: str) -> List[LessonMessage]:
        data = await self._request("GET", f"/api/lessons/{session_id}/messages")
        return [LessonMessage.from_row(row) for row in data]

    async def end_lesson(self, session_id: str) -> LessonSession:
        data = await self._request("POST", f"/api/lessons/{session_id}/complete")
        return LessonSession.from_row(data)
