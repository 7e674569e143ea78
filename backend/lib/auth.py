"""
Bearer-token authentication for the lesson API.

Tokens are Supabase access tokens. With SUPABASE_JWT_SECRET set they are
verified locally; otherwise Supabase Auth is asked to resolve them.
"""
import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Header, HTTPException
from jose import JWTError, jwt

from .supabase_client import get_supabase_client

load_dotenv()
load_dotenv('../.env')

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid authorization header format")
    return token.strip()


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    """Verify a Supabase JWT and return its claims."""
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except JWTError as e:
        logger.warning(f"⚠️ [Auth] Token rejected: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Token has no subject")
    return {"id": claims["sub"], "email": claims.get("email")}


def _resolve_with_supabase(token: str) -> Dict[str, Any]:
    supabase = get_supabase_client()
    try:
        user_response = supabase.auth.get_user(token)
    except Exception as e:
        logger.warning(f"⚠️ [Auth] Supabase rejected token: {e}")
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    if not user_response or not user_response.user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return {"id": user_response.user.id, "email": user_response.user.email}


async def get_current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """
    Resolve the caller from the Authorization header.

    Returns:
        dict with id and email

    Raises:
        HTTPException(401): header missing, malformed, or token invalid
    """
    token = extract_bearer_token(authorization)

    secret = os.getenv("SUPABASE_JWT_SECRET")
    if secret:
        return decode_token(token, secret)
    return _resolve_with_supabase(token)
