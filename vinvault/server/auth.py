"""
VINVAULT: Authentication

Bearer JWTs (HS256) whose `sub` is the user id. Accounts live with the
identity provider; this module only issues and checks tokens.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import HTTPException, Request

from vinvault import config

log = logging.getLogger(__name__)

JWT_EXPIRY_HOURS = 72


def create_token(user_id: str, secret: Optional[str] = None, hours: int = JWT_EXPIRY_HOURS) -> str:
    payload = {
        "sub": user_id,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=hours),
    }
    return jwt.encode(payload, secret or config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str, secret: Optional[str] = None) -> dict:
    try:
        return jwt.decode(token, secret or config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired. Please log in again.")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token.")


def get_optional_user_id(request: Request, secret: Optional[str] = None) -> Optional[str]:
    """User id from the Authorization header, or None for guests and bad tokens."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    try:
        payload = decode_token(auth_header.split(" ", 1)[1], secret)
    except HTTPException:
        log.debug("Ignoring invalid bearer token")
        return None
    return payload.get("sub") or None


def require_user_id(request: Request, secret: Optional[str] = None) -> str:
    user_id = get_optional_user_id(request, secret)
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required.")
    return user_id
