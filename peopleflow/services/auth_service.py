from datetime import datetime, timedelta, timezone
from typing import Optional
import os

import jwt

JWT_ALGORITHM = "HS256"
DEFAULT_JWT_EXP_HOURS = 8


def _get_jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise ValueError("JWT_SECRET is required")
    if len(secret) < 32:
        raise ValueError("JWT_SECRET must be at least 32 characters")
    return secret


def _token_lifetime() -> timedelta:
    try:
        hours = int(os.getenv("JWT_EXP_HOURS", DEFAULT_JWT_EXP_HOURS))
    except ValueError as exc:
        raise ValueError("JWT_EXP_HOURS must be an integer") from exc
    if hours <= 0:
        raise ValueError("JWT_EXP_HOURS must be positive")
    return timedelta(hours=hours)


def create_access_token(user_id: str, org_id: int, role: Optional[str] = None) -> str:
    """Mint a bearer token scoped to one organization; ``role`` feeds require_access."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "org_id": int(org_id),
        "iat": now,
        "exp": now + _token_lifetime(),
    }
    if role:
        payload["role"] = str(role).upper()
    return jwt.encode(payload, _get_jwt_secret(), algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, _get_jwt_secret(), algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as exc:
        raise ValueError("Invalid or expired token") from exc

    if "sub" not in payload or "org_id" not in payload:
        raise ValueError("Invalid token claims")

    try:
        int(payload["org_id"])
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid token claims") from exc

    return payload
