from enum import Enum

from fastapi import Depends, HTTPException, Request

from peopleflow.deps.auth import _parse_bearer_token, require_auth
from peopleflow.services.auth_service import verify_token


class AccessLevel(Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"


_RANK = {
    AccessLevel.MEMBER: 1,
    AccessLevel.MANAGER: 2,
    AccessLevel.ADMIN: 3,
}


def has_access(user_level: AccessLevel, level: AccessLevel) -> bool:
    return _RANK[user_level] >= _RANK[level]


def require_access(level: AccessLevel):
    """Gate an endpoint on the token's ``role`` claim (missing claim = MANAGER)."""

    def dependency(request: Request, _auth: tuple[str, int] = Depends(require_auth)):
        token = _parse_bearer_token(request)
        try:
            claims = verify_token(token)
        except ValueError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc

        claim_role = claims.get("role")
        if not claim_role:
            claim_role = "MANAGER"

        try:
            user_level = AccessLevel(str(claim_role).upper())
        except ValueError as exc:
            raise HTTPException(status_code=403, detail="Invalid role claim") from exc

        if not has_access(user_level, level):
            raise HTTPException(status_code=403, detail="Insufficient role")

        request.state.access_level = user_level.value
        return user_level

    return dependency
