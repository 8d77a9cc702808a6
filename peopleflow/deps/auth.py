from typing import Tuple

from fastapi import HTTPException, Request

from peopleflow.services.auth_service import verify_token


def _parse_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=401, detail="Invalid Authorization header")

    return parts[1].strip()


def require_auth(request: Request) -> Tuple[str, int]:
    token = _parse_bearer_token(request)

    try:
        claims = verify_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user_id = str(claims.get("sub"))
    token_org_id = int(claims.get("org_id"))

    header_org_id = request.headers.get("X-Org-Id")
    if header_org_id is None:
        raise HTTPException(status_code=403, detail="Missing X-Org-Id header")

    try:
        header_org_id_int = int(header_org_id)
    except ValueError as exc:
        raise HTTPException(status_code=403, detail="Invalid X-Org-Id header") from exc

    if header_org_id_int != token_org_id:
        raise HTTPException(status_code=403, detail="Organization mismatch")

    request.state.user_id = user_id
    request.state.org_id = token_org_id

    return user_id, token_org_id
