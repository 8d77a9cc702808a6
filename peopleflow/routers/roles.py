from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from peopleflow.core.authorization import AccessLevel, require_access
from peopleflow.database import get_db
from peopleflow.deps.auth import require_auth
from peopleflow.models.org_role import OrganizationalRole
from peopleflow.schemas.person import RoleCreate, RoleResponse

router = APIRouter(prefix="/roles", tags=["Roles"])


@router.post("", response_model=RoleResponse)
def create_role(
    payload: RoleCreate,
    request: Request,
    db: Session = Depends(get_db),
    _access=Depends(require_access(AccessLevel.ADMIN)),
):
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Role name is required")

    row = OrganizationalRole(org_id=int(request.state.org_id), name=name)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@router.get("", response_model=List[RoleResponse])
def list_roles(
    request: Request,
    db: Session = Depends(get_db),
    _auth: tuple[str, int] = Depends(require_auth),
):
    return (
        db.query(OrganizationalRole)
        .filter(OrganizationalRole.org_id == int(request.state.org_id))
        .order_by(OrganizationalRole.name.asc(), OrganizationalRole.id.asc())
        .all()
    )
