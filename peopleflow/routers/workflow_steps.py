from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from peopleflow.core.authorization import AccessLevel, has_access, require_access
from peopleflow.database import SessionLocal
from peopleflow.deps.auth import require_auth
from peopleflow.routers.workflow_instances import raise_for_progression_error
from peopleflow.schemas.workflow_instance import (
    InstanceResponse,
    InstanceStepResponse,
    StepAdvanceResponse,
    StepAssign,
    StepUpdate,
)
from peopleflow.services import step_progression, workflow_queries
from peopleflow.services.due_dates import utcnow

router = APIRouter(prefix="/workflows/steps", tags=["Workflow Steps"])


@router.get("/mine", response_model=List[InstanceStepResponse])
def list_my_steps(
    request: Request,
    person_id: Optional[int] = None,
    access: AccessLevel = Depends(require_access(AccessLevel.MEMBER)),
):
    """Open steps assigned to the caller. Managers may also pass ``person_id``."""
    if person_id is not None and not has_access(access, AccessLevel.MANAGER):
        raise HTTPException(status_code=403, detail="Insufficient role")

    db = SessionLocal()
    try:
        steps = workflow_queries.list_assigned_steps(
            db,
            int(request.state.org_id),
            person_id=person_id,
            user_id=str(request.state.user_id),
        )
        now = utcnow()
        return [InstanceStepResponse.from_step(step, now) for step in steps]
    finally:
        db.close()


@router.patch("/{step_id}", response_model=StepAdvanceResponse)
def update_step(
    step_id: str,
    payload: StepUpdate,
    request: Request,
    _auth: tuple[str, int] = Depends(require_auth),
):
    result = step_progression.advance_step(
        step_id,
        payload.status,
        str(request.state.user_id),
        payload.notes,
        org_id=int(request.state.org_id),
    )
    raise_for_progression_error(result)

    now = utcnow()
    return StepAdvanceResponse(
        step=InstanceStepResponse.from_step(result.step, now),
        instance=InstanceResponse.model_validate(result.instance),
        promoted_step=(
            InstanceStepResponse.from_step(result.promoted_step, now) if result.promoted_step is not None else None
        ),
    )


@router.put("/{step_id}/assignee", response_model=InstanceStepResponse)
def assign_step(
    step_id: str,
    payload: StepAssign,
    request: Request,
    _auth: tuple[str, int] = Depends(require_auth),
):
    result = step_progression.assign_step(
        step_id,
        person_id=payload.person_id,
        user_id=payload.user_id,
        actor_id=str(request.state.user_id),
        org_id=int(request.state.org_id),
    )
    raise_for_progression_error(result)
    return InstanceStepResponse.from_step(result.step)
