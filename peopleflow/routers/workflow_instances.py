from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from peopleflow.core.authorization import AccessLevel, require_access
from peopleflow.database import SessionLocal
from peopleflow.deps.auth import require_auth
from peopleflow.schemas.workflow_instance import (
    InstanceCreate,
    InstanceDetailResponse,
    InstanceResponse,
    InstanceStatusChange,
    InstanceStepResponse,
    InstanceSummaryResponse,
)
from peopleflow.services import step_progression, workflow_queries
from peopleflow.services.due_dates import is_overdue, utcnow
from peopleflow.services.instantiation import Rejected, instantiate
from peopleflow.services.step_progression import ProgressionError
from peopleflow.services.template_store import NOT_FOUND

router = APIRouter(prefix="/workflows/instances", tags=["Workflow Instances"])


def _detail_response(db, instance_id: str, org_id: int) -> InstanceDetailResponse:
    found = workflow_queries.get_instance_detail(db, instance_id, org_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Workflow instance not found")

    instance, steps = found
    now = utcnow()
    return InstanceDetailResponse(
        **InstanceResponse.model_validate(instance).model_dump(),
        progress=workflow_queries.progress_percent(instance.completed_steps, instance.total_steps),
        is_overdue=is_overdue(instance.due_at, instance.status, now),
        steps=[InstanceStepResponse.from_step(step, now) for step in steps],
    )


def raise_for_progression_error(result) -> None:
    if result.error == ProgressionError.NOT_FOUND:
        raise HTTPException(status_code=404, detail=result.message)
    if result.error is not None:
        raise HTTPException(status_code=400, detail=result.message)


@router.get("", response_model=List[InstanceSummaryResponse])
def list_instances(
    request: Request,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    active_only: bool = True,
    _auth: tuple[str, int] = Depends(require_auth),
):
    db = SessionLocal()
    try:
        return workflow_queries.list_entity_instances(
            db,
            int(request.state.org_id),
            entity_type=entity_type,
            entity_id=entity_id,
            active_only=active_only,
        )
    finally:
        db.close()


@router.post("", response_model=InstanceDetailResponse)
def create_instance(
    payload: InstanceCreate,
    request: Request,
    _access=Depends(require_access(AccessLevel.MANAGER)),
):
    org_id = int(request.state.org_id)
    outcome = instantiate(
        payload.template_id,
        payload.entity_type,
        payload.entity_id,
        org_id,
        str(request.state.user_id),
        name=payload.name,
        entity_name=payload.entity_name,
        owner_id=payload.owner_id,
        due_at=payload.due_at,
        trigger_type="manual",
        metadata=payload.metadata,
    )
    if isinstance(outcome, Rejected):
        status_code = 404 if outcome.kind == NOT_FOUND else 400
        raise HTTPException(status_code=status_code, detail=outcome.reason)

    db = SessionLocal()
    try:
        return _detail_response(db, outcome.id, org_id)
    finally:
        db.close()


@router.get("/{instance_id}", response_model=InstanceDetailResponse)
def get_instance(
    instance_id: str,
    request: Request,
    _auth: tuple[str, int] = Depends(require_auth),
):
    db = SessionLocal()
    try:
        return _detail_response(db, instance_id, int(request.state.org_id))
    finally:
        db.close()


@router.post("/{instance_id}/cancel", response_model=InstanceResponse)
def cancel_instance(
    instance_id: str,
    request: Request,
    payload: Optional[InstanceStatusChange] = None,
    _access=Depends(require_access(AccessLevel.MANAGER)),
):
    result = step_progression.cancel_instance(
        instance_id,
        str(request.state.user_id),
        payload.reason if payload else None,
        org_id=int(request.state.org_id),
    )
    raise_for_progression_error(result)
    return result.instance


@router.post("/{instance_id}/hold", response_model=InstanceResponse)
def hold_instance(
    instance_id: str,
    request: Request,
    payload: Optional[InstanceStatusChange] = None,
    _access=Depends(require_access(AccessLevel.MANAGER)),
):
    result = step_progression.hold_instance(
        instance_id,
        str(request.state.user_id),
        payload.reason if payload else None,
        org_id=int(request.state.org_id),
    )
    raise_for_progression_error(result)
    return result.instance


@router.post("/{instance_id}/resume", response_model=InstanceResponse)
def resume_instance(
    instance_id: str,
    request: Request,
    payload: Optional[InstanceStatusChange] = None,
    _access=Depends(require_access(AccessLevel.MANAGER)),
):
    result = step_progression.resume_instance(
        instance_id,
        str(request.state.user_id),
        payload.reason if payload else None,
        org_id=int(request.state.org_id),
    )
    raise_for_progression_error(result)
    return result.instance
