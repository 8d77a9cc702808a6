import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from peopleflow.database import SessionLocal
from peopleflow.deps.auth import require_auth
from peopleflow.models.org_role import OrganizationalRole
from peopleflow.models.person import Person
from peopleflow.schemas.person import PersonCreate, PersonResponse, PersonStatusUpdate
from peopleflow.services import event_processor
from peopleflow.services.event_processor import TriggerConfig, TriggerResult, WorkflowEvent, WorkflowEventType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/persons", tags=["Persons"])


def _load_config(event: WorkflowEvent, result: TriggerResult) -> Optional[TriggerConfig]:
    db = SessionLocal()
    try:
        return event_processor.load_trigger_config(db, event.org_id)
    except Exception as exc:
        result.errors.append(str(exc) or type(exc).__name__)
        logger.exception(
            "Workflow trigger config could not be loaded",
            extra={"event_type": event.type.value, "entity_id": event.entity_id, "org_id": event.org_id},
        )
        return None
    finally:
        db.close()


def _emit(event: WorkflowEvent) -> TriggerResult:
    """Hand a committed people change to the workflow engine. Never raises."""
    result = TriggerResult()
    config = _load_config(event, result)
    if not result.errors:
        result = event_processor.handle(event, config)

    if result.errors:
        logger.warning(
            "Workflow trigger failed",
            extra={"event_type": event.type.value, "entity_id": event.entity_id, "errors": result.errors},
        )
    return result


def _check_references(db, org_id: int, payload: PersonCreate) -> None:
    if payload.role_id is not None:
        role = (
            db.query(OrganizationalRole)
            .filter(OrganizationalRole.id == int(payload.role_id), OrganizationalRole.org_id == org_id)
            .first()
        )
        if role is None:
            raise HTTPException(status_code=400, detail="Invalid role_id")

    if payload.manager_id is not None:
        manager = db.query(Person).filter(Person.id == int(payload.manager_id), Person.org_id == org_id).first()
        if manager is None:
            raise HTTPException(status_code=400, detail="Invalid manager_id")


@router.post("", response_model=PersonResponse)
def create_person(
    payload: PersonCreate,
    request: Request,
    _auth: tuple[str, int] = Depends(require_auth),
):
    org_id = int(request.state.org_id)

    db = SessionLocal()
    try:
        _check_references(db, org_id, payload)
        row = Person(
            org_id=org_id,
            name=payload.name,
            email=payload.email,
            role_id=payload.role_id,
            manager_id=payload.manager_id,
            status=payload.status,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
    finally:
        db.close()

    _emit(
        WorkflowEvent(
            type=WorkflowEventType.PERSON_CREATED,
            entity_id=row.id,
            entity_name=row.name,
            new_status=row.status,
            org_id=org_id,
            triggered_by_user_id=str(request.state.user_id),
        )
    )
    return row


@router.get("", response_model=List[PersonResponse])
def list_persons(
    request: Request,
    _auth: tuple[str, int] = Depends(require_auth),
):
    db = SessionLocal()
    try:
        rows = (
            db.query(Person)
            .filter(Person.org_id == int(request.state.org_id))
            .order_by(Person.id.asc())
            .all()
        )
        return rows
    finally:
        db.close()


@router.get("/{person_id}", response_model=PersonResponse)
def get_person(
    person_id: int,
    request: Request,
    _auth: tuple[str, int] = Depends(require_auth),
):
    db = SessionLocal()
    try:
        row = (
            db.query(Person)
            .filter(
                Person.id == int(person_id),
                Person.org_id == int(request.state.org_id),
            )
            .first()
        )
        if row is None:
            raise HTTPException(status_code=404, detail="Person not found")
        return row
    finally:
        db.close()


@router.patch("/{person_id}/status", response_model=PersonResponse)
def update_person_status(
    person_id: int,
    payload: PersonStatusUpdate,
    request: Request,
    _auth: tuple[str, int] = Depends(require_auth),
):
    org_id = int(request.state.org_id)

    db = SessionLocal()
    try:
        row = (
            db.query(Person)
            .filter(Person.id == int(person_id), Person.org_id == org_id)
            .with_for_update()
            .first()
        )
        if row is None:
            raise HTTPException(status_code=404, detail="Person not found")

        previous_status = row.status
        row.status = payload.status
        db.commit()
        db.refresh(row)
    finally:
        db.close()

    _emit(
        WorkflowEvent(
            type=WorkflowEventType.PERSON_STATUS_CHANGED,
            entity_id=row.id,
            entity_name=row.name,
            previous_status=previous_status,
            new_status=row.status,
            org_id=org_id,
            triggered_by_user_id=str(request.state.user_id),
        )
    )
    return row
