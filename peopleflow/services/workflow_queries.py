from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from peopleflow.models.workflow_instance import (
    OPEN_INSTANCE_STATUSES,
    TERMINAL_INSTANCE_STATUSES,
    TERMINAL_STEP_STATUSES,
    WorkflowInstance,
    WorkflowInstanceStep,
)
from peopleflow.services.due_dates import is_overdue, utcnow


@dataclass(frozen=True)
class InstanceSummary:
    id: str
    name: str
    status: str
    entity_type: str
    entity_id: str
    total_steps: int
    completed_steps: int
    progress: int
    due_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    is_overdue: bool


def progress_percent(completed_steps: int, total_steps: int) -> int:
    if not total_steps:
        return 100
    return int(round(100 * completed_steps / total_steps))


def summarize(instance: WorkflowInstance, now: Optional[datetime] = None) -> InstanceSummary:
    return InstanceSummary(
        id=instance.id,
        name=instance.name,
        status=instance.status,
        entity_type=instance.entity_type,
        entity_id=instance.entity_id,
        total_steps=instance.total_steps,
        completed_steps=instance.completed_steps,
        progress=progress_percent(instance.completed_steps, instance.total_steps),
        due_at=instance.due_at,
        started_at=instance.started_at,
        completed_at=instance.completed_at,
        is_overdue=is_overdue(instance.due_at, instance.status, now),
    )


def list_entity_instances(
    db: Session,
    org_id: int,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    active_only: bool = True,
    now: Optional[datetime] = None,
) -> List[InstanceSummary]:
    query = db.query(WorkflowInstance).filter(WorkflowInstance.org_id == int(org_id))
    if entity_type is not None:
        query = query.filter(WorkflowInstance.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(WorkflowInstance.entity_id == str(entity_id))
    if active_only:
        query = query.filter(WorkflowInstance.status.in_(OPEN_INSTANCE_STATUSES))

    instances = query.order_by(WorkflowInstance.started_at.desc(), WorkflowInstance.id.asc()).all()

    if now is None:
        now = utcnow()
    return [summarize(instance, now) for instance in instances]


def get_instance_detail(
    db: Session, instance_id: str, org_id: int
) -> Optional[Tuple[WorkflowInstance, List[WorkflowInstanceStep]]]:
    instance = (
        db.query(WorkflowInstance)
        .filter(WorkflowInstance.id == str(instance_id), WorkflowInstance.org_id == int(org_id))
        .first()
    )
    if instance is None:
        return None

    steps = (
        db.query(WorkflowInstanceStep)
        .filter(WorkflowInstanceStep.instance_id == instance.id)
        .order_by(WorkflowInstanceStep.order_index.asc(), WorkflowInstanceStep.id.asc())
        .all()
    )
    return instance, steps


def list_assigned_steps(
    db: Session,
    org_id: int,
    person_id: Optional[int] = None,
    user_id: Optional[str] = None,
) -> List[WorkflowInstanceStep]:
    """Open steps assigned to a person or system user, soonest due first."""
    if person_id is None and user_id is None:
        return []

    assignee_filters = []
    if person_id is not None:
        assignee_filters.append(WorkflowInstanceStep.assigned_person_id == int(person_id))
    if user_id is not None:
        assignee_filters.append(WorkflowInstanceStep.assignee_id == str(user_id))

    steps = (
        db.query(WorkflowInstanceStep)
        .join(WorkflowInstance, WorkflowInstance.id == WorkflowInstanceStep.instance_id)
        .filter(
            WorkflowInstance.org_id == int(org_id),
            WorkflowInstance.status.notin_(TERMINAL_INSTANCE_STATUSES),
            WorkflowInstanceStep.status.notin_(TERMINAL_STEP_STATUSES),
            or_(*assignee_filters),
        )
        .all()
    )
    # NULL due dates sort last regardless of backend.
    return sorted(steps, key=lambda s: (s.due_at is None, s.due_at or datetime.min, s.order_index, s.id))
