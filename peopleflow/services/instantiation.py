import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from peopleflow.database import SessionLocal
from peopleflow.models.workflow_instance import WorkflowInstance, WorkflowInstanceStep
from peopleflow.models.workflow_template import WorkflowTemplate, WorkflowTemplateStep
from peopleflow.services.assignee_resolver import (
    BindingContext,
    PersonDirectory,
    SqlPersonDirectory,
    policy_from_config,
    resolve_assignee,
)
from peopleflow.services.due_dates import compute_due_at, utcnow, workflow_due_at
from peopleflow.services.template_store import TemplateUnavailable, get_active_template, list_steps

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rejected:
    kind: str
    reason: str


def _sibling_positions(steps: List[WorkflowTemplateStep]) -> Dict[str, int]:
    groups: Dict[Optional[str], List[WorkflowTemplateStep]] = {}
    for step in steps:
        groups.setdefault(step.parent_step_id, []).append(step)

    positions: Dict[str, int] = {}
    for siblings in groups.values():
        for position, step in enumerate(sorted(siblings, key=lambda s: s.order_index)):
            positions[step.id] = position
    return positions


def build_instance_steps(
    instance: WorkflowInstance,
    template_steps: List[WorkflowTemplateStep],
    context: BindingContext,
    directory: PersonDirectory,
    now: datetime,
) -> List[WorkflowInstanceStep]:
    """
    Materialize template steps for one instance, parents ahead of children.

    The root step with the lowest order index starts in progress, everything
    else is pending. Parent references are remapped through a
    template-step-id -> instance-step-id index.
    """
    instance_ids = {step.id: str(uuid.uuid4()) for step in template_steps}
    positions = _sibling_positions(template_steps)

    roots = [step for step in template_steps if step.parent_step_id is None]
    first_root_id = min(roots, key=lambda s: s.order_index).id if roots else None

    rows: List[WorkflowInstanceStep] = []
    for step in template_steps:
        policy = policy_from_config(step.assignee_type, step.assignee_config)
        assignee = resolve_assignee(policy, step.default_assignee_id, context, directory)

        due_at = compute_due_at(
            now,
            step.due_offset_days,
            step.due_offset_from,
            has_predecessor=positions.get(step.id, 0) > 0,
        )

        is_first = step.id == first_root_id
        rows.append(
            WorkflowInstanceStep(
                id=instance_ids[step.id],
                instance_id=instance.id,
                template_step_id=step.id,
                parent_step_id=instance_ids.get(step.parent_step_id) if step.parent_step_id else None,
                name=step.name,
                description=step.description,
                step_type=step.step_type,
                order_index=step.order_index,
                status="in_progress" if is_first else "pending",
                assigned_person_id=assignee.person_id,
                assignee_id=assignee.user_id,
                is_required=step.is_required,
                due_offset_days=step.due_offset_days,
                due_offset_from=step.due_offset_from,
                due_at=due_at,
                started_at=now if is_first else None,
                step_metadata={
                    "assignee_type": step.assignee_type,
                    "assignee_config": step.assignee_config,
                    **(step.step_metadata or {}),
                },
            )
        )
    return rows


def _instance_name(template: WorkflowTemplate, name: Optional[str], entity_name: Optional[str]) -> str:
    if name:
        return name
    if entity_name:
        return f"{template.name} - {entity_name}"
    return template.name


def instantiate(
    template_id: str,
    entity_type: str,
    entity_id: Any,
    org_id: int,
    triggered_by: Optional[str] = None,
    *,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    name: Optional[str] = None,
    entity_name: Optional[str] = None,
    owner_id: Optional[int] = None,
    due_at: Optional[datetime] = None,
    trigger_type: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    directory: Optional[PersonDirectory] = None,
) -> Union[WorkflowInstance, Rejected]:
    """
    Create a running instance of a template bound to (entity_type, entity_id).

    If db is provided, this function will NOT commit/close. Caller owns the transaction.
    If db is None, instance and steps are committed together or not at all.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()

    try:
        template = get_active_template(db, template_id, org_id)
        if isinstance(template, TemplateUnavailable):
            logger.info(
                "Workflow instantiation rejected",
                extra={"template_id": str(template_id), "org_id": int(org_id), "reason": template.kind},
            )
            return Rejected(kind=template.kind, reason=template.message)

        template_steps = list_steps(db, template.id)

        if directory is None:
            directory = SqlPersonDirectory(db)

        context = BindingContext(
            org_id=int(org_id),
            entity_type=entity_type,
            entity_id=str(entity_id),
            triggered_by=triggered_by,
        )

        instance = WorkflowInstance(
            id=str(uuid.uuid4()),
            template_id=template.id,
            org_id=int(org_id),
            entity_type=entity_type,
            entity_id=str(entity_id),
            name=_instance_name(template, name, entity_name),
            status="in_progress",
            owner_id=owner_id if owner_id is not None else template.default_owner_id,
            started_at=now,
            due_at=due_at if due_at is not None else workflow_due_at(now, template.default_due_days),
            total_steps=len(template_steps),
            completed_steps=0,
            started_by_id=triggered_by,
            trigger_type=trigger_type or template.trigger_type,
            instance_metadata=dict(metadata or {}),
        )

        # An empty template has nothing left to do.
        if not template_steps:
            instance.status = "completed"
            instance.completed_at = now

        db.add(instance)
        db.flush()

        for row in build_instance_steps(instance, template_steps, context, directory, now):
            db.add(row)
        db.flush()

        if owns_db:
            db.commit()

        logger.info(
            "Workflow instance created",
            extra={
                "instance_id": instance.id,
                "template_id": template.id,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "total_steps": instance.total_steps,
            },
        )
        return instance

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
