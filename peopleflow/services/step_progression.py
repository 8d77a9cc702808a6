import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Set, Tuple

from sqlalchemy.orm import Session

from peopleflow.database import SessionLocal
from peopleflow.models.person import Person
from peopleflow.models.workflow_instance import (
    STEP_STATUSES,
    TERMINAL_INSTANCE_STATUSES,
    TERMINAL_STEP_STATUSES,
    WorkflowInstance,
    WorkflowInstanceStep,
)
from peopleflow.models.workflow_template import WorkflowTemplate
from peopleflow.services.due_dates import PREVIOUS_STEP_COMPLETION, compute_due_at, normalize_anchor, utcnow
from peopleflow.services.step_selectors import selector_for

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {
    "pending": {"in_progress", "completed", "skipped", "blocked"},
    "in_progress": {"completed", "skipped", "blocked"},
    "blocked": {"pending", "in_progress"},
    "completed": set(),
    "skipped": set(),
}


class ProgressionError(str, Enum):
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"


@dataclass
class ProgressionResult:
    instance: Optional[WorkflowInstance] = None
    step: Optional[WorkflowInstanceStep] = None
    promoted_step: Optional[WorkflowInstanceStep] = None
    error: Optional[ProgressionError] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _not_found(message: str) -> ProgressionResult:
    return ProgressionResult(error=ProgressionError.NOT_FOUND, message=message)


def _invalid(message: str, instance=None, step=None) -> ProgressionResult:
    return ProgressionResult(
        instance=instance,
        step=step,
        error=ProgressionError.INVALID_TRANSITION,
        message=message,
    )


def _lock_instance(db: Session, instance_id: str) -> Optional[WorkflowInstance]:
    return (
        db.query(WorkflowInstance)
        .filter(WorkflowInstance.id == instance_id)
        .populate_existing()
        .with_for_update()
        .first()
    )


def _lock_step(db: Session, step_id: str) -> Tuple[Optional[WorkflowInstanceStep], Optional[WorkflowInstance]]:
    """Load a step and lock its instance row; the step is re-read under the lock."""
    step = db.query(WorkflowInstanceStep).filter(WorkflowInstanceStep.id == str(step_id)).first()
    if step is None:
        return None, None

    instance = _lock_instance(db, step.instance_id)
    step = (
        db.query(WorkflowInstanceStep)
        .filter(WorkflowInstanceStep.id == str(step_id))
        .populate_existing()
        .first()
    )
    return step, instance


def _sibling_in_progress(db: Session, step: WorkflowInstanceStep) -> bool:
    query = db.query(WorkflowInstanceStep).filter(
        WorkflowInstanceStep.instance_id == step.instance_id,
        WorkflowInstanceStep.status == "in_progress",
        WorkflowInstanceStep.id != step.id,
    )
    if step.parent_step_id is None:
        query = query.filter(WorkflowInstanceStep.parent_step_id.is_(None))
    else:
        query = query.filter(WorkflowInstanceStep.parent_step_id == step.parent_step_id)
    return query.first() is not None


def recount_completed(db: Session, instance_id: str) -> int:
    return (
        db.query(WorkflowInstanceStep)
        .filter(
            WorkflowInstanceStep.instance_id == instance_id,
            WorkflowInstanceStep.status.in_(TERMINAL_STEP_STATUSES),
        )
        .count()
    )


def _anchored_to_predecessor(step: WorkflowInstanceStep) -> bool:
    return step.due_offset_days is not None and normalize_anchor(step.due_offset_from) == PREVIOUS_STEP_COMPLETION


def _successor(db: Session, step: WorkflowInstanceStep) -> Optional[WorkflowInstanceStep]:
    query = db.query(WorkflowInstanceStep).filter(
        WorkflowInstanceStep.instance_id == step.instance_id,
        WorkflowInstanceStep.order_index > step.order_index,
    )
    if step.parent_step_id is None:
        query = query.filter(WorkflowInstanceStep.parent_step_id.is_(None))
    else:
        query = query.filter(WorkflowInstanceStep.parent_step_id == step.parent_step_id)
    return query.order_by(WorkflowInstanceStep.order_index.asc(), WorkflowInstanceStep.id.asc()).first()


def recompute_due_after(db: Session, finished: WorkflowInstanceStep, target: Optional[WorkflowInstanceStep] = None) -> None:
    """Deferred due dates: resolve a predecessor-anchored step once ``finished`` is done."""
    if target is None:
        target = _successor(db, finished)
    if target is None or target.status in TERMINAL_STEP_STATUSES:
        return
    if not _anchored_to_predecessor(target):
        return

    target.due_at = compute_due_at(
        finished.completed_at,
        target.due_offset_days,
        target.due_offset_from,
        finished.completed_at,
        has_predecessor=True,
    )
    logger.info(
        "Step due date recomputed",
        extra={"step_id": target.id, "predecessor_id": finished.id, "due_at": target.due_at},
    )


def _check_transition(
    db: Session, step: WorkflowInstanceStep, instance: WorkflowInstance, new_status: str
) -> Optional[str]:
    if new_status not in STEP_STATUSES:
        return f"Unknown step status: {new_status}"

    if instance.status in TERMINAL_INSTANCE_STATUSES:
        return "Cannot update steps on a completed or cancelled workflow"

    if instance.status == "on_hold":
        return "Workflow is on hold; resume it before updating steps"

    if step.status in TERMINAL_STEP_STATUSES:
        return f"Step is already {step.status}"

    if new_status not in ALLOWED_TRANSITIONS.get(step.status, set()):
        return f"Cannot move step from {step.status} to {new_status}"

    if new_status == "in_progress" and _sibling_in_progress(db, step):
        return "Another step at this level is already in progress"

    return None


def _after_terminal(
    db: Session, instance: WorkflowInstance, finished: WorkflowInstanceStep, now: datetime
) -> Optional[WorkflowInstanceStep]:
    instance.completed_steps = recount_completed(db, instance.id)
    recompute_due_after(db, finished)

    if instance.completed_steps >= instance.total_steps:
        instance.status = "completed"
        instance.completed_at = now
        logger.info(
            "Workflow instance completed",
            extra={"instance_id": instance.id, "completed_steps": instance.completed_steps},
        )
        return None

    template = db.query(WorkflowTemplate).filter(WorkflowTemplate.id == instance.template_id).first()
    candidate = selector_for(template).next_step(db, instance, finished)
    if candidate is None or _sibling_in_progress(db, candidate):
        return None

    candidate.status = "in_progress"
    if candidate.started_at is None:
        candidate.started_at = now
    if candidate.due_at is None:
        recompute_due_after(db, finished, candidate)

    logger.info(
        "Workflow step promoted",
        extra={"instance_id": instance.id, "step_id": candidate.id, "after_step_id": finished.id},
    )
    return candidate


def advance_step(
    step_id: str,
    new_status: str,
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
    *,
    org_id: Optional[int] = None,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
) -> ProgressionResult:
    """
    Move one instance step to ``new_status`` and update its instance.

    The instance row is locked for the whole read-decide-write sequence so
    concurrent completions cannot double count or race on completing the
    instance. Rejections are returned, not raised.

    If db is provided, this function will NOT commit/close. Caller owns the transaction.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()

    try:
        step, instance = _lock_step(db, step_id)
        if step is None or instance is None or (org_id is not None and int(instance.org_id) != int(org_id)):
            return _not_found("Step not found")

        rejection = _check_transition(db, step, instance, new_status)
        if rejection is not None:
            logger.info(
                "Step transition rejected",
                extra={"step_id": step.id, "from_status": step.status, "to_status": new_status, "reason": rejection},
            )
            return _invalid(rejection, instance=instance, step=step)

        previous_status = step.status
        step.status = new_status

        if new_status == "in_progress" and step.started_at is None:
            step.started_at = now

        if new_status in TERMINAL_STEP_STATUSES:
            step.completed_at = now
            step.completed_by_id = actor_id

        if notes is not None:
            step.notes = notes

        db.flush()

        promoted = None
        if new_status in TERMINAL_STEP_STATUSES:
            promoted = _after_terminal(db, instance, step, now)
            db.flush()

        if owns_db:
            db.commit()

        logger.info(
            "Step advanced",
            extra={
                "step_id": step.id,
                "instance_id": instance.id,
                "from_status": previous_status,
                "to_status": new_status,
                "actor_id": actor_id,
            },
        )
        return ProgressionResult(instance=instance, step=step, promoted_step=promoted)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def _change_instance_status(
    instance_id: str,
    allowed_from: Tuple[str, ...],
    new_status: str,
    actor_id: Optional[str],
    reason: Optional[str],
    *,
    org_id: Optional[int],
    db: Optional[Session],
    now: Optional[datetime],
) -> ProgressionResult:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()

    try:
        instance = _lock_instance(db, str(instance_id))
        if instance is None or (org_id is not None and int(instance.org_id) != int(org_id)):
            return _not_found("Instance not found")

        if instance.status not in allowed_from:
            return _invalid(f"Cannot move workflow from {instance.status} to {new_status}", instance=instance)

        previous_status = instance.status
        instance.status = new_status

        history = list((instance.instance_metadata or {}).get("status_history", []))
        history.append(
            {
                "from": previous_status,
                "to": new_status,
                "by": actor_id,
                "at": now.isoformat(),
                "reason": reason,
            }
        )
        instance.instance_metadata = {**(instance.instance_metadata or {}), "status_history": history}

        db.flush()
        if owns_db:
            db.commit()

        logger.info(
            "Workflow instance status changed",
            extra={"instance_id": instance.id, "from_status": previous_status, "to_status": new_status, "actor_id": actor_id},
        )
        return ProgressionResult(instance=instance)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def cancel_instance(instance_id, actor_id=None, reason=None, *, org_id=None, db=None, now=None) -> ProgressionResult:
    """Administrative cancel, allowed from any non-terminal state regardless of step states."""
    return _change_instance_status(
        instance_id, ("pending", "in_progress", "on_hold"), "cancelled", actor_id, reason,
        org_id=org_id, db=db, now=now,
    )


def hold_instance(instance_id, actor_id=None, reason=None, *, org_id=None, db=None, now=None) -> ProgressionResult:
    return _change_instance_status(
        instance_id, ("pending", "in_progress"), "on_hold", actor_id, reason,
        org_id=org_id, db=db, now=now,
    )


def resume_instance(instance_id, actor_id=None, reason=None, *, org_id=None, db=None, now=None) -> ProgressionResult:
    return _change_instance_status(
        instance_id, ("on_hold",), "in_progress", actor_id, reason,
        org_id=org_id, db=db, now=now,
    )


def assign_step(
    step_id: str,
    person_id: Optional[int] = None,
    user_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    *,
    org_id: Optional[int] = None,
    db: Optional[Session] = None,
) -> ProgressionResult:
    """Manually (re)assign an open step, e.g. a role step left unassigned at instantiation."""
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        step, instance = _lock_step(db, step_id)
        if step is None or instance is None or (org_id is not None and int(instance.org_id) != int(org_id)):
            return _not_found("Step not found")

        if instance.status in TERMINAL_INSTANCE_STATUSES or step.status in TERMINAL_STEP_STATUSES:
            return _invalid("Cannot reassign a finished step", instance=instance, step=step)

        if person_id is not None:
            person = (
                db.query(Person)
                .filter(Person.id == int(person_id), Person.org_id == int(instance.org_id))
                .first()
            )
            if person is None:
                return _not_found("Person not found")

        step.assigned_person_id = None if person_id is None else int(person_id)
        step.assignee_id = user_id

        db.flush()
        if owns_db:
            db.commit()

        logger.info(
            "Step assigned",
            extra={"step_id": step.id, "person_id": person_id, "user_id": user_id, "actor_id": actor_id},
        )
        return ProgressionResult(instance=instance, step=step)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
