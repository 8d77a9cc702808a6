"""
Event-driven workflow triggering.

Other modules call ``handle`` from inside their own write paths when something
happens to an entity (a person is created, changes status, ...). The processor
decides whether an automatic workflow should start and delegates to the
instantiation engine. It never raises: every failure ends up in the returned
``TriggerResult`` and the log, so a workflow problem cannot break the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.orm import Session

from peopleflow.database import SessionLocal
from peopleflow.models.people_settings import PeopleSettings
from peopleflow.models.workflow_instance import OPEN_INSTANCE_STATUSES, WorkflowInstance
from peopleflow.services.due_dates import utcnow
from peopleflow.services.instantiation import Rejected, instantiate

logger = logging.getLogger(__name__)

PERSON_ONBOARDING = "person_onboarding"
PERSON_OFFBOARDING = "person_offboarding"

_PERSON_STATUS_TRIGGERS = {
    "onboarding": PERSON_ONBOARDING,
    "offboarding": PERSON_OFFBOARDING,
}


class WorkflowEventType(str, Enum):
    PERSON_CREATED = "person.created"
    PERSON_STATUS_CHANGED = "person.status_changed"
    PERSON_DELETED = "person.deleted"
    ASSET_ASSIGNED = "asset.assigned"
    ASSET_RETURNED = "asset.returned"
    ASSET_MAINTENANCE_STARTED = "asset.maintenance_started"
    ASSET_MAINTENANCE_COMPLETED = "asset.maintenance_completed"


class WorkflowEvent(BaseModel):
    type: WorkflowEventType
    entity_id: str
    entity_name: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    org_id: int
    triggered_by_user_id: Optional[str] = None

    @field_validator("entity_id", mode="before")
    @classmethod
    def _entity_id_as_str(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def entity_type(self) -> str:
        return self.type.value.split(".", 1)[0]


@dataclass(frozen=True)
class TriggerRule:
    enabled: bool
    template_id: Optional[str] = None


@dataclass(frozen=True)
class TriggerConfig:
    """Per-organization auto-trigger configuration, passed explicitly per call."""

    rules: Mapping[str, TriggerRule] = field(default_factory=dict)

    def rule_for(self, trigger_kind: str) -> Optional[TriggerRule]:
        return self.rules.get(trigger_kind)


@dataclass(frozen=True)
class TriggeredInstance:
    instance_id: str
    template_id: str
    trigger_type: str
    message: str


@dataclass
class TriggerResult:
    triggered: List[TriggeredInstance] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


EventHandler = Callable[[WorkflowEvent, Optional[TriggerConfig], TriggerResult, Session, datetime], None]


def load_trigger_config(db: Session, org_id: int) -> Optional[TriggerConfig]:
    settings = db.query(PeopleSettings).filter(PeopleSettings.org_id == int(org_id)).first()
    if settings is None:
        return None

    return TriggerConfig(
        rules={
            PERSON_ONBOARDING: TriggerRule(
                enabled=bool(settings.auto_onboarding_workflow),
                template_id=settings.default_onboarding_template_id,
            ),
            PERSON_OFFBOARDING: TriggerRule(
                enabled=bool(settings.auto_offboarding_workflow),
                template_id=settings.default_offboarding_template_id,
            ),
        }
    )


def _has_open_instance(db: Session, event: WorkflowEvent, template_id: str) -> bool:
    row = (
        db.query(WorkflowInstance.id)
        .filter(
            WorkflowInstance.org_id == int(event.org_id),
            WorkflowInstance.template_id == str(template_id),
            WorkflowInstance.entity_type == event.entity_type,
            WorkflowInstance.entity_id == event.entity_id,
            WorkflowInstance.status.in_(OPEN_INSTANCE_STATUSES),
        )
        .first()
    )
    return row is not None


def _skip(result: TriggerResult, event: WorkflowEvent, message: str) -> None:
    result.messages.append(message)
    logger.info(
        "Workflow not triggered",
        extra={"event_type": event.type.value, "entity_id": event.entity_id, "reason": message},
    )


def _trigger(
    event: WorkflowEvent,
    trigger_kind: str,
    config: Optional[TriggerConfig],
    result: TriggerResult,
    db: Session,
    now: datetime,
) -> None:
    if config is None:
        _skip(result, event, "No workflow settings configured")
        return

    rule = config.rule_for(trigger_kind)
    if rule is None or not rule.enabled:
        _skip(result, event, f"Auto {trigger_kind} workflow not enabled")
        return

    if not rule.template_id:
        _skip(result, event, f"No default {trigger_kind} workflow template configured")
        return

    if _has_open_instance(db, event, rule.template_id):
        _skip(result, event, f"An open {trigger_kind} workflow already exists for this {event.entity_type}")
        return

    outcome = instantiate(
        rule.template_id,
        event.entity_type,
        event.entity_id,
        event.org_id,
        event.triggered_by_user_id,
        db=db,
        now=now,
        entity_name=event.entity_name,
        trigger_type=trigger_kind,
        metadata={
            "trigger_type": trigger_kind,
            "event_type": event.type.value,
            "entity_name": event.entity_name,
            "triggered_at": now.isoformat(),
        },
    )

    if isinstance(outcome, Rejected):
        _skip(result, event, outcome.reason)
        return

    result.triggered.append(
        TriggeredInstance(
            instance_id=outcome.id,
            template_id=outcome.template_id,
            trigger_type=trigger_kind,
            message=f"Created {trigger_kind} workflow instance",
        )
    )


def handle_person_created(event, config, result, db, now) -> None:
    trigger_kind = _PERSON_STATUS_TRIGGERS.get(event.new_status or "")
    if trigger_kind is None:
        return
    _trigger(event, trigger_kind, config, result, db, now)


def handle_person_status_changed(event, config, result, db, now) -> None:
    if event.previous_status == event.new_status:
        return

    trigger_kind = _PERSON_STATUS_TRIGGERS.get(event.new_status or "")
    if trigger_kind is None:
        return
    _trigger(event, trigger_kind, config, result, db, now)


def _default_handlers() -> Dict[WorkflowEventType, EventHandler]:
    # Asset and deletion events have no workflows yet; they are logged only.
    return {
        WorkflowEventType.PERSON_CREATED: handle_person_created,
        WorkflowEventType.PERSON_STATUS_CHANGED: handle_person_status_changed,
    }


def handle(
    event: Union[WorkflowEvent, Mapping[str, Any]],
    config: Optional[TriggerConfig],
    *,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    handlers: Optional[Dict[WorkflowEventType, EventHandler]] = None,
) -> TriggerResult:
    result = TriggerResult()

    try:
        if not isinstance(event, WorkflowEvent):
            event = WorkflowEvent.model_validate(event)
    except ValidationError as exc:
        result.errors.append(f"Invalid workflow event: {exc.error_count()} validation error(s)")
        logger.warning("Invalid workflow event", extra={"errors": exc.errors(include_url=False)})
        return result

    if handlers is None:
        handlers = _default_handlers()

    handler = handlers.get(event.type)
    if handler is None:
        logger.info(
            "No workflow handler for event",
            extra={"event_type": event.type.value, "entity_id": event.entity_id},
        )
        return result

    if now is None:
        now = utcnow()

    owns_db = db is None
    try:
        if owns_db:
            db = SessionLocal()

        handler(event, config, result, db, now)

        if owns_db:
            db.commit()

    except Exception as exc:
        if owns_db and db is not None:
            db.rollback()
        result.triggered.clear()
        result.errors.append(str(exc) or type(exc).__name__)
        logger.exception(
            "Workflow event processing failed",
            extra={"event_type": event.type.value, "entity_id": event.entity_id, "org_id": event.org_id},
        )
    finally:
        if owns_db and db is not None:
            db.close()

    return result
