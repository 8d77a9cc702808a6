import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.schema import Index

from peopleflow.database import Base

INSTANCE_STATUSES = ("pending", "in_progress", "completed", "cancelled", "on_hold")
TERMINAL_INSTANCE_STATUSES = ("completed", "cancelled")
OPEN_INSTANCE_STATUSES = ("pending", "in_progress", "on_hold")

STEP_STATUSES = ("pending", "in_progress", "completed", "skipped", "blocked")
TERMINAL_STEP_STATUSES = ("completed", "skipped")


def _utcnow():
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class WorkflowInstance(Base):
    __tablename__ = "workflow_instances"

    id = Column(String(36), primary_key=True, default=_new_id)
    template_id = Column(
        String(36), ForeignKey("workflow_templates.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    org_id = Column(Integer, nullable=False, index=True)

    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)

    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)

    owner_id = Column(Integer, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True, index=True)

    started_at = Column(DateTime(timezone=True), nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Cached progress; recounted from step rows on every terminal step transition.
    total_steps = Column(Integer, nullable=False, default=0)
    completed_steps = Column(Integer, nullable=False, default=0)

    started_by_id = Column(String, nullable=True)
    trigger_type = Column(String, nullable=True)
    instance_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("completed_steps >= 0", name="ck_workflow_instances_completed_nonnegative"),
        CheckConstraint("completed_steps <= total_steps", name="ck_workflow_instances_completed_le_total"),
        Index("ix_workflow_instances_entity", "entity_type", "entity_id"),
    )


class WorkflowInstanceStep(Base):
    __tablename__ = "workflow_instance_steps"

    id = Column(String(36), primary_key=True, default=_new_id)
    instance_id = Column(
        String(36), ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    template_step_id = Column(
        String(36), ForeignKey("workflow_template_steps.id", ondelete="SET NULL"), nullable=True, index=True
    )
    parent_step_id = Column(
        String(36), ForeignKey("workflow_instance_steps.id", ondelete="CASCADE"), nullable=True, index=True
    )

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    step_type = Column(String, nullable=False, default="task")
    order_index = Column(Integer, nullable=False, default=0)

    status = Column(String, nullable=False, default="pending", index=True)

    assigned_person_id = Column(Integer, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True, index=True)
    assignee_id = Column(String, nullable=True, index=True)

    is_required = Column(Boolean, nullable=False, default=True)
    due_offset_days = Column(Integer, nullable=True)
    due_offset_from = Column(String, nullable=False, default="workflow_start")

    due_at = Column(DateTime(timezone=True), nullable=True, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by_id = Column(String, nullable=True)

    notes = Column(Text, nullable=True)
    step_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "due_offset_from IN ('workflow_start', 'previous_step_completion')",
            name="ck_workflow_instance_steps_due_offset_from",
        ),
    )
