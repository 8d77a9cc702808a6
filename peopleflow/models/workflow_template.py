import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.schema import Index

from peopleflow.database import Base

TEMPLATE_STATUSES = ("draft", "active", "archived")
STEP_TYPES = ("task", "notification", "gateway", "group")
ASSIGNEE_TYPES = ("specific_user", "role", "dynamic_manager", "dynamic_creator", "unassigned")
DUE_OFFSET_ANCHORS = ("workflow_start", "previous_step_completion")
EDGE_CONDITIONS = ("always", "if_approved", "if_rejected", "conditional")


def _utcnow():
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class WorkflowTemplate(Base):
    __tablename__ = "workflow_templates"

    id = Column(String(36), primary_key=True, default=_new_id)
    org_id = Column(Integer, nullable=False, index=True)

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    module_scope = Column(String, nullable=True, index=True)
    trigger_type = Column(String, nullable=True, index=True)

    status = Column(String, nullable=False, default="draft", index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    default_owner_id = Column(Integer, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)
    default_due_days = Column(Integer, nullable=True)

    settings = Column(JSON, nullable=True)

    created_by_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class WorkflowTemplateStep(Base):
    __tablename__ = "workflow_template_steps"

    id = Column(String(36), primary_key=True, default=_new_id)
    template_id = Column(
        String(36), ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_step_id = Column(
        String(36), ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=True, index=True
    )

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    step_type = Column(String, nullable=False, default="task")
    order_index = Column(Integer, nullable=False, default=0)

    position_x = Column(Float, nullable=False, default=0)
    position_y = Column(Float, nullable=False, default=0)

    assignee_type = Column(String, nullable=False, default="unassigned")
    assignee_config = Column(JSON, nullable=True)
    default_assignee_id = Column(Integer, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True)

    due_offset_days = Column(Integer, nullable=True)
    due_offset_from = Column(String, nullable=False, default="workflow_start")

    is_required = Column(Boolean, nullable=False, default=True)
    attachments_enabled = Column(Boolean, nullable=False, default=True)

    step_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_workflow_template_steps_order", "template_id", "order_index"),
        CheckConstraint(
            "due_offset_from IN ('workflow_start', 'previous_step_completion')",
            name="ck_workflow_template_steps_due_offset_from",
        ),
    )


class WorkflowTemplateEdge(Base):
    __tablename__ = "workflow_template_edges"

    id = Column(String(36), primary_key=True, default=_new_id)
    template_id = Column(
        String(36), ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )

    source_step_id = Column(
        String(36), ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_step_id = Column(
        String(36), ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=False, index=True
    )

    condition_type = Column(String, nullable=False, default="always")
    condition_config = Column(JSON, nullable=True)
    label = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
