"""add people and workflow tables

Revision ID: 3c1f7a9d2b40
Revises:
Create Date: 2026-03-02 10:14:52.418730

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f7a9d2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


NOW = sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "organizational_roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
    )
    op.create_index("ix_organizational_roles_id", "organizational_roles", ["id"], unique=False)
    op.create_index("ix_organizational_roles_org_id", "organizational_roles", ["org_id"], unique=False)

    op.create_table(
        "persons",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("role_id", sa.Integer(), nullable=True),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["role_id"], ["organizational_roles.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["manager_id"], ["persons.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_persons_id", "persons", ["id"], unique=False)
    op.create_index("ix_persons_org_id", "persons", ["org_id"], unique=False)
    op.create_index("ix_persons_role_id", "persons", ["role_id"], unique=False)
    op.create_index("ix_persons_status", "persons", ["status"], unique=False)

    op.create_table(
        "workflow_templates",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("module_scope", sa.String(), nullable=True),
        sa.Column("trigger_type", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("default_owner_id", sa.Integer(), nullable=True),
        sa.Column("default_due_days", sa.Integer(), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("created_by_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["default_owner_id"], ["persons.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'archived')",
            name="ck_workflow_templates_status",
        ),
    )
    op.create_index("ix_workflow_templates_org_id", "workflow_templates", ["org_id"], unique=False)
    op.create_index("ix_workflow_templates_module_scope", "workflow_templates", ["module_scope"], unique=False)
    op.create_index("ix_workflow_templates_trigger_type", "workflow_templates", ["trigger_type"], unique=False)
    op.create_index("ix_workflow_templates_status", "workflow_templates", ["status"], unique=False)

    op.create_table(
        "workflow_template_steps",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("template_id", sa.String(length=36), nullable=False),
        sa.Column("parent_step_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("step_type", sa.String(), nullable=False, server_default="task"),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("position_x", sa.Float(), nullable=False, server_default="0"),
        sa.Column("position_y", sa.Float(), nullable=False, server_default="0"),
        sa.Column("assignee_type", sa.String(), nullable=False, server_default="unassigned"),
        sa.Column("assignee_config", sa.JSON(), nullable=True),
        sa.Column("default_assignee_id", sa.Integer(), nullable=True),
        sa.Column("due_offset_days", sa.Integer(), nullable=True),
        sa.Column("due_offset_from", sa.String(), nullable=False, server_default="workflow_start"),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("attachments_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["template_id"], ["workflow_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_step_id"], ["workflow_template_steps.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["default_assignee_id"], ["persons.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "due_offset_days IS NULL OR due_offset_days >= 0",
            name="ck_workflow_template_steps_due_offset_nonnegative",
        ),
        sa.CheckConstraint(
            "due_offset_from IN ('workflow_start', 'previous_step_completion')",
            name="ck_workflow_template_steps_due_offset_from",
        ),
    )
    op.create_index("ix_workflow_template_steps_template_id", "workflow_template_steps", ["template_id"], unique=False)
    op.create_index(
        "ix_workflow_template_steps_parent_step_id", "workflow_template_steps", ["parent_step_id"], unique=False
    )
    op.create_index(
        "ix_workflow_template_steps_order", "workflow_template_steps", ["template_id", "order_index"], unique=False
    )

    op.create_table(
        "workflow_template_edges",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("template_id", sa.String(length=36), nullable=False),
        sa.Column("source_step_id", sa.String(length=36), nullable=False),
        sa.Column("target_step_id", sa.String(length=36), nullable=False),
        sa.Column("condition_type", sa.String(), nullable=False, server_default="always"),
        sa.Column("condition_config", sa.JSON(), nullable=True),
        sa.Column("label", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["template_id"], ["workflow_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["source_step_id"], ["workflow_template_steps.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_step_id"], ["workflow_template_steps.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_workflow_template_edges_template_id", "workflow_template_edges", ["template_id"], unique=False)
    op.create_index(
        "ix_workflow_template_edges_source_step_id", "workflow_template_edges", ["source_step_id"], unique=False
    )
    op.create_index(
        "ix_workflow_template_edges_target_step_id", "workflow_template_edges", ["target_step_id"], unique=False
    )

    op.create_table(
        "people_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("auto_onboarding_workflow", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("default_onboarding_template_id", sa.String(length=36), nullable=True),
        sa.Column("auto_offboarding_workflow", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("default_offboarding_template_id", sa.String(length=36), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["default_onboarding_template_id"], ["workflow_templates.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["default_offboarding_template_id"], ["workflow_templates.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("org_id", name="uq_people_settings_org_id"),
    )

    op.create_table(
        "workflow_instances",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("template_id", sa.String(length=36), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_steps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_steps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_by_id", sa.String(), nullable=True),
        sa.Column("trigger_type", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["template_id"], ["workflow_templates.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["owner_id"], ["persons.id"], ondelete="SET NULL"),
        sa.CheckConstraint("completed_steps >= 0", name="ck_workflow_instances_completed_nonnegative"),
        sa.CheckConstraint("completed_steps <= total_steps", name="ck_workflow_instances_completed_le_total"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'cancelled', 'on_hold')",
            name="ck_workflow_instances_status",
        ),
    )
    op.create_index("ix_workflow_instances_template_id", "workflow_instances", ["template_id"], unique=False)
    op.create_index("ix_workflow_instances_org_id", "workflow_instances", ["org_id"], unique=False)
    op.create_index("ix_workflow_instances_status", "workflow_instances", ["status"], unique=False)
    op.create_index("ix_workflow_instances_owner_id", "workflow_instances", ["owner_id"], unique=False)
    op.create_index("ix_workflow_instances_due_at", "workflow_instances", ["due_at"], unique=False)
    op.create_index("ix_workflow_instances_entity", "workflow_instances", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "workflow_instance_steps",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("instance_id", sa.String(length=36), nullable=False),
        sa.Column("template_step_id", sa.String(length=36), nullable=True),
        sa.Column("parent_step_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("step_type", sa.String(), nullable=False, server_default="task"),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("assigned_person_id", sa.Integer(), nullable=True),
        sa.Column("assignee_id", sa.String(), nullable=True),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("due_offset_days", sa.Integer(), nullable=True),
        sa.Column("due_offset_from", sa.String(), nullable=False, server_default="workflow_start"),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by_id", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["instance_id"], ["workflow_instances.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["template_step_id"], ["workflow_template_steps.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["parent_step_id"], ["workflow_instance_steps.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_person_id"], ["persons.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'skipped', 'blocked')",
            name="ck_workflow_instance_steps_status",
        ),
        sa.CheckConstraint(
            "due_offset_from IN ('workflow_start', 'previous_step_completion')",
            name="ck_workflow_instance_steps_due_offset_from",
        ),
    )
    op.create_index("ix_workflow_instance_steps_instance_id", "workflow_instance_steps", ["instance_id"], unique=False)
    op.create_index(
        "ix_workflow_instance_steps_template_step_id", "workflow_instance_steps", ["template_step_id"], unique=False
    )
    op.create_index(
        "ix_workflow_instance_steps_parent_step_id", "workflow_instance_steps", ["parent_step_id"], unique=False
    )
    op.create_index("ix_workflow_instance_steps_status", "workflow_instance_steps", ["status"], unique=False)
    op.create_index(
        "ix_workflow_instance_steps_assigned_person_id", "workflow_instance_steps", ["assigned_person_id"], unique=False
    )
    op.create_index("ix_workflow_instance_steps_assignee_id", "workflow_instance_steps", ["assignee_id"], unique=False)
    op.create_index("ix_workflow_instance_steps_due_at", "workflow_instance_steps", ["due_at"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("workflow_instance_steps")
    op.drop_table("workflow_instances")
    op.drop_table("people_settings")
    op.drop_table("workflow_template_edges")
    op.drop_table("workflow_template_steps")
    op.drop_table("workflow_templates")
    op.drop_table("persons")
    op.drop_table("organizational_roles")
