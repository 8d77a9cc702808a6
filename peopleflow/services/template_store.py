import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy.orm import Session

from peopleflow.models.workflow_instance import WorkflowInstance, WorkflowInstanceStep
from peopleflow.models.workflow_template import (
    ASSIGNEE_TYPES,
    DUE_OFFSET_ANCHORS,
    EDGE_CONDITIONS,
    STEP_TYPES,
    TEMPLATE_STATUSES,
    WorkflowTemplate,
    WorkflowTemplateEdge,
    WorkflowTemplateStep,
)
from peopleflow.services.due_dates import normalize_anchor

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
NOT_ELIGIBLE = "not_eligible"

_UPDATABLE_FIELDS = (
    "name",
    "description",
    "module_scope",
    "trigger_type",
    "status",
    "is_active",
    "default_owner_id",
    "default_due_days",
    "settings",
)


@dataclass(frozen=True)
class TemplateUnavailable:
    kind: str
    message: str


def get_template(db: Session, template_id: str, org_id: int) -> Optional[WorkflowTemplate]:
    return (
        db.query(WorkflowTemplate)
        .filter(WorkflowTemplate.id == str(template_id), WorkflowTemplate.org_id == int(org_id))
        .first()
    )


def get_active_template(
    db: Session, template_id: str, org_id: int
) -> Union[WorkflowTemplate, TemplateUnavailable]:
    template = get_template(db, template_id, org_id)
    if template is None:
        return TemplateUnavailable(NOT_FOUND, "Workflow template not found")

    if template.status != "active" or not template.is_active:
        return TemplateUnavailable(
            NOT_ELIGIBLE,
            f"Workflow template is not eligible for instantiation (status={template.status}, "
            f"enabled={bool(template.is_active)})",
        )

    return template


def _depth(step: WorkflowTemplateStep, by_id: Dict[str, WorkflowTemplateStep]) -> int:
    depth = 0
    parent_id = step.parent_step_id
    while parent_id is not None and parent_id in by_id and depth <= len(by_id):
        depth += 1
        parent_id = by_id[parent_id].parent_step_id
    return depth


def list_steps(db: Session, template_id: str) -> List[WorkflowTemplateStep]:
    """Steps ordered by (parent, order_index) with every parent ahead of its children."""
    steps = (
        db.query(WorkflowTemplateStep)
        .filter(WorkflowTemplateStep.template_id == str(template_id))
        .order_by(WorkflowTemplateStep.order_index.asc(), WorkflowTemplateStep.id.asc())
        .all()
    )
    by_id = {step.id: step for step in steps}
    return sorted(
        steps,
        key=lambda s: (_depth(s, by_id), s.parent_step_id or "", s.order_index),
    )


def list_edges(db: Session, template_id: str) -> List[WorkflowTemplateEdge]:
    return (
        db.query(WorkflowTemplateEdge)
        .filter(WorkflowTemplateEdge.template_id == str(template_id))
        .order_by(WorkflowTemplateEdge.created_at.asc(), WorkflowTemplateEdge.id.asc())
        .all()
    )


def list_templates(
    db: Session,
    org_id: int,
    *,
    module_scope: Optional[str] = None,
    status: Optional[str] = None,
) -> List[WorkflowTemplate]:
    query = db.query(WorkflowTemplate).filter(WorkflowTemplate.org_id == int(org_id))
    if module_scope is not None:
        query = query.filter(WorkflowTemplate.module_scope == module_scope)
    if status is not None:
        query = query.filter(WorkflowTemplate.status == status)
    return query.order_by(WorkflowTemplate.name.asc(), WorkflowTemplate.id.asc()).all()


def count_instances(db: Session, template_id: str) -> int:
    return db.query(WorkflowInstance).filter(WorkflowInstance.template_id == str(template_id)).count()


def _require_choice(value: Any, choices: Sequence[str], label: str) -> None:
    if value not in choices:
        raise ValueError(f"Invalid {label}: {value!r}")


def _validate_template_fields(fields: Mapping[str, Any]) -> None:
    if "name" in fields and not str(fields.get("name") or "").strip():
        raise ValueError("Template name is required")
    if fields.get("status") is not None:
        _require_choice(fields["status"], TEMPLATE_STATUSES, "template status")
    due_days = fields.get("default_due_days")
    if due_days is not None and int(due_days) < 0:
        raise ValueError("default_due_days must be non-negative")


def _build_graph(
    template_id: str,
    steps: Sequence[Mapping[str, Any]],
    edges: Sequence[Mapping[str, Any]],
) -> tuple:
    """
    Validate a designer graph and turn it into model rows.

    Step and edge payloads may reference each other by client-side temporary
    ids; every step gets a fresh id and references are remapped.
    """
    id_map: Dict[str, str] = {}
    for index, step in enumerate(steps):
        client_id = str(step.get("id") or f"__step_{index}")
        if client_id in id_map:
            raise ValueError(f"Duplicate step id: {client_id}")
        id_map[client_id] = str(uuid.uuid4())

    rows: List[WorkflowTemplateStep] = []
    sibling_orders = set()
    parents: Dict[str, Optional[str]] = {}

    for index, step in enumerate(steps):
        client_id = str(step.get("id") or f"__step_{index}")
        name = str(step.get("name") or "").strip()
        if not name:
            raise ValueError("Step name is required")

        step_type = step.get("step_type") or "task"
        assignee_type = step.get("assignee_type") or "unassigned"
        due_offset_from = normalize_anchor(step.get("due_offset_from"))
        _require_choice(step_type, STEP_TYPES, "step type")
        _require_choice(assignee_type, ASSIGNEE_TYPES, "assignee type")
        _require_choice(due_offset_from, DUE_OFFSET_ANCHORS, "due offset anchor")

        parent_client_id = step.get("parent_step_id")
        parent_id = None
        if parent_client_id is not None:
            parent_id = id_map.get(str(parent_client_id))
            if parent_id is None:
                raise ValueError(f"Parent step {parent_client_id} is not part of this template")

        order_index = int(step.get("order_index") or 0)
        sibling_key = (parent_id, order_index)
        if sibling_key in sibling_orders:
            raise ValueError(f"Duplicate order index {order_index} among sibling steps")
        sibling_orders.add(sibling_key)

        due_offset_days = step.get("due_offset_days")
        if due_offset_days is not None and int(due_offset_days) < 0:
            raise ValueError("due_offset_days must be non-negative")

        new_id = id_map[client_id]
        parents[new_id] = parent_id
        rows.append(
            WorkflowTemplateStep(
                id=new_id,
                template_id=template_id,
                parent_step_id=parent_id,
                name=name,
                description=step.get("description"),
                step_type=step_type,
                order_index=order_index,
                position_x=float(step.get("position_x") or 0),
                position_y=float(step.get("position_y") or 0),
                assignee_type=assignee_type,
                assignee_config=step.get("assignee_config"),
                default_assignee_id=step.get("default_assignee_id"),
                due_offset_days=None if due_offset_days is None else int(due_offset_days),
                due_offset_from=due_offset_from,
                is_required=bool(step.get("is_required", True)),
                attachments_enabled=bool(step.get("attachments_enabled", True)),
                step_metadata=step.get("metadata"),
            )
        )

    for step_id in parents:
        seen = {step_id}
        parent_id = parents[step_id]
        while parent_id is not None:
            if parent_id in seen:
                raise ValueError("Step hierarchy contains a cycle")
            seen.add(parent_id)
            parent_id = parents.get(parent_id)

    edge_rows: List[WorkflowTemplateEdge] = []
    for edge in edges:
        source_id = id_map.get(str(edge.get("source_step_id")))
        target_id = id_map.get(str(edge.get("target_step_id")))
        if source_id is None or target_id is None:
            raise ValueError("Edge endpoints must be steps of this template")
        if source_id == target_id:
            raise ValueError("Edge cannot connect a step to itself")

        condition_type = edge.get("condition_type") or "always"
        _require_choice(condition_type, EDGE_CONDITIONS, "edge condition")

        edge_rows.append(
            WorkflowTemplateEdge(
                template_id=template_id,
                source_step_id=source_id,
                target_step_id=target_id,
                condition_type=condition_type,
                condition_config=edge.get("condition_config"),
                label=edge.get("label"),
            )
        )

    by_id = {row.id: row for row in rows}
    rows.sort(key=lambda s: _depth(s, by_id))
    return rows, edge_rows


def _insert_graph(db: Session, step_rows: List[WorkflowTemplateStep], edge_rows: List[WorkflowTemplateEdge]) -> None:
    # Parents are flushed before children so FK checks pass row by row.
    for row in step_rows:
        db.add(row)
        db.flush()
    for edge in edge_rows:
        db.add(edge)
    db.flush()


def create_template(
    db: Session,
    org_id: int,
    created_by: Optional[str],
    fields: Mapping[str, Any],
    steps: Sequence[Mapping[str, Any]] = (),
    edges: Sequence[Mapping[str, Any]] = (),
) -> WorkflowTemplate:
    """Caller owns the transaction."""
    _validate_template_fields(dict(fields, name=fields.get("name")))

    template = WorkflowTemplate(
        id=str(uuid.uuid4()),
        org_id=int(org_id),
        created_by_id=created_by,
        **{k: v for k, v in fields.items() if k in _UPDATABLE_FIELDS and v is not None},
    )
    step_rows, edge_rows = _build_graph(template.id, steps, edges)

    db.add(template)
    db.flush()
    _insert_graph(db, step_rows, edge_rows)

    logger.info(
        "Workflow template created",
        extra={"template_id": template.id, "org_id": int(org_id), "steps": len(step_rows)},
    )
    return template


def update_template(db: Session, template: WorkflowTemplate, changes: Mapping[str, Any]) -> WorkflowTemplate:
    unknown = set(changes) - set(_UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown template fields: {', '.join(sorted(unknown))}")
    for key in ("name", "status", "is_active"):
        if key in changes and changes[key] is None:
            raise ValueError(f"{key} cannot be null")

    _validate_template_fields(changes)
    for key, value in changes.items():
        setattr(template, key, value)

    db.flush()
    return template


def save_template_graph(
    db: Session,
    template: WorkflowTemplate,
    steps: Sequence[Mapping[str, Any]],
    edges: Sequence[Mapping[str, Any]],
) -> WorkflowTemplate:
    """Replace the template's steps and edges. Running instances keep their copies."""
    step_rows, edge_rows = _build_graph(template.id, steps, edges)

    db.query(WorkflowTemplateEdge).filter(WorkflowTemplateEdge.template_id == template.id).delete(
        synchronize_session=False
    )
    old_step_ids = [
        row[0]
        for row in db.query(WorkflowTemplateStep.id).filter(WorkflowTemplateStep.template_id == template.id).all()
    ]
    if old_step_ids:
        db.query(WorkflowInstanceStep).filter(WorkflowInstanceStep.template_step_id.in_(old_step_ids)).update(
            {WorkflowInstanceStep.template_step_id: None}, synchronize_session=False
        )
        # Detach the hierarchy so the bulk delete has no row ordering constraints.
        db.query(WorkflowTemplateStep).filter(WorkflowTemplateStep.template_id == template.id).update(
            {WorkflowTemplateStep.parent_step_id: None}, synchronize_session=False
        )
        db.query(WorkflowTemplateStep).filter(WorkflowTemplateStep.template_id == template.id).delete(
            synchronize_session=False
        )
    db.flush()

    _insert_graph(db, step_rows, edge_rows)
    logger.info(
        "Workflow template graph saved",
        extra={"template_id": template.id, "steps": len(step_rows), "edges": len(edge_rows)},
    )
    return template


def delete_template(db: Session, template: WorkflowTemplate) -> None:
    if count_instances(db, template.id) > 0:
        raise ValueError("Cannot delete template with existing instances. Archive it instead.")

    db.query(WorkflowTemplateEdge).filter(WorkflowTemplateEdge.template_id == template.id).delete(
        synchronize_session=False
    )
    db.query(WorkflowTemplateStep).filter(WorkflowTemplateStep.template_id == template.id).update(
        {WorkflowTemplateStep.parent_step_id: None}, synchronize_session=False
    )
    db.query(WorkflowTemplateStep).filter(WorkflowTemplateStep.template_id == template.id).delete(
        synchronize_session=False
    )
    db.delete(template)
    db.flush()
