"""
Next-step selection after a step reaches a terminal status.

``LinearSelector`` walks siblings by order index and is what templates use by
default. ``GraphSelector`` follows the template's designer edges instead; it is
opt-in per template (``settings["progression"] == "graph"``) because edges are
still treated as designer metadata in production.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from peopleflow.models.workflow_instance import WorkflowInstance, WorkflowInstanceStep
from peopleflow.models.workflow_template import WorkflowTemplate, WorkflowTemplateEdge

logger = logging.getLogger(__name__)

LINEAR = "linear"
GRAPH = "graph"


def _pending_siblings(db: Session, instance: WorkflowInstance, parent_step_id: Optional[str]) -> List[WorkflowInstanceStep]:
    query = db.query(WorkflowInstanceStep).filter(
        WorkflowInstanceStep.instance_id == instance.id,
        WorkflowInstanceStep.status == "pending",
    )
    if parent_step_id is None:
        query = query.filter(WorkflowInstanceStep.parent_step_id.is_(None))
    else:
        query = query.filter(WorkflowInstanceStep.parent_step_id == parent_step_id)
    return query.order_by(WorkflowInstanceStep.order_index.asc(), WorkflowInstanceStep.id.asc()).all()


class NextStepSelector:
    name = ""

    def next_step(
        self, db: Session, instance: WorkflowInstance, finished: WorkflowInstanceStep
    ) -> Optional[WorkflowInstanceStep]:
        raise NotImplementedError


class LinearSelector(NextStepSelector):
    name = LINEAR

    def next_step(self, db, instance, finished):
        siblings = _pending_siblings(db, instance, finished.parent_step_id)
        for step in siblings:
            if step.order_index > finished.order_index:
                return step
        # Steps finished out of order: fall back to the earliest pending sibling.
        return siblings[0] if siblings else None


class GraphSelector(NextStepSelector):
    name = GRAPH

    def _followed_conditions(self, finished: WorkflowInstanceStep) -> set:
        conditions = {"always"}
        if finished.status == "completed":
            conditions.add("if_approved")
        elif finished.status == "skipped":
            conditions.add("if_rejected")
        return conditions

    def next_step(self, db, instance, finished):
        if finished.template_step_id is None:
            logger.info(
                "Graph progression unavailable; template step no longer exists",
                extra={"instance_id": instance.id, "step_id": finished.id},
            )
            return None

        edges = (
            db.query(WorkflowTemplateEdge)
            .filter(WorkflowTemplateEdge.source_step_id == finished.template_step_id)
            .all()
        )

        conditions = self._followed_conditions(finished)
        targets = []
        for edge in edges:
            if edge.condition_type == "conditional":
                logger.info(
                    "Conditional edge not evaluated",
                    extra={"edge_id": edge.id, "instance_id": instance.id},
                )
                continue
            if edge.condition_type in conditions:
                targets.append(edge.target_step_id)

        if not targets:
            return None

        return (
            db.query(WorkflowInstanceStep)
            .filter(
                WorkflowInstanceStep.instance_id == instance.id,
                WorkflowInstanceStep.template_step_id.in_(targets),
                WorkflowInstanceStep.status == "pending",
            )
            .order_by(WorkflowInstanceStep.order_index.asc(), WorkflowInstanceStep.id.asc())
            .first()
        )


_SELECTORS = {
    LINEAR: LinearSelector(),
    GRAPH: GraphSelector(),
}


def selector_for(template: Optional[WorkflowTemplate]) -> NextStepSelector:
    settings = (template.settings or {}) if template is not None else {}
    mode = settings.get("progression", LINEAR) if isinstance(settings, dict) else LINEAR
    selector = _SELECTORS.get(mode)
    if selector is None:
        logger.warning("Unknown progression mode; using linear", extra={"progression": mode})
        return _SELECTORS[LINEAR]
    return selector
