from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from peopleflow.core.authorization import AccessLevel, require_access
from peopleflow.database import SessionLocal
from peopleflow.deps.auth import require_auth
from peopleflow.models.workflow_template import WorkflowTemplate
from peopleflow.schemas.workflow_template import (
    TemplateCreate,
    TemplateDetailResponse,
    TemplateEdgeResponse,
    TemplateGraph,
    TemplateResponse,
    TemplateStepResponse,
    TemplateUpdate,
)
from peopleflow.services import template_store

router = APIRouter(prefix="/workflows/templates", tags=["Workflow Templates"])


def _to_detail(db, template: WorkflowTemplate) -> TemplateDetailResponse:
    return TemplateDetailResponse(
        **TemplateResponse.model_validate(template).model_dump(),
        steps=[TemplateStepResponse.model_validate(step) for step in template_store.list_steps(db, template.id)],
        edges=[TemplateEdgeResponse.model_validate(edge) for edge in template_store.list_edges(db, template.id)],
    )


def _get_or_404(db, template_id: str, org_id: int) -> WorkflowTemplate:
    template = template_store.get_template(db, template_id, org_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Workflow template not found")
    return template


@router.get("", response_model=List[TemplateResponse])
def list_templates(
    request: Request,
    module_scope: Optional[str] = None,
    status: Optional[str] = None,
    _auth: tuple[str, int] = Depends(require_auth),
):
    db = SessionLocal()
    try:
        return template_store.list_templates(
            db, int(request.state.org_id), module_scope=module_scope, status=status
        )
    finally:
        db.close()


@router.post("", response_model=TemplateDetailResponse)
def create_template(
    payload: TemplateCreate,
    request: Request,
    _access=Depends(require_access(AccessLevel.ADMIN)),
):
    fields = payload.model_dump(exclude={"steps", "edges"})
    steps = [step.model_dump() for step in payload.steps]
    edges = [edge.model_dump() for edge in payload.edges]

    db = SessionLocal()
    try:
        template = template_store.create_template(
            db, int(request.state.org_id), str(request.state.user_id), fields, steps, edges
        )
        db.commit()
        return _to_detail(db, template)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        db.close()


@router.get("/{template_id}", response_model=TemplateDetailResponse)
def get_template(
    template_id: str,
    request: Request,
    _auth: tuple[str, int] = Depends(require_auth),
):
    db = SessionLocal()
    try:
        template = _get_or_404(db, template_id, int(request.state.org_id))
        return _to_detail(db, template)
    finally:
        db.close()


@router.patch("/{template_id}", response_model=TemplateResponse)
def update_template(
    template_id: str,
    payload: TemplateUpdate,
    request: Request,
    _access=Depends(require_access(AccessLevel.ADMIN)),
):
    db = SessionLocal()
    try:
        template = _get_or_404(db, template_id, int(request.state.org_id))
        template_store.update_template(db, template, payload.model_dump(exclude_unset=True))
        db.commit()
        db.refresh(template)
        return template
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        db.close()


@router.put("/{template_id}/graph", response_model=TemplateDetailResponse)
def save_template_graph(
    template_id: str,
    payload: TemplateGraph,
    request: Request,
    _access=Depends(require_access(AccessLevel.ADMIN)),
):
    db = SessionLocal()
    try:
        template = _get_or_404(db, template_id, int(request.state.org_id))
        template_store.save_template_graph(
            db,
            template,
            [step.model_dump() for step in payload.steps],
            [edge.model_dump() for edge in payload.edges],
        )
        db.commit()
        return _to_detail(db, template)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        db.close()


@router.delete("/{template_id}")
def delete_template(
    template_id: str,
    request: Request,
    _access=Depends(require_access(AccessLevel.ADMIN)),
):
    db = SessionLocal()
    try:
        template = _get_or_404(db, template_id, int(request.state.org_id))
        template_store.delete_template(db, template)
        db.commit()
        return {"deleted": True, "id": template_id}
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        db.close()
