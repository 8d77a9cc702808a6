from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from peopleflow.core.authorization import AccessLevel, require_access
from peopleflow.database import get_db
from peopleflow.deps.auth import require_auth
from peopleflow.models.people_settings import PeopleSettings
from peopleflow.schemas.person import PeopleSettingsResponse, PeopleSettingsUpdate
from peopleflow.services.template_store import get_template

router = APIRouter(prefix="/people/settings", tags=["People Settings"])


@router.get("", response_model=PeopleSettingsResponse)
def get_people_settings(
    request: Request,
    db: Session = Depends(get_db),
    _auth: tuple[str, int] = Depends(require_auth),
):
    org_id = int(request.state.org_id)
    row = db.query(PeopleSettings).filter(PeopleSettings.org_id == org_id).first()
    if row is None:
        return PeopleSettingsResponse(
            org_id=org_id,
            auto_onboarding_workflow=False,
            default_onboarding_template_id=None,
            auto_offboarding_workflow=False,
            default_offboarding_template_id=None,
        )
    return row


@router.put("", response_model=PeopleSettingsResponse)
def update_people_settings(
    payload: PeopleSettingsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    _access=Depends(require_access(AccessLevel.ADMIN)),
):
    org_id = int(request.state.org_id)

    for template_id in (payload.default_onboarding_template_id, payload.default_offboarding_template_id):
        if template_id is not None and get_template(db, template_id, org_id) is None:
            raise HTTPException(status_code=400, detail=f"Unknown workflow template: {template_id}")

    row = db.query(PeopleSettings).filter(PeopleSettings.org_id == org_id).with_for_update().first()
    if row is None:
        row = PeopleSettings(org_id=org_id)
        db.add(row)

    row.auto_onboarding_workflow = payload.auto_onboarding_workflow
    row.default_onboarding_template_id = payload.default_onboarding_template_id
    row.auto_offboarding_workflow = payload.auto_offboarding_workflow
    row.default_offboarding_template_id = payload.default_offboarding_template_id

    db.commit()
    db.refresh(row)
    return row
