from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

PersonStatus = Literal["active", "onboarding", "offboarding", "inactive"]


class PersonCreate(BaseModel):
    name: str
    email: Optional[str] = None
    role_id: Optional[int] = None
    manager_id: Optional[int] = None
    status: PersonStatus = "active"


class PersonStatusUpdate(BaseModel):
    status: PersonStatus


class PersonResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    org_id: int
    name: str
    email: Optional[str]
    role_id: Optional[int]
    manager_id: Optional[int]
    status: str
    created_at: datetime


class RoleCreate(BaseModel):
    name: str


class RoleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    org_id: int
    name: str
    created_at: datetime


class PeopleSettingsUpdate(BaseModel):
    auto_onboarding_workflow: bool = False
    default_onboarding_template_id: Optional[str] = None
    auto_offboarding_workflow: bool = False
    default_offboarding_template_id: Optional[str] = None


class PeopleSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    org_id: int
    auto_onboarding_workflow: bool
    default_onboarding_template_id: Optional[str]
    auto_offboarding_workflow: bool
    default_offboarding_template_id: Optional[str]
