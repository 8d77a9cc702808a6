from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from peopleflow.services.due_dates import is_overdue


class InstanceCreate(BaseModel):
    template_id: str
    entity_type: str
    entity_id: str
    name: Optional[str] = None
    entity_name: Optional[str] = None
    owner_id: Optional[int] = None
    due_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class InstanceStatusChange(BaseModel):
    reason: Optional[str] = None


class InstanceSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    status: str
    entity_type: str
    entity_id: str
    total_steps: int
    completed_steps: int
    progress: int
    due_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    is_overdue: bool


class InstanceStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    instance_id: str
    template_step_id: Optional[str]
    parent_step_id: Optional[str]
    name: str
    description: Optional[str]
    step_type: str
    order_index: int
    status: str
    assigned_person_id: Optional[int]
    assignee_id: Optional[str]
    is_required: bool
    due_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    completed_by_id: Optional[str]
    notes: Optional[str]
    is_overdue: bool = False

    @classmethod
    def from_step(cls, step, now: Optional[datetime] = None) -> "InstanceStepResponse":
        response = cls.model_validate(step)
        response.is_overdue = is_overdue(step.due_at, step.status, now)
        return response


class InstanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    template_id: str
    org_id: int
    entity_type: str
    entity_id: str
    name: str
    status: str
    owner_id: Optional[int]
    started_at: Optional[datetime]
    due_at: Optional[datetime]
    completed_at: Optional[datetime]
    total_steps: int
    completed_steps: int
    started_by_id: Optional[str]
    trigger_type: Optional[str]
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("instance_metadata", "metadata")
    )


class InstanceDetailResponse(InstanceResponse):
    progress: int = 0
    is_overdue: bool = False
    steps: List[InstanceStepResponse] = Field(default_factory=list)


class StepUpdate(BaseModel):
    status: Literal["pending", "in_progress", "completed", "skipped", "blocked"]
    notes: Optional[str] = None


class StepAssign(BaseModel):
    person_id: Optional[int] = None
    user_id: Optional[str] = None


class StepAdvanceResponse(BaseModel):
    step: InstanceStepResponse
    instance: InstanceResponse
    promoted_step: Optional[InstanceStepResponse] = None
