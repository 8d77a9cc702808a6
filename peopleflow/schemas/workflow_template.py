from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

TemplateStatus = Literal["draft", "active", "archived"]


class StepIn(BaseModel):
    # Client-side ids (temporary ids from the designer are fine); remapped on save.
    id: Optional[str] = None
    parent_step_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    step_type: Literal["task", "notification", "gateway", "group"] = "task"
    order_index: int = 0
    position_x: float = 0
    position_y: float = 0
    assignee_type: Literal["specific_user", "role", "dynamic_manager", "dynamic_creator", "unassigned"] = "unassigned"
    assignee_config: Optional[Dict[str, Any]] = None
    default_assignee_id: Optional[int] = None
    due_offset_days: Optional[int] = Field(default=None, ge=0)
    due_offset_from: Literal["workflow_start", "previous_step_completion", "previous_step"] = "workflow_start"
    is_required: bool = True
    attachments_enabled: bool = True
    metadata: Optional[Dict[str, Any]] = None


class EdgeIn(BaseModel):
    source_step_id: str
    target_step_id: str
    condition_type: Literal["always", "if_approved", "if_rejected", "conditional"] = "always"
    condition_config: Optional[Dict[str, Any]] = None
    label: Optional[str] = None


class TemplateCreate(BaseModel):
    name: str
    description: Optional[str] = None
    module_scope: Optional[str] = None
    trigger_type: Optional[str] = None
    status: TemplateStatus = "draft"
    is_active: bool = True
    default_owner_id: Optional[int] = None
    default_due_days: Optional[int] = Field(default=None, ge=0)
    settings: Optional[Dict[str, Any]] = None
    steps: List[StepIn] = Field(default_factory=list)
    edges: List[EdgeIn] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    module_scope: Optional[str] = None
    trigger_type: Optional[str] = None
    status: Optional[TemplateStatus] = None
    is_active: Optional[bool] = None
    default_owner_id: Optional[int] = None
    default_due_days: Optional[int] = Field(default=None, ge=0)
    settings: Optional[Dict[str, Any]] = None


class TemplateGraph(BaseModel):
    steps: List[StepIn] = Field(default_factory=list)
    edges: List[EdgeIn] = Field(default_factory=list)


class TemplateStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    parent_step_id: Optional[str]
    name: str
    description: Optional[str]
    step_type: str
    order_index: int
    position_x: float
    position_y: float
    assignee_type: str
    assignee_config: Optional[Dict[str, Any]]
    default_assignee_id: Optional[int]
    due_offset_days: Optional[int]
    due_offset_from: str
    is_required: bool
    attachments_enabled: bool
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("step_metadata", "metadata")
    )


class TemplateEdgeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    source_step_id: str
    target_step_id: str
    condition_type: str
    condition_config: Optional[Dict[str, Any]]
    label: Optional[str]


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: int
    name: str
    description: Optional[str]
    module_scope: Optional[str]
    trigger_type: Optional[str]
    status: str
    is_active: bool
    default_owner_id: Optional[int]
    default_due_days: Optional[int]
    settings: Optional[Dict[str, Any]]
    created_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime


class TemplateDetailResponse(TemplateResponse):
    steps: List[TemplateStepResponse] = Field(default_factory=list)
    edges: List[TemplateEdgeResponse] = Field(default_factory=list)
