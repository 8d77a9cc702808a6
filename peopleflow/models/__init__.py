from peopleflow.models.org_role import OrganizationalRole
from peopleflow.models.people_settings import PeopleSettings
from peopleflow.models.person import Person
from peopleflow.models.workflow_instance import WorkflowInstance, WorkflowInstanceStep
from peopleflow.models.workflow_template import (
    WorkflowTemplate,
    WorkflowTemplateEdge,
    WorkflowTemplateStep,
)

__all__ = [
    "OrganizationalRole",
    "PeopleSettings",
    "Person",
    "WorkflowInstance",
    "WorkflowInstanceStep",
    "WorkflowTemplate",
    "WorkflowTemplateEdge",
    "WorkflowTemplateStep",
]
