"""
Assignee resolution for workflow steps.

A step's assignment policy is one of five closed variants. ``resolve_assignee``
dispatches on the variant and returns who is responsible for the step at
instantiation time. Resolution never raises for bad configuration: anything
that cannot be resolved degrades to unassigned and is logged, so one broken
step cannot block an otherwise valid workflow.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from peopleflow.models.person import Person

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpecificUser:
    user_id: Optional[str]


@dataclass(frozen=True)
class RoleHolder:
    role_id: Optional[int]


@dataclass(frozen=True)
class DynamicManager:
    pass


@dataclass(frozen=True)
class DynamicCreator:
    pass


@dataclass(frozen=True)
class Unassigned:
    pass


AssignmentPolicy = Union[SpecificUser, RoleHolder, DynamicManager, DynamicCreator, Unassigned]


@dataclass(frozen=True)
class BindingContext:
    org_id: int
    entity_type: str
    entity_id: str
    triggered_by: Optional[str] = None


@dataclass(frozen=True)
class ResolvedAssignee:
    person_id: Optional[int] = None
    user_id: Optional[str] = None

    @property
    def is_unassigned(self) -> bool:
        return self.person_id is None and self.user_id is None


UNASSIGNED = ResolvedAssignee()


class PersonDirectory:
    """Directory lookups the resolver needs. Subclass for non-SQL sources."""

    def role_holders(self, org_id: int, role_id: int) -> List[int]:
        raise NotImplementedError

    def manager_of(self, org_id: int, person_id: int) -> Optional[int]:
        raise NotImplementedError


class SqlPersonDirectory(PersonDirectory):
    def __init__(self, db: Session):
        self.db = db

    def role_holders(self, org_id: int, role_id: int) -> List[int]:
        rows = (
            self.db.query(Person.id)
            .filter(
                Person.org_id == int(org_id),
                Person.role_id == int(role_id),
                Person.status != "inactive",
            )
            .order_by(Person.id.asc())
            .all()
        )
        return [row[0] for row in rows]

    def manager_of(self, org_id: int, person_id: int) -> Optional[int]:
        person = (
            self.db.query(Person)
            .filter(Person.id == int(person_id), Person.org_id == int(org_id))
            .first()
        )
        if person is None:
            raise LookupError(f"Person {person_id} not found")
        return person.manager_id


def _config_value(config: Optional[Mapping[str, Any]], *keys: str) -> Any:
    if not isinstance(config, Mapping):
        return None
    for key in keys:
        value = config.get(key)
        if value not in (None, ""):
            return value
    return None


def policy_from_config(assignee_type: Optional[str], assignee_config: Optional[Mapping[str, Any]]) -> AssignmentPolicy:
    if assignee_type == "specific_user":
        user_id = _config_value(assignee_config, "userId", "user_id")
        return SpecificUser(user_id=None if user_id is None else str(user_id))

    if assignee_type == "role":
        role_id = _config_value(assignee_config, "roleId", "role_id")
        try:
            return RoleHolder(role_id=None if role_id is None else int(role_id))
        except (TypeError, ValueError):
            logger.warning("Malformed role id in assignee config", extra={"role_id": role_id})
            return RoleHolder(role_id=None)

    if assignee_type == "dynamic_manager":
        return DynamicManager()

    if assignee_type == "dynamic_creator":
        return DynamicCreator()

    if assignee_type not in (None, "unassigned"):
        logger.warning("Unknown assignee type; treating as unassigned", extra={"assignee_type": assignee_type})

    return Unassigned()


def _degrade(reason: str, policy: AssignmentPolicy, context: BindingContext) -> ResolvedAssignee:
    logger.warning(
        "Assignee unresolved; step left unassigned",
        extra={
            "reason": reason,
            "policy": type(policy).__name__,
            "entity_type": context.entity_type,
            "entity_id": context.entity_id,
        },
    )
    return UNASSIGNED


def resolve_assignee(
    policy: AssignmentPolicy,
    default_assignee_id: Optional[int],
    context: BindingContext,
    directory: PersonDirectory,
) -> ResolvedAssignee:
    try:
        if isinstance(policy, SpecificUser):
            if policy.user_id:
                return ResolvedAssignee(user_id=policy.user_id)
            if default_assignee_id is not None:
                return ResolvedAssignee(person_id=int(default_assignee_id))
            return _degrade("specific_user without user id", policy, context)

        if isinstance(policy, RoleHolder):
            if policy.role_id is None:
                return _degrade("role policy without role id", policy, context)

            holders = directory.role_holders(context.org_id, policy.role_id)
            if default_assignee_id is not None and int(default_assignee_id) in holders:
                return ResolvedAssignee(person_id=int(default_assignee_id))
            if not holders:
                return _degrade("role has no holders", policy, context)

            logger.info(
                "Role step awaiting manual assignment",
                extra={"role_id": policy.role_id, "holders": len(holders)},
            )
            return UNASSIGNED

        if isinstance(policy, DynamicManager):
            if context.entity_type != "person":
                return _degrade("dynamic_manager on non-person entity", policy, context)
            manager_id = directory.manager_of(context.org_id, int(context.entity_id))
            if manager_id is None:
                return _degrade("person has no manager", policy, context)
            return ResolvedAssignee(person_id=int(manager_id))

        if isinstance(policy, DynamicCreator):
            if not context.triggered_by:
                return _degrade("no triggering user", policy, context)
            return ResolvedAssignee(user_id=str(context.triggered_by))

        return UNASSIGNED

    except (LookupError, TypeError, ValueError) as exc:
        return _degrade(str(exc), policy, context)
