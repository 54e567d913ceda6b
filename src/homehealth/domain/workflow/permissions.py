from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Tuple

from src.homehealth.domain.errors import PermissionDeniedError
from src.homehealth.domain.models.reviewable import EntityKind
from src.homehealth.domain.models.user import Role, User


class Action(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    START = "START"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"
    RESCHEDULE = "RESCHEDULE"
    ASSIGN = "ASSIGN"
    SUBMIT_FOR_QA = "SUBMIT_FOR_QA"
    APPROVE = "APPROVE"
    RETURN = "RETURN"
    LOCK = "LOCK"


# Prefix of the fine-grained permission names issued by the identity
# provider, e.g. TASK_COMPLETE, OASIS_APPROVE, VISIT_RETURN.
PERMISSION_PREFIX: Mapping[EntityKind, str] = {
    EntityKind.TASK: "TASK",
    EntityKind.ASSESSMENT: "OASIS",
    EntityKind.VISIT_NOTE: "VISIT",
}

ADMINS = frozenset({Role.SYSTEM_ADMIN, Role.ORG_ADMIN})
REVIEWERS = frozenset({Role.QA_NURSE, Role.CLINICAL_MANAGER}) | ADMINS
FIELD_CLINICIANS = frozenset({Role.RN, Role.LPN, Role.PT, Role.OT, Role.ST, Role.HHA, Role.MSW})
# Disciplines allowed to perform OASIS assessments.
ASSESSING_CLINICIANS = frozenset({Role.RN, Role.PT, Role.OT, Role.ST})
SCHEDULING = frozenset({Role.SCHEDULER, Role.CLINICAL_MANAGER}) | ADMINS
DOCUMENTING = FIELD_CLINICIANS | {Role.CLINICAL_MANAGER} | ADMINS


@dataclass(frozen=True)
class AccessRule:
    roles: FrozenSet[Role]
    permissions: FrozenSet[str] = field(default_factory=frozenset)


def _rules(kind: EntityKind, table: Mapping[Action, FrozenSet[Role]]) -> Dict[Tuple[EntityKind, Action], AccessRule]:
    prefix = PERMISSION_PREFIX[kind]
    return {
        (kind, action): AccessRule(roles=frozenset(roles), permissions=frozenset({f"{prefix}_{action.value}"}))
        for action, roles in table.items()
    }


DEFAULT_POLICY: Dict[Tuple[EntityKind, Action], AccessRule] = {
    **_rules(
        EntityKind.TASK,
        {
            Action.CREATE: SCHEDULING,
            Action.READ: SCHEDULING | FIELD_CLINICIANS | REVIEWERS,
            Action.UPDATE: SCHEDULING | FIELD_CLINICIANS,
            Action.DELETE: ADMINS,
            Action.START: DOCUMENTING,
            Action.COMPLETE: DOCUMENTING,
            Action.CANCEL: SCHEDULING,
            Action.RESCHEDULE: SCHEDULING | FIELD_CLINICIANS,
            Action.ASSIGN: SCHEDULING,
            Action.APPROVE: REVIEWERS,
            Action.RETURN: REVIEWERS,
        },
    ),
    **_rules(
        EntityKind.ASSESSMENT,
        {
            Action.CREATE: ASSESSING_CLINICIANS | {Role.CLINICAL_MANAGER} | ADMINS,
            Action.READ: ASSESSING_CLINICIANS | REVIEWERS,
            Action.UPDATE: ASSESSING_CLINICIANS | {Role.CLINICAL_MANAGER} | ADMINS,
            Action.DELETE: ADMINS,
            Action.SUBMIT_FOR_QA: ASSESSING_CLINICIANS | {Role.CLINICAL_MANAGER} | ADMINS,
            Action.APPROVE: REVIEWERS,
            Action.RETURN: REVIEWERS,
            Action.LOCK: REVIEWERS,
        },
    ),
    **_rules(
        EntityKind.VISIT_NOTE,
        {
            Action.CREATE: DOCUMENTING,
            Action.READ: DOCUMENTING | REVIEWERS,
            Action.UPDATE: DOCUMENTING,
            Action.DELETE: ADMINS,
            Action.SUBMIT_FOR_QA: DOCUMENTING,
            Action.APPROVE: REVIEWERS,
            Action.RETURN: REVIEWERS,
        },
    ),
}


def authorize(
    actor_roles: Iterable[Role],
    action: Action,
    entity_kind: EntityKind,
    permissions: Iterable[str] = (),
    *,
    policy: Mapping[Tuple[EntityKind, Action], AccessRule] = DEFAULT_POLICY,
) -> bool:
    """Return True when any of the actor's roles or permissions suffices.

    Unknown (kind, action) pairs are denied.
    """

    rule = policy.get((entity_kind, action))
    if rule is None:
        return False
    if not rule.roles.isdisjoint(actor_roles):
        return True
    return not rule.permissions.isdisjoint(permissions)


class PermissionGate:
    def __init__(self, policy: Mapping[Tuple[EntityKind, Action], AccessRule] = DEFAULT_POLICY) -> None:
        self._policy = policy

    def allows(self, actor: User, action: Action, entity_kind: EntityKind) -> bool:
        return authorize(actor.roles, action, entity_kind, actor.permissions, policy=self._policy)

    def require(self, actor: User, action: Action, entity_kind: EntityKind) -> None:
        if not self.allows(actor, action, entity_kind):
            raise PermissionDeniedError(action=action.value, entity_kind=entity_kind.value, actor_id=actor.id)


permission_gate = PermissionGate()
