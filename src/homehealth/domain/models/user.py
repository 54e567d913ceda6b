from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, EmailStr, Field


class Role(str, Enum):
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"
    CLINICAL_MANAGER = "CLINICAL_MANAGER"
    QA_NURSE = "QA_NURSE"
    SCHEDULER = "SCHEDULER"
    RN = "RN"
    LPN = "LPN"
    PT = "PT"
    OT = "OT"
    ST = "ST"
    HHA = "HHA"
    MSW = "MSW"
    BILLING_SPECIALIST = "BILLING_SPECIALIST"

    @classmethod
    def parse(cls, raw: str) -> "Role":
        """Accept both ``QA_NURSE`` and Spring-style ``ROLE_QA_NURSE`` names."""

        name = raw.strip().upper()
        if name.startswith("ROLE_"):
            name = name[len("ROLE_"):]
        return cls(name)


class User(BaseModel):
    """The acting principal for a workflow call.

    Roles and fine-grained permission names come from the external identity
    provider; the workflow core only reads them.
    """

    id: str
    email: Optional[EmailStr] = None
    display_name: Optional[str] = None
    roles: FrozenSet[Role] = Field(default_factory=frozenset)
    # Permission names such as "TASK_COMPLETE" or "VISIT_APPROVE".
    permissions: FrozenSet[str] = Field(default_factory=frozenset)

    def has_role(self, role: Role) -> bool:
        return role in self.roles


# Actor used by scheduled sweeps (e.g. marking missed visits).
SYSTEM_USER = User(id="system", display_name="Workflow scheduler", roles=frozenset({Role.SYSTEM_ADMIN}))
