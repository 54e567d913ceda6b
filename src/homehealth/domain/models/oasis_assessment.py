from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.homehealth.domain.models.reviewable import StatusChange


class AssessmentStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    LOCKED = "LOCKED"


class AssessmentType(str, Enum):
    SOC = "SOC"  # start of care
    ROC = "ROC"  # resumption of care
    RECERT = "RECERT"
    FOLLOW_UP = "FOLLOW_UP"
    TRANSFER = "TRANSFER"
    DISCHARGE = "DISCHARGE"
    DEATH = "DEATH"


class ReviewAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class OasisAssessment(BaseModel):
    """An OASIS data-collection instrument for one patient episode milestone.

    ``payload`` holds the clinical item responses and is opaque to the
    workflow core.
    """

    id: UUID
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    version: int = 0

    patient_id: str
    episode_id: str
    clinician_id: Optional[str] = None
    assessment_type: AssessmentType = AssessmentType.SOC
    assessment_date: date
    status: AssessmentStatus = AssessmentStatus.DRAFT
    completion_percentage: int = Field(default=0, ge=0, le=100)
    last_auto_saved: Optional[datetime] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None

    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_comments: Optional[str] = None

    history: List[StatusChange] = Field(default_factory=list)

    @property
    def is_editable(self) -> bool:
        return self.status == AssessmentStatus.DRAFT
