from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from src.homehealth.domain.models.reviewable import StatusChange
from src.homehealth.domain.models.task import TaskType


class VisitNoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    RETURNED = "RETURNED"


class VisitType(str, Enum):
    RN_VISIT = "RN_VISIT"
    PT_VISIT = "PT_VISIT"
    OT_VISIT = "OT_VISIT"
    ST_VISIT = "ST_VISIT"
    HHA_VISIT = "HHA_VISIT"
    MSW_VISIT = "MSW_VISIT"

    @classmethod
    def from_task_type(cls, task_type: TaskType) -> "VisitType":
        # OASIS and supervisory visits are documented by the RN.
        for visit_type in cls:
            discipline = visit_type.value.split("_")[0]
            if task_type.value.startswith(discipline + "_"):
                return visit_type
        return cls.RN_VISIT


class VisitNote(BaseModel):
    """Clinical documentation of a single visit, one-to-one with a Task."""

    id: UUID
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    version: int = 0

    task_id: Optional[UUID] = None
    patient_id: str
    episode_id: str
    clinician_id: Optional[str] = None
    visit_type: VisitType = VisitType.RN_VISIT
    visit_date: Optional[date] = None
    visit_start_time: Optional[time] = None
    visit_end_time: Optional[time] = None
    status: VisitNoteStatus = VisitNoteStatus.DRAFT
    payload: Dict[str, Any] = Field(default_factory=dict)

    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_comments: Optional[str] = None

    history: List[StatusChange] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def visit_duration_minutes(self) -> Optional[int]:
        if self.visit_start_time is None or self.visit_end_time is None:
            return None
        start = self.visit_start_time.hour * 60 + self.visit_start_time.minute
        end = self.visit_end_time.hour * 60 + self.visit_end_time.minute
        return end - start

    @property
    def is_editable(self) -> bool:
        return self.status in {VisitNoteStatus.DRAFT, VisitNoteStatus.RETURNED}
