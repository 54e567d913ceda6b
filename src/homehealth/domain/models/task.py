from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.homehealth.domain.models.reviewable import StatusChange


class TaskStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED_PENDING_QA = "COMPLETED_PENDING_QA"
    QA_APPROVED = "QA_APPROVED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"
    MISSED = "MISSED"
    NO_SHOW = "NO_SHOW"


class TaskType(str, Enum):
    RN_VISIT = "RN_VISIT"
    PT_VISIT = "PT_VISIT"
    OT_VISIT = "OT_VISIT"
    ST_VISIT = "ST_VISIT"
    HHA_VISIT = "HHA_VISIT"
    MSW_VISIT = "MSW_VISIT"
    SUPERVISORY_VISIT = "SUPERVISORY_VISIT"
    OASIS_ASSESSMENT = "OASIS_ASSESSMENT"
    OASIS_RECERT = "OASIS_RECERT"
    OASIS_DISCHARGE = "OASIS_DISCHARGE"
    PHYSICIAN_ORDER_RENEWAL = "PHYSICIAN_ORDER_RENEWAL"

    @property
    def is_oasis(self) -> bool:
        return self.value.startswith("OASIS_")


class TaskPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class Task(BaseModel):
    """A scheduled clinical visit or administrative action for a patient.

    Only the workflow services mutate ``status`` and the audit fields; the
    derived flags (overdue, due today, ...) live on :class:`TaskView` because
    they depend on the current date.
    """

    id: UUID
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    version: int = 0

    patient_id: str
    episode_id: str
    assigned_to_id: Optional[str] = None
    plan_of_care_id: Optional[str] = None
    task_type: TaskType
    priority: TaskPriority = TaskPriority.NORMAL
    is_urgent: bool = False
    title: Optional[str] = None
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.SCHEDULED

    scheduled_date: date
    scheduled_start_time: Optional[time] = None
    scheduled_end_time: Optional[time] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)

    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    actual_duration_minutes: Optional[int] = None

    completion_notes: Optional[str] = None
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None

    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    is_billable: bool = True
    billing_code: Optional[str] = None
    billed: bool = False

    # Review metadata (see ReviewableEntity)
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_comments: Optional[str] = None

    history: List[StatusChange] = Field(default_factory=list)


class TaskView(Task):
    """Task as returned to callers, with date-dependent flags computed on read."""

    is_overdue: bool = False
    is_due_today: bool = False
    can_be_edited: bool = False
    can_be_cancelled: bool = False


class TaskUpdate(BaseModel):
    """Editable details of a task; status and scheduled date have their own transitions."""

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    is_urgent: Optional[bool] = None
    scheduled_start_time: Optional[time] = None
    scheduled_end_time: Optional[time] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)
    is_billable: Optional[bool] = None
    billing_code: Optional[str] = None
