from __future__ import annotations

from datetime import date, time
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from src.homehealth.domain.models.task import Task, TaskPriority, TaskStatus, TaskType, TaskUpdate, TaskView
from src.homehealth.domain.models.user import User
from src.homehealth.security import get_api_key, get_current_user
from src.homehealth.services.tasks.service import task_service

router = APIRouter(
    prefix="/tasks",
    tags=["tasks"],
    dependencies=[Depends(get_api_key)],
)


class TaskCreateRequest(BaseModel):
    patient_id: str
    episode_id: str
    task_type: TaskType
    scheduled_date: date
    assigned_to_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.NORMAL
    is_urgent: bool = False
    title: Optional[str] = None
    description: Optional[str] = None
    plan_of_care_id: Optional[str] = None
    scheduled_start_time: Optional[time] = None
    scheduled_end_time: Optional[time] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)
    is_billable: bool = True
    billing_code: Optional[str] = None


class CompleteRequest(BaseModel):
    completion_notes: Optional[str] = None


class RescheduleRequest(BaseModel):
    new_date: date
    reason: str
    new_start_time: Optional[time] = None
    new_end_time: Optional[time] = None


class ReasonRequest(BaseModel):
    reason: str


class ReviewRequest(BaseModel):
    comments: Optional[str] = None


class AssignRequest(BaseModel):
    clinician_id: str


@router.post("/", response_model=TaskView, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreateRequest, current_user: User = Depends(get_current_user)) -> TaskView:
    task = task_service.create_task(current_user, **payload.model_dump())
    return task_service.view(task)


@router.get("/", response_model=List[TaskView])
async def list_tasks(
    patient_id: Optional[str] = None,
    episode_id: Optional[str] = None,
    assigned_to_id: Optional[str] = None,
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
) -> List[TaskView]:
    return task_service.list_tasks(
        current_user,
        patient_id=patient_id,
        episode_id=episode_id,
        assigned_to_id=assigned_to_id,
        status=status_filter,
    )


@router.get("/my", response_model=List[TaskView])
async def my_tasks(
    start: Optional[date] = None,
    end: Optional[date] = None,
    current_user: User = Depends(get_current_user),
) -> List[TaskView]:
    return task_service.my_tasks(current_user, start=start, end=end)


@router.get("/due-today", response_model=List[TaskView])
async def due_today(current_user: User = Depends(get_current_user)) -> List[TaskView]:
    return task_service.due_today(current_user)


@router.get("/overdue", response_model=List[TaskView])
async def overdue(current_user: User = Depends(get_current_user)) -> List[TaskView]:
    return task_service.overdue(current_user)


@router.get("/date-range", response_model=List[TaskView])
async def by_date_range(start: date, end: date, current_user: User = Depends(get_current_user)) -> List[TaskView]:
    return task_service.by_date_range(current_user, start, end)


@router.get("/pending-review", response_model=List[Task])
async def pending_review(current_user: User = Depends(get_current_user)) -> List[Task]:
    return task_service.list_pending_review(current_user)


@router.post("/mark-missed", response_model=List[Task])
async def mark_missed(current_user: User = Depends(get_current_user)) -> List[Task]:
    """Run the missed-visit sweep on demand (normally scheduled)."""
    return task_service.mark_missed_tasks(current_user)


@router.get("/{task_id}", response_model=TaskView)
async def get_task(task_id: UUID, current_user: User = Depends(get_current_user)) -> TaskView:
    return task_service.view(task_service.get_task(current_user, task_id))


@router.patch("/{task_id}", response_model=TaskView)
async def update_task(
    task_id: UUID,
    payload: TaskUpdate,
    current_user: User = Depends(get_current_user),
) -> TaskView:
    return task_service.view(task_service.update(current_user, task_id, payload))


@router.post("/{task_id}/start", response_model=TaskView)
async def start_task(task_id: UUID, current_user: User = Depends(get_current_user)) -> TaskView:
    return task_service.view(task_service.start(current_user, task_id))


@router.post("/{task_id}/complete", response_model=TaskView)
async def complete_task(
    task_id: UUID,
    payload: CompleteRequest,
    current_user: User = Depends(get_current_user),
) -> TaskView:
    return task_service.view(task_service.complete(current_user, task_id, payload.completion_notes))


@router.post("/{task_id}/reschedule", response_model=TaskView)
async def reschedule_task(
    task_id: UUID,
    payload: RescheduleRequest,
    current_user: User = Depends(get_current_user),
) -> TaskView:
    task = task_service.reschedule(
        current_user,
        task_id,
        payload.new_date,
        payload.reason,
        new_start_time=payload.new_start_time,
        new_end_time=payload.new_end_time,
    )
    return task_service.view(task)


@router.post("/{task_id}/cancel", response_model=TaskView)
async def cancel_task(
    task_id: UUID,
    payload: ReasonRequest,
    current_user: User = Depends(get_current_user),
) -> TaskView:
    return task_service.view(task_service.cancel(current_user, task_id, payload.reason))


@router.post("/{task_id}/no-show", response_model=TaskView)
async def mark_no_show(
    task_id: UUID,
    payload: ReasonRequest,
    current_user: User = Depends(get_current_user),
) -> TaskView:
    return task_service.view(task_service.mark_no_show(current_user, task_id, payload.reason))


@router.post("/{task_id}/assign", response_model=TaskView)
async def assign_task(
    task_id: UUID,
    payload: AssignRequest,
    current_user: User = Depends(get_current_user),
) -> TaskView:
    return task_service.view(task_service.assign(current_user, task_id, payload.clinician_id))


@router.post("/{task_id}/approve", response_model=TaskView)
async def approve_task(
    task_id: UUID,
    payload: ReviewRequest,
    current_user: User = Depends(get_current_user),
) -> TaskView:
    return task_service.view(task_service.approve_qa(current_user, task_id, payload.comments))


@router.post("/{task_id}/return", response_model=TaskView)
async def return_task(
    task_id: UUID,
    payload: ReviewRequest,
    current_user: User = Depends(get_current_user),
) -> TaskView:
    return task_service.view(task_service.return_for_correction(current_user, task_id, payload.comments or ""))
