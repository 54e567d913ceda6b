from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4

from src.homehealth.clock import Clock, system_clock
from src.homehealth.config import Settings, settings
from src.homehealth.domain.errors import (
    ConcurrentModificationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    require_text,
)
from src.homehealth.domain.models.reviewable import EntityKind, StatusChange, mark_reviewed, mark_submitted
from src.homehealth.domain.models.task import Task, TaskPriority, TaskStatus, TaskType, TaskUpdate, TaskView
from src.homehealth.domain.models.user import SYSTEM_USER, User
from src.homehealth.domain.workflow import dates
from src.homehealth.domain.workflow.permissions import (
    ADMINS,
    REVIEWERS,
    SCHEDULING,
    Action,
    PermissionGate,
    permission_gate,
)
from src.homehealth.domain.workflow.transitions import TASK_TRANSITIONS, resolve_transition
from src.homehealth.infra.db import inmemory as inmemory_repos
from src.homehealth.infra.db.repositories import TaskRepository
from src.homehealth.services.audit.service import AuditService, audit_service

logger = logging.getLogger("workflow")

KIND = EntityKind.TASK

Mutation = Callable[[Task, datetime], None]

# TaskUpdate fields that may be omitted but never set to null.
_NON_NULLABLE_UPDATE_FIELDS = ("priority", "is_urgent", "is_billable")


class TaskWorkflowService:
    """State machine for home-health visit tasks.

    Every transition authorizes the actor first, validates its inputs, then
    loads the task, checks the move against ``TASK_TRANSITIONS`` and only
    then mutates a private copy that is saved with an optimistic version
    check. A failure at any step leaves the stored task untouched.
    """

    def __init__(
        self,
        *,
        repository: Optional[TaskRepository] = None,
        clock: Optional[Clock] = None,
        gate: Optional[PermissionGate] = None,
        audit: Optional[AuditService] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or system_clock
        self._gate = gate or permission_gate
        self._audit = audit or audit_service
        self._settings = config or settings

    @property
    def repository(self) -> TaskRepository:
        return self._repository or inmemory_repos.task_repository

    # Creation and edits

    def create_task(
        self,
        actor: User,
        *,
        patient_id: str,
        episode_id: str,
        task_type: TaskType,
        scheduled_date: date,
        assigned_to_id: Optional[str] = None,
        priority: TaskPriority = TaskPriority.NORMAL,
        is_urgent: bool = False,
        title: Optional[str] = None,
        description: Optional[str] = None,
        plan_of_care_id: Optional[str] = None,
        scheduled_start_time: Optional[time] = None,
        scheduled_end_time: Optional[time] = None,
        estimated_duration_minutes: Optional[int] = None,
        is_billable: bool = True,
        billing_code: Optional[str] = None,
    ) -> Task:
        self._gate.require(actor, Action.CREATE, KIND)
        require_text(patient_id, field="patient_id")
        require_text(episode_id, field="episode_id")
        _check_time_window(scheduled_start_time, scheduled_end_time)

        now = self._clock.now()
        task = Task(
            id=uuid4(),
            created_at=now,
            updated_at=now,
            created_by=actor.id,
            patient_id=patient_id,
            episode_id=episode_id,
            assigned_to_id=assigned_to_id,
            plan_of_care_id=plan_of_care_id,
            task_type=task_type,
            priority=priority,
            is_urgent=is_urgent or priority == TaskPriority.URGENT,
            title=title,
            description=description,
            status=TaskStatus.SCHEDULED,
            scheduled_date=scheduled_date,
            scheduled_start_time=scheduled_start_time,
            scheduled_end_time=scheduled_end_time,
            estimated_duration_minutes=estimated_duration_minutes,
            is_billable=is_billable,
            billing_code=billing_code,
            history=[
                StatusChange(action="create", to_status=TaskStatus.SCHEDULED.value, actor_id=actor.id, at=now)
            ],
        )
        saved = self.repository.save(task)
        self._log(actor, "create", saved, from_status=None)
        return saved

    def update(self, actor: User, task_id: UUID, changes: TaskUpdate) -> Task:
        self._gate.require(actor, Action.UPDATE, KIND)
        values = changes.model_dump(exclude_unset=True)
        if not values:
            raise ValidationError("No changes supplied")
        for name in _NON_NULLABLE_UPDATE_FIELDS:
            if name in values and values[name] is None:
                raise ValidationError(f"{name} cannot be cleared", field=name)

        def mutate(task: Task, now: datetime) -> None:
            for name, value in values.items():
                setattr(task, name, value)
            _check_time_window(task.scheduled_start_time, task.scheduled_end_time)

        return self._apply(actor, task_id, "update", mutate, details={"fields": sorted(values)})

    # Transitions

    def start(self, actor: User, task_id: UUID) -> Task:
        self._gate.require(actor, Action.START, KIND)

        def mutate(task: Task, now: datetime) -> None:
            task.actual_start_time = now

        return self._apply(
            actor, task_id, "start", mutate, authorize=lambda task: self._ensure_assignee(actor, task, Action.START)
        )

    def complete(self, actor: User, task_id: UUID, completion_notes: Optional[str] = None) -> Task:
        self._gate.require(actor, Action.COMPLETE, KIND)

        def mutate(task: Task, now: datetime) -> None:
            task.completion_notes = completion_notes
            task.completed_by = actor.id
            task.completed_at = now
            if task.actual_end_time is None:
                task.actual_end_time = now
            task.actual_duration_minutes = dates.minutes_between(task.actual_start_time, task.actual_end_time)
            mark_submitted(task, actor_id=actor.id, now=now)

        return self._apply(
            actor,
            task_id,
            "complete",
            mutate,
            authorize=lambda task: self._ensure_assignee(actor, task, Action.COMPLETE),
        )

    def reschedule(
        self,
        actor: User,
        task_id: UUID,
        new_date: date,
        reason: str,
        *,
        new_start_time: Optional[time] = None,
        new_end_time: Optional[time] = None,
    ) -> Task:
        """Move a task to a new day, keeping the same record.

        The previous date and the reason are kept in the task history; any
        timing or completion captured so far is discarded.
        """

        self._gate.require(actor, Action.RESCHEDULE, KIND)
        reason = require_text(reason, field="reason")
        if new_date is None:
            raise ValidationError("new_date is required", field="new_date")
        today = dates.local_date(self._clock.now(), self._settings.agency_timezone)
        if new_date < today:
            raise ValidationError(f"Cannot reschedule into the past ({new_date.isoformat()})", field="new_date")
        _check_time_window(new_start_time, new_end_time)

        details: Dict[str, Any] = {"new_date": new_date.isoformat()}

        def mutate(task: Task, now: datetime) -> None:
            details["previous_date"] = task.scheduled_date.isoformat()
            task.scheduled_date = new_date
            if new_start_time is not None or new_end_time is not None:
                task.scheduled_start_time = new_start_time
                task.scheduled_end_time = new_end_time
            _reset_execution(task)

        return self._apply(actor, task_id, "reschedule", mutate, reason=reason, details=details)

    def cancel(self, actor: User, task_id: UUID, reason: str) -> Task:
        self._gate.require(actor, Action.CANCEL, KIND)
        reason = require_text(reason, field="reason")

        def mutate(task: Task, now: datetime) -> None:
            task.cancellation_reason = reason
            task.cancelled_by = actor.id
            task.cancelled_at = now

        return self._apply(actor, task_id, "cancel", mutate, reason=reason)

    def approve_qa(self, actor: User, task_id: UUID, comments: Optional[str] = None) -> Task:
        self._gate.require(actor, Action.APPROVE, KIND)
        comments = comments.strip() if comments and comments.strip() else None

        def mutate(task: Task, now: datetime) -> None:
            mark_reviewed(task, actor_id=actor.id, now=now, comments=comments)

        return self._apply(actor, task_id, "approve_qa", mutate, reason=comments)

    def return_for_correction(self, actor: User, task_id: UUID, comments: str) -> Task:
        """Send a completed visit back to SCHEDULED so it can be re-documented."""

        self._gate.require(actor, Action.RETURN, KIND)
        comments = require_text(comments, field="comments")

        def mutate(task: Task, now: datetime) -> None:
            mark_reviewed(task, actor_id=actor.id, now=now, comments=comments)
            _reset_execution(task)

        return self._apply(actor, task_id, "return_for_correction", mutate, reason=comments)

    def assign(self, actor: User, task_id: UUID, clinician_id: str) -> Task:
        self._gate.require(actor, Action.ASSIGN, KIND)
        clinician_id = require_text(clinician_id, field="clinician_id")
        details: Dict[str, Any] = {"assigned_to_id": clinician_id}

        def mutate(task: Task, now: datetime) -> None:
            details["previous_assignee"] = task.assigned_to_id
            task.assigned_to_id = clinician_id

        return self._apply(actor, task_id, "assign", mutate, details=details)

    def mark_no_show(self, actor: User, task_id: UUID, reason: str) -> Task:
        self._gate.require(actor, Action.CANCEL, KIND)
        reason = require_text(reason, field="reason")
        return self._apply(actor, task_id, "mark_no_show", lambda task, now: None, reason=reason)

    def mark_missed_tasks(self, actor: User = SYSTEM_USER) -> List[Task]:
        """Sweep never-started visits that are past the missed grace period."""

        self._gate.require(actor, Action.UPDATE, KIND)
        now = self._clock.now()
        missed: List[Task] = []
        for task in self.repository.list_by_filters(status=TaskStatus.SCHEDULED):
            if not dates.is_missed(
                task.scheduled_date,
                task.status,
                task.actual_start_time,
                now,
                grace_days=self._settings.missed_after_days,
                tz=self._settings.agency_timezone,
            ):
                continue
            try:
                missed.append(
                    self._apply(
                        actor,
                        task.id,
                        "mark_missed",
                        lambda t, at: None,
                        details={"scheduled_date": task.scheduled_date.isoformat()},
                    )
                )
            except ConcurrentModificationError:
                # Someone touched the task since it was listed; the next sweep re-evaluates it.
                logger.info("Skipping task %s in missed sweep: modified concurrently", task.id)
        if missed:
            logger.info("Marked %d task(s) as missed", len(missed))
        return missed

    # Queries

    def get_task(self, actor: User, task_id: UUID) -> Task:
        self._gate.require(actor, Action.READ, KIND)
        return self._load(task_id)

    def view(self, task: Task, now: Optional[datetime] = None) -> TaskView:
        """Attach the date-dependent flags to a task."""

        now = now or self._clock.now()
        tz = self._settings.agency_timezone
        return TaskView.model_validate(
            {
                **task.model_dump(),
                "is_overdue": dates.is_overdue(task.scheduled_date, task.status, now, tz),
                "is_due_today": dates.is_due_today(task.scheduled_date, task.status, now, tz),
                "can_be_edited": task.status in TASK_TRANSITIONS["update"].sources,
                "can_be_cancelled": task.status in TASK_TRANSITIONS["cancel"].sources,
            }
        )

    def list_tasks(
        self,
        actor: User,
        *,
        patient_id: Optional[str] = None,
        episode_id: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        scheduled_from: Optional[date] = None,
        scheduled_to: Optional[date] = None,
    ) -> List[TaskView]:
        self._gate.require(actor, Action.READ, KIND)
        now = self._clock.now()
        tasks = self.repository.list_by_filters(
            patient_id=patient_id,
            episode_id=episode_id,
            assigned_to_id=assigned_to_id,
            status=status,
            scheduled_from=scheduled_from,
            scheduled_to=scheduled_to,
        )
        return sorted((self.view(task, now) for task in tasks), key=_schedule_key)

    def my_tasks(self, actor: User, *, start: Optional[date] = None, end: Optional[date] = None) -> List[TaskView]:
        return self.list_tasks(actor, assigned_to_id=actor.id, scheduled_from=start, scheduled_to=end)

    def due_today(self, actor: User) -> List[TaskView]:
        today = dates.local_date(self._clock.now(), self._settings.agency_timezone)
        return [
            view
            for view in self.list_tasks(actor, status=TaskStatus.SCHEDULED, scheduled_from=today, scheduled_to=today)
            if view.is_due_today
        ]

    def overdue(self, actor: User) -> List[TaskView]:
        return [view for view in self.list_tasks(actor) if view.is_overdue]

    def by_date_range(self, actor: User, start: date, end: date) -> List[TaskView]:
        if end < start:
            raise ValidationError("end date must not precede start date", field="end")
        return self.list_tasks(actor, scheduled_from=start, scheduled_to=end)

    def list_pending_review(self, actor: User) -> List[Task]:
        self._gate.require(actor, Action.APPROVE, KIND)
        return sorted(self.repository.find_pending(), key=lambda t: t.submitted_at or t.updated_at)

    # Internals

    def _load(self, task_id: UUID) -> Task:
        task = self.repository.get(task_id)
        if task is None:
            raise NotFoundError(entity_kind=KIND.value, entity_id=task_id)
        return task

    def _apply(
        self,
        actor: User,
        task_id: UUID,
        operation: str,
        mutate: Mutation,
        *,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        authorize: Optional[Callable[[Task], None]] = None,
    ) -> Task:
        task = self._load(task_id)
        # Per-task access runs before the status check so a denied caller
        # learns nothing about the task's state.
        if authorize is not None:
            authorize(task)
        from_status = task.status
        target = resolve_transition(TASK_TRANSITIONS, operation, from_status, entity_kind=KIND.value, entity_id=task.id)

        now = self._clock.now()
        mutate(task, now)
        task.status = target
        task.updated_at = now
        task.history.append(
            StatusChange(
                action=operation,
                from_status=from_status.value,
                to_status=target.value,
                actor_id=actor.id,
                at=now,
                reason=reason,
                details=details or {},
            )
        )
        saved = self.repository.save(task, expected_version=task.version)
        self._log(actor, operation, saved, from_status=from_status)
        return saved

    def _ensure_assignee(self, actor: User, task: Task, action: Action) -> None:
        # Field clinicians may only execute visits assigned to them;
        # schedulers, managers and admins can act on any task.
        if not actor.roles.isdisjoint(SCHEDULING | REVIEWERS | ADMINS):
            return
        if task.assigned_to_id is not None and task.assigned_to_id != actor.id:
            raise PermissionDeniedError(action=action.value, entity_kind=KIND.value, actor_id=actor.id)

    def _log(self, actor: User, operation: str, task: Task, *, from_status: Optional[TaskStatus]) -> None:
        self._audit.log_event(
            action=operation,
            resource_type=KIND.value,
            resource_id=str(task.id),
            subject=actor.id,
            at=task.updated_at,
            extra={
                "from_status": from_status.value if from_status else None,
                "to_status": task.status.value,
                "version": task.version,
            },
        )


def _reset_execution(task: Task) -> None:
    task.actual_start_time = None
    task.actual_end_time = None
    task.actual_duration_minutes = None
    task.completed_at = None
    task.completed_by = None


def _check_time_window(start: Optional[time], end: Optional[time]) -> None:
    if start is not None and end is not None and end <= start:
        raise ValidationError("scheduled end time must be after the start time", field="scheduled_end_time")


def _schedule_key(view: TaskView) -> tuple:
    return (view.scheduled_date, view.scheduled_start_time or time.min, str(view.id))


task_service = TaskWorkflowService()
