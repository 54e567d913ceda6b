from datetime import date, time

import pytest

from src.homehealth.domain.errors import (
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from src.homehealth.domain.models.task import TaskPriority, TaskStatus, TaskType, TaskUpdate
from src.homehealth.domain.models.user import SYSTEM_USER
from src.homehealth.infra.db import inmemory as inmemory_repos
from src.homehealth.services.audit.service import AuditService
from src.homehealth.services.tasks.service import TaskWorkflowService


def _schedule(tasks, scheduler, *, on=date(2024, 1, 15), assigned_to="rn-1", task_type=TaskType.RN_VISIT):
    return tasks.create_task(
        scheduler,
        patient_id="pat-1",
        episode_id="ep-1",
        task_type=task_type,
        scheduled_date=on,
        assigned_to_id=assigned_to,
    )


def test_create_task_starts_scheduled(tasks, scheduler):
    task = _schedule(tasks, scheduler)
    assert task.status == TaskStatus.SCHEDULED
    assert task.version == 1
    assert task.created_by == "sched-1"
    assert task.history[0].action == "create"


def test_urgent_priority_flags_task(tasks, scheduler):
    task = tasks.create_task(
        scheduler,
        patient_id="pat-1",
        episode_id="ep-1",
        task_type=TaskType.PT_VISIT,
        scheduled_date=date(2024, 1, 16),
        priority=TaskPriority.URGENT,
    )
    assert task.is_urgent is True


def test_start_then_complete_records_timing(tasks, scheduler, nurse, clock):
    task = _schedule(tasks, scheduler)
    started = tasks.start(nurse, task.id)
    assert started.status == TaskStatus.IN_PROGRESS
    assert started.actual_start_time == clock.now()

    clock.advance(minutes=45)
    done = tasks.complete(nurse, task.id, "Vitals stable")
    assert done.status == TaskStatus.COMPLETED_PENDING_QA
    assert done.completed_by == "rn-1"
    assert done.completed_at == clock.now()
    assert done.actual_end_time == clock.now()
    assert done.actual_duration_minutes == 45
    assert done.completion_notes == "Vitals stable"
    assert done.submitted_by == "rn-1"


def test_complete_from_scheduled_has_no_duration(tasks, scheduler, nurse):
    task = _schedule(tasks, scheduler)
    done = tasks.complete(nurse, task.id)
    assert done.status == TaskStatus.COMPLETED_PENDING_QA
    assert done.actual_start_time is None
    assert done.actual_duration_minutes is None


def test_complete_twice_fails(tasks, scheduler, nurse):
    task = _schedule(tasks, scheduler)
    tasks.complete(nurse, task.id)
    with pytest.raises(InvalidStateError) as excinfo:
        tasks.complete(nurse, task.id)
    assert excinfo.value.current == TaskStatus.COMPLETED_PENDING_QA.value
    assert excinfo.value.requested == "complete"


def test_start_requires_scheduled(tasks, scheduler, nurse):
    task = _schedule(tasks, scheduler)
    tasks.start(nurse, task.id)
    with pytest.raises(InvalidStateError):
        tasks.start(nurse, task.id)


def test_cancel_requires_reason(tasks, scheduler):
    task = _schedule(tasks, scheduler)
    with pytest.raises(ValidationError):
        tasks.cancel(scheduler, task.id, "")
    with pytest.raises(ValidationError):
        tasks.cancel(scheduler, task.id, "   ")
    assert tasks.get_task(scheduler, task.id).status == TaskStatus.SCHEDULED


def test_cancel_scheduled_task(tasks, scheduler):
    task = _schedule(tasks, scheduler)
    cancelled = tasks.cancel(scheduler, task.id, "patient declined")
    assert cancelled.status == TaskStatus.CANCELLED
    assert cancelled.cancelled_by == "sched-1"
    assert cancelled.cancellation_reason == "patient declined"
    assert cancelled.cancelled_at is not None


def test_cannot_cancel_pending_qa(tasks, scheduler, nurse):
    task = _schedule(tasks, scheduler)
    tasks.complete(nurse, task.id)
    with pytest.raises(InvalidStateError):
        tasks.cancel(scheduler, task.id, "duplicate")


def test_reschedule_keeps_row_and_records_prior_date(tasks, scheduler, nurse):
    task = _schedule(tasks, scheduler)
    tasks.start(nurse, task.id)
    moved = tasks.reschedule(scheduler, task.id, date(2024, 1, 18), "patient at hospital")

    assert moved.id == task.id
    assert moved.status == TaskStatus.SCHEDULED
    assert moved.scheduled_date == date(2024, 1, 18)
    assert moved.actual_start_time is None
    entry = moved.history[-1]
    assert entry.action == "reschedule"
    assert entry.reason == "patient at hospital"
    assert entry.details["previous_date"] == "2024-01-15"
    assert entry.from_status == TaskStatus.IN_PROGRESS.value


def test_reschedule_validation(tasks, scheduler):
    task = _schedule(tasks, scheduler)
    with pytest.raises(ValidationError):
        tasks.reschedule(scheduler, task.id, date(2024, 1, 20), "")
    with pytest.raises(ValidationError):
        tasks.reschedule(scheduler, task.id, date(2024, 1, 1), "too late")
    with pytest.raises(ValidationError):
        tasks.reschedule(
            scheduler,
            task.id,
            date(2024, 1, 20),
            "new slot",
            new_start_time=time(10, 0),
            new_end_time=time(9, 0),
        )


def test_reschedule_terminal_task_fails(tasks, scheduler):
    task = _schedule(tasks, scheduler)
    tasks.cancel(scheduler, task.id, "patient declined")
    with pytest.raises(InvalidStateError):
        tasks.reschedule(scheduler, task.id, date(2024, 1, 20), "changed mind")


def test_return_for_correction_round_trip(tasks, scheduler, nurse, qa_nurse):
    task = _schedule(tasks, scheduler)
    tasks.start(nurse, task.id)
    tasks.complete(nurse, task.id)

    returned = tasks.return_for_correction(qa_nurse, task.id, "fix vitals")
    assert returned.status == TaskStatus.SCHEDULED
    assert returned.completed_at is None
    assert returned.completed_by is None
    assert returned.review_comments == "fix vitals"
    assert returned.reviewed_by == "qa-1"

    again = tasks.complete(nurse, task.id)
    assert again.status == TaskStatus.COMPLETED_PENDING_QA
    # Resubmission clears the earlier review; it survives in history.
    assert again.reviewed_by is None
    assert any(entry.reason == "fix vitals" for entry in again.history)


def test_return_requires_comments(tasks, scheduler, nurse, qa_nurse):
    task = _schedule(tasks, scheduler)
    tasks.complete(nurse, task.id)
    with pytest.raises(ValidationError):
        tasks.return_for_correction(qa_nurse, task.id, "")


def test_approve_qa(tasks, scheduler, nurse, qa_nurse):
    task = _schedule(tasks, scheduler)
    completed = tasks.complete(nurse, task.id)
    approved = tasks.approve_qa(qa_nurse, task.id)
    assert approved.status == TaskStatus.QA_APPROVED
    assert approved.reviewed_by == "qa-1"
    assert approved.reviewed_at >= completed.submitted_at


def test_approve_before_completion_fails(tasks, scheduler, qa_nurse):
    task = _schedule(tasks, scheduler)
    with pytest.raises(InvalidStateError):
        tasks.approve_qa(qa_nurse, task.id)


@pytest.mark.parametrize(
    "operation",
    [
        lambda svc, actor, task_id: svc.complete(actor, task_id),
        lambda svc, actor, task_id: svc.cancel(actor, task_id, "no reason needed"),
        lambda svc, actor, task_id: svc.approve_qa(actor, task_id),
        lambda svc, actor, task_id: svc.reschedule(actor, task_id, date(2024, 1, 20), "moving"),
        lambda svc, actor, task_id: svc.assign(actor, task_id, "rn-2"),
    ],
)
def test_permission_denied_leaves_status_unchanged(tasks, scheduler, biller, operation):
    task = _schedule(tasks, scheduler)
    with pytest.raises(PermissionDeniedError):
        operation(tasks, biller, task.id)
    stored = tasks.get_task(scheduler, task.id)
    assert stored.status == TaskStatus.SCHEDULED
    assert stored.version == task.version


def test_permission_checked_before_lookup(tasks, biller):
    from uuid import uuid4

    with pytest.raises(PermissionDeniedError):
        tasks.start(biller, uuid4())


def test_unknown_task(tasks, nurse):
    from uuid import uuid4

    with pytest.raises(NotFoundError):
        tasks.start(nurse, uuid4())


def test_field_clinician_cannot_complete_someone_elses_visit(tasks, scheduler, aide):
    task = _schedule(tasks, scheduler, assigned_to="rn-1")
    with pytest.raises(PermissionDeniedError):
        tasks.complete(aide, task.id)
    assert tasks.get_task(scheduler, task.id).status == TaskStatus.SCHEDULED


def test_ownership_is_checked_before_task_status(tasks, scheduler, nurse, aide):
    task = _schedule(tasks, scheduler, assigned_to="rn-1")
    tasks.complete(nurse, task.id)

    # The aide must not learn that the visit is already completed.
    with pytest.raises(PermissionDeniedError):
        tasks.complete(aide, task.id)
    with pytest.raises(PermissionDeniedError):
        tasks.start(aide, task.id)
    assert tasks.get_task(scheduler, task.id).status == TaskStatus.COMPLETED_PENDING_QA


def test_assign_and_no_show(tasks, scheduler):
    task = _schedule(tasks, scheduler, assigned_to=None)
    assigned = tasks.assign(scheduler, task.id, "rn-2")
    assert assigned.assigned_to_id == "rn-2"
    assert assigned.status == TaskStatus.SCHEDULED

    no_show = tasks.mark_no_show(scheduler, task.id, "nobody home")
    assert no_show.status == TaskStatus.NO_SHOW
    with pytest.raises(InvalidStateError):
        tasks.assign(scheduler, task.id, "rn-3")


def test_update_details_only_while_editable(tasks, scheduler, nurse):
    task = _schedule(tasks, scheduler)
    updated = tasks.update(scheduler, task.id, TaskUpdate(title="Wound care", priority=TaskPriority.HIGH))
    assert updated.title == "Wound care"
    assert updated.priority == TaskPriority.HIGH

    with pytest.raises(ValidationError):
        tasks.update(scheduler, task.id, TaskUpdate())

    tasks.complete(nurse, task.id)
    with pytest.raises(InvalidStateError):
        tasks.update(scheduler, task.id, TaskUpdate(title="Too late"))


@pytest.mark.parametrize("field", ["priority", "is_urgent", "is_billable"])
def test_update_rejects_null_for_required_fields(tasks, scheduler, field):
    task = _schedule(tasks, scheduler)
    with pytest.raises(ValidationError) as excinfo:
        tasks.update(scheduler, task.id, TaskUpdate(**{field: None}))
    assert excinfo.value.field == field

    stored = tasks.get_task(scheduler, task.id)
    assert stored.priority == TaskPriority.NORMAL
    assert stored.is_billable is True
    assert stored.version == 1
    assert [t.id for t in tasks.list_tasks(scheduler)] == [task.id]


def test_views_and_date_queries(tasks, scheduler, nurse):
    overdue = _schedule(tasks, scheduler, on=date(2024, 1, 10))
    today = _schedule(tasks, scheduler, on=date(2024, 1, 15))
    later = _schedule(tasks, scheduler, on=date(2024, 1, 20), assigned_to="rn-2")

    view = tasks.view(tasks.get_task(scheduler, overdue.id))
    assert view.is_overdue is True
    assert view.can_be_cancelled is True
    assert view.can_be_edited is True

    assert [t.id for t in tasks.overdue(scheduler)] == [overdue.id]
    assert [t.id for t in tasks.due_today(scheduler)] == [today.id]
    assert [t.id for t in tasks.my_tasks(nurse)] == [overdue.id, today.id]
    assert [t.id for t in tasks.by_date_range(scheduler, date(2024, 1, 14), date(2024, 1, 31))] == [
        today.id,
        later.id,
    ]
    with pytest.raises(ValidationError):
        tasks.by_date_range(scheduler, date(2024, 1, 31), date(2024, 1, 1))


def test_completed_task_view_is_not_overdue(tasks, scheduler, nurse):
    task = _schedule(tasks, scheduler, on=date(2024, 1, 10))
    done = tasks.complete(nurse, task.id)
    view = tasks.view(done)
    assert view.is_overdue is False
    assert view.can_be_cancelled is False
    assert view.can_be_edited is False


def test_missed_sweep(tasks, scheduler, nurse):
    stale = _schedule(tasks, scheduler, on=date(2024, 1, 5))
    recent = _schedule(tasks, scheduler, on=date(2024, 1, 13))
    started = _schedule(tasks, scheduler, on=date(2024, 1, 5))
    tasks.start(nurse, started.id)

    missed = tasks.mark_missed_tasks(SYSTEM_USER)
    assert [t.id for t in missed] == [stale.id]
    assert tasks.get_task(scheduler, stale.id).status == TaskStatus.MISSED
    assert tasks.get_task(scheduler, recent.id).status == TaskStatus.SCHEDULED
    assert tasks.view(tasks.get_task(scheduler, recent.id)).is_overdue is True


def test_pending_review_requires_reviewer(tasks, scheduler, nurse, qa_nurse):
    task = _schedule(tasks, scheduler)
    tasks.complete(nurse, task.id)
    assert [t.id for t in tasks.list_pending_review(qa_nurse)] == [task.id]
    with pytest.raises(PermissionDeniedError):
        tasks.list_pending_review(nurse)


def test_concurrent_complete_only_one_wins(tasks, scheduler, nurse):
    task = _schedule(tasks, scheduler)
    repository = inmemory_repos.task_repository

    first = repository.get(task.id)
    second = repository.get(task.id)
    first.status = TaskStatus.COMPLETED_PENDING_QA
    repository.save(first, expected_version=first.version)

    second.status = TaskStatus.CANCELLED
    with pytest.raises(ConcurrentModificationError) as excinfo:
        repository.save(second, expected_version=second.version)
    assert isinstance(excinfo.value, InvalidStateError)
    assert repository.get(task.id).status == TaskStatus.COMPLETED_PENDING_QA


def test_transitions_are_audited(clock, scheduler, nurse):
    audit = AuditService(keep_recent=10)
    tasks = TaskWorkflowService(clock=clock, audit=audit)
    task = _schedule(tasks, scheduler)
    tasks.start(nurse, task.id)

    actions = [event.action for event in audit.recent]
    assert actions == ["create", "start"]
    assert audit.recent[-1].extra["from_status"] == "SCHEDULED"
    assert audit.recent[-1].extra["to_status"] == "IN_PROGRESS"
    assert audit.recent[-1].subject == "rn-1"
    assert audit.recent[-1].timestamp == clock.now().isoformat()
    assert audit.recent[-1].timestamp == tasks.get_task(scheduler, task.id).history[-1].at.isoformat()
