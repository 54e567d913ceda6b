from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel

from src.homehealth.clock import Clock, system_clock
from src.homehealth.domain.errors import NotFoundError, ValidationError, require_text
from src.homehealth.domain.models.reviewable import EntityKind, StatusChange, mark_reviewed, mark_submitted
from src.homehealth.domain.models.task import Task
from src.homehealth.domain.models.user import User
from src.homehealth.domain.models.visit_note import VisitNote, VisitNoteStatus, VisitType
from src.homehealth.domain.workflow.permissions import Action, PermissionGate, permission_gate
from src.homehealth.domain.workflow.transitions import VISIT_NOTE_TRANSITIONS, resolve_transition
from src.homehealth.infra.db import inmemory as inmemory_repos
from src.homehealth.infra.db.repositories import TaskRepository, VisitNoteRepository
from src.homehealth.services.audit.service import AuditService, audit_service

KIND = EntityKind.VISIT_NOTE

Mutation = Callable[[VisitNote, datetime], None]


class VisitNoteUpdate(BaseModel):
    task_id: Optional[UUID] = None
    visit_date: Optional[date] = None
    visit_start_time: Optional[time] = None
    visit_end_time: Optional[time] = None
    payload: Optional[Dict[str, Any]] = None


class VisitNoteService:
    """Documentation lifecycle for a single visit: draft, submit, QA review."""

    def __init__(
        self,
        *,
        repository: Optional[VisitNoteRepository] = None,
        task_repository: Optional[TaskRepository] = None,
        clock: Optional[Clock] = None,
        gate: Optional[PermissionGate] = None,
        audit: Optional[AuditService] = None,
    ) -> None:
        self._repository = repository
        self._task_repository = task_repository
        self._clock = clock or system_clock
        self._gate = gate or permission_gate
        self._audit = audit or audit_service

    @property
    def repository(self) -> VisitNoteRepository:
        return self._repository or inmemory_repos.visit_note_repository

    @property
    def task_repository(self) -> TaskRepository:
        return self._task_repository or inmemory_repos.task_repository

    def create_visit_note(
        self,
        actor: User,
        *,
        patient_id: str,
        episode_id: str,
        task_id: Optional[UUID] = None,
        visit_type: Optional[VisitType] = None,
        visit_date: Optional[date] = None,
        visit_start_time: Optional[time] = None,
        visit_end_time: Optional[time] = None,
        clinician_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> VisitNote:
        """Open a DRAFT note, optionally linked to the task it documents.

        A task carries at most one note. When linked, the visit type and
        date default to the task's discipline and scheduled day.
        """

        self._gate.require(actor, Action.CREATE, KIND)
        require_text(patient_id, field="patient_id")
        require_text(episode_id, field="episode_id")
        _check_visit_window(visit_start_time, visit_end_time)

        if task_id is not None:
            task = self._linkable_task(task_id, patient_id)
            visit_type = visit_type or VisitType.from_task_type(task.task_type)
            visit_date = visit_date or task.scheduled_date
            clinician_id = clinician_id or task.assigned_to_id

        now = self._clock.now()
        note = VisitNote(
            id=uuid4(),
            created_at=now,
            updated_at=now,
            created_by=actor.id,
            task_id=task_id,
            patient_id=patient_id,
            episode_id=episode_id,
            clinician_id=clinician_id or actor.id,
            visit_type=visit_type or VisitType.RN_VISIT,
            visit_date=visit_date,
            visit_start_time=visit_start_time,
            visit_end_time=visit_end_time,
            status=VisitNoteStatus.DRAFT,
            payload=dict(payload or {}),
            history=[
                StatusChange(action="create", to_status=VisitNoteStatus.DRAFT.value, actor_id=actor.id, at=now)
            ],
        )
        saved = self.repository.save(note)
        self._log(actor, "create", saved, from_status=None)
        return saved

    def update(self, actor: User, note_id: UUID, changes: VisitNoteUpdate) -> VisitNote:
        self._gate.require(actor, Action.UPDATE, KIND)
        values = changes.model_dump(exclude_unset=True)
        if not values:
            raise ValidationError("No changes supplied")
        if "task_id" in values and values["task_id"] is None:
            raise ValidationError("a visit note cannot be unlinked from its task", field="task_id")

        def mutate(note: VisitNote, now: datetime) -> None:
            payload = values.pop("payload", None)
            task_id = values.pop("task_id", None)
            if task_id is not None and task_id != note.task_id:
                task = self._linkable_task(task_id, note.patient_id, note_id=note.id)
                note.task_id = task_id
                if note.visit_date is None:
                    note.visit_date = task.scheduled_date
            for name, value in values.items():
                setattr(note, name, value)
            if payload:
                note.payload.update(payload)
            _check_visit_window(note.visit_start_time, note.visit_end_time)

        return self._apply(actor, note_id, "update", mutate, details={"fields": sorted(values)})

    def submit(self, actor: User, note_id: UUID) -> VisitNote:
        self._gate.require(actor, Action.SUBMIT_FOR_QA, KIND)

        def mutate(note: VisitNote, now: datetime) -> None:
            if note.task_id is None:
                raise ValidationError("a visit note must be linked to a task before submission", field="task_id")
            if note.visit_date is None:
                raise ValidationError("visit_date is required before submission", field="visit_date")
            mark_submitted(note, actor_id=actor.id, now=now)

        return self._apply(actor, note_id, "submit", mutate)

    def approve(self, actor: User, note_id: UUID, comments: Optional[str] = None) -> VisitNote:
        self._gate.require(actor, Action.APPROVE, KIND)
        comments = comments.strip() if comments and comments.strip() else None

        def mutate(note: VisitNote, now: datetime) -> None:
            mark_reviewed(note, actor_id=actor.id, now=now, comments=comments)

        return self._apply(actor, note_id, "approve", mutate, reason=comments)

    def return_for_correction(self, actor: User, note_id: UUID, comments: str) -> VisitNote:
        self._gate.require(actor, Action.RETURN, KIND)
        comments = require_text(comments, field="comments")

        def mutate(note: VisitNote, now: datetime) -> None:
            mark_reviewed(note, actor_id=actor.id, now=now, comments=comments)

        return self._apply(actor, note_id, "return_for_correction", mutate, reason=comments)

    def reopen(self, actor: User, note_id: UUID) -> VisitNote:
        # Reviewer comments stay visible on the draft until the next submit.
        self._gate.require(actor, Action.UPDATE, KIND)
        return self._apply(actor, note_id, "reopen", lambda note, now: None)

    # Queries

    def get_visit_note(self, actor: User, note_id: UUID) -> VisitNote:
        self._gate.require(actor, Action.READ, KIND)
        return self._load(note_id)

    def get_by_task(self, actor: User, task_id: UUID) -> VisitNote:
        self._gate.require(actor, Action.READ, KIND)
        note = self.repository.get_by_task(task_id)
        if note is None:
            raise NotFoundError(entity_kind=KIND.value, entity_id=f"for task {task_id}")
        return note

    def list_by_patient(self, actor: User, patient_id: str) -> List[VisitNote]:
        self._gate.require(actor, Action.READ, KIND)
        return _by_visit_date(self.repository.list_by_filters(patient_id=patient_id))

    def list_by_episode(self, actor: User, episode_id: str) -> List[VisitNote]:
        self._gate.require(actor, Action.READ, KIND)
        return _by_visit_date(self.repository.list_by_filters(episode_id=episode_id))

    def list_by_clinician(self, actor: User, clinician_id: str) -> List[VisitNote]:
        self._gate.require(actor, Action.READ, KIND)
        return _by_visit_date(self.repository.list_by_filters(clinician_id=clinician_id))

    def list_by_status(self, actor: User, status: VisitNoteStatus) -> List[VisitNote]:
        self._gate.require(actor, Action.READ, KIND)
        return _by_visit_date(self.repository.list_by_filters(status=status))

    def list_pending_review(self, actor: User) -> List[VisitNote]:
        self._gate.require(actor, Action.APPROVE, KIND)
        return sorted(self.repository.find_pending(), key=lambda n: n.submitted_at or n.updated_at)

    # Internals

    def _linkable_task(self, task_id: UUID, patient_id: str, *, note_id: Optional[UUID] = None) -> Task:
        task = self.task_repository.get(task_id)
        if task is None:
            raise NotFoundError(entity_kind=EntityKind.TASK.value, entity_id=task_id)
        if task.patient_id != patient_id:
            raise ValidationError("task belongs to a different patient", field="task_id")
        existing = self.repository.get_by_task(task_id)
        if existing is not None and existing.id != note_id:
            raise ValidationError(f"task {task_id} already has a visit note", field="task_id")
        return task

    def _load(self, note_id: UUID) -> VisitNote:
        note = self.repository.get(note_id)
        if note is None:
            raise NotFoundError(entity_kind=KIND.value, entity_id=note_id)
        return note

    def _apply(
        self,
        actor: User,
        note_id: UUID,
        operation: str,
        mutate: Mutation,
        *,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> VisitNote:
        note = self._load(note_id)
        from_status = note.status
        target = resolve_transition(VISIT_NOTE_TRANSITIONS, operation, from_status, entity_kind=KIND.value, entity_id=note.id)

        now = self._clock.now()
        mutate(note, now)
        note.status = target
        note.updated_at = now
        note.history.append(
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
        saved = self.repository.save(note, expected_version=note.version)
        self._log(actor, operation, saved, from_status=from_status)
        return saved

    def _log(self, actor: User, operation: str, note: VisitNote, *, from_status: Optional[VisitNoteStatus]) -> None:
        self._audit.log_event(
            action=operation,
            resource_type=KIND.value,
            resource_id=str(note.id),
            subject=actor.id,
            at=note.updated_at,
            extra={
                "from_status": from_status.value if from_status else None,
                "to_status": note.status.value,
                "task_id": str(note.task_id) if note.task_id else None,
                "version": note.version,
            },
        )


def _check_visit_window(start: Optional[time], end: Optional[time]) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError("visit end time must not precede the start time", field="visit_end_time")


def _by_visit_date(notes: Iterable[VisitNote]) -> List[VisitNote]:
    return sorted(notes, key=lambda n: (n.visit_date or date.min, n.created_at), reverse=True)


visit_note_service = VisitNoteService()
