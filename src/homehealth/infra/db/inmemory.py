from __future__ import annotations

from datetime import date
from threading import Lock
from typing import Dict, Generic, Iterable, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from src.homehealth.domain.errors import ConcurrentModificationError, ValidationError
from src.homehealth.domain.models.oasis_assessment import AssessmentStatus, AssessmentType, OasisAssessment
from src.homehealth.domain.models.task import Task, TaskStatus
from src.homehealth.domain.models.visit_note import VisitNote, VisitNoteStatus
from src.homehealth.infra.db.repositories import (
    OasisAssessmentRepository,
    TaskRepository,
    VisitNoteRepository,
)

M = TypeVar("M", bound=BaseModel)


class _VersionedStore(Generic[M]):
    """Dictionary of deep copies guarded by a lock.

    Callers never hold the stored instance, so a transition that fails
    half-way cannot leak a partial mutation into the store.
    """

    def __init__(self, entity_kind: str, *, unique_field: Optional[str] = None) -> None:
        self._entity_kind = entity_kind
        self._unique_field = unique_field
        self._items: Dict[UUID, M] = {}
        self._lock = Lock()

    def get(self, item_id: UUID) -> Optional[M]:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item is not None else None

    def values(self) -> List[M]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._items.values()]

    def save(self, item: M, expected_version: Optional[int]) -> M:
        with self._lock:
            existing = self._items.get(item.id)  # type: ignore[attr-defined]
            if expected_version is None:
                if existing is not None:
                    raise ConcurrentModificationError(
                        entity_kind=self._entity_kind,
                        entity_id=item.id,  # type: ignore[attr-defined]
                        expected_version=0,
                        actual_version=existing.version,  # type: ignore[attr-defined]
                    )
                new_version = 1
            else:
                actual = existing.version if existing is not None else None  # type: ignore[attr-defined]
                if actual != expected_version:
                    raise ConcurrentModificationError(
                        entity_kind=self._entity_kind,
                        entity_id=item.id,  # type: ignore[attr-defined]
                        expected_version=expected_version,
                        actual_version=actual,
                    )
                new_version = expected_version + 1
            self._check_unique(item)
            stored = item.model_copy(deep=True, update={"version": new_version})
            self._items[stored.id] = stored  # type: ignore[attr-defined]
            return stored.model_copy(deep=True)

    def _check_unique(self, item: M) -> None:
        # Caller holds the lock.
        if self._unique_field is None:
            return
        value = getattr(item, self._unique_field)
        if value is None:
            return
        for other in self._items.values():
            if other.id != item.id and getattr(other, self._unique_field) == value:  # type: ignore[attr-defined]
                raise ValidationError(
                    f"{self._unique_field} {value} is already used by another {self._entity_kind}",
                    field=self._unique_field,
                )

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class InMemoryTaskRepository(TaskRepository):
    def __init__(self) -> None:
        self._store: _VersionedStore[Task] = _VersionedStore("TASK")

    def get(self, task_id: UUID) -> Optional[Task]:
        return self._store.get(task_id)

    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        episode_id: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        scheduled_from: Optional[date] = None,
        scheduled_to: Optional[date] = None,
    ) -> Iterable[Task]:
        for task in self._store.values():
            if patient_id is not None and task.patient_id != patient_id:
                continue
            if episode_id is not None and task.episode_id != episode_id:
                continue
            if assigned_to_id is not None and task.assigned_to_id != assigned_to_id:
                continue
            if status is not None and task.status != status:
                continue
            if scheduled_from is not None and task.scheduled_date < scheduled_from:
                continue
            if scheduled_to is not None and task.scheduled_date > scheduled_to:
                continue
            yield task

    def save(self, task: Task, *, expected_version: Optional[int] = None) -> Task:
        return self._store.save(task, expected_version)

    def clear(self) -> None:
        self._store.clear()


class InMemoryOasisAssessmentRepository(OasisAssessmentRepository):
    def __init__(self) -> None:
        self._store: _VersionedStore[OasisAssessment] = _VersionedStore("ASSESSMENT")

    def get(self, assessment_id: UUID) -> Optional[OasisAssessment]:
        return self._store.get(assessment_id)

    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        episode_id: Optional[str] = None,
        clinician_id: Optional[str] = None,
        status: Optional[AssessmentStatus] = None,
        assessment_type: Optional[AssessmentType] = None,
    ) -> Iterable[OasisAssessment]:
        for assessment in self._store.values():
            if patient_id is not None and assessment.patient_id != patient_id:
                continue
            if episode_id is not None and assessment.episode_id != episode_id:
                continue
            if clinician_id is not None and assessment.clinician_id != clinician_id:
                continue
            if status is not None and assessment.status != status:
                continue
            if assessment_type is not None and assessment.assessment_type != assessment_type:
                continue
            yield assessment

    def save(self, assessment: OasisAssessment, *, expected_version: Optional[int] = None) -> OasisAssessment:
        return self._store.save(assessment, expected_version)

    def clear(self) -> None:
        self._store.clear()


class InMemoryVisitNoteRepository(VisitNoteRepository):
    def __init__(self) -> None:
        self._store: _VersionedStore[VisitNote] = _VersionedStore("VISIT_NOTE", unique_field="task_id")

    def get(self, note_id: UUID) -> Optional[VisitNote]:
        return self._store.get(note_id)

    def get_by_task(self, task_id: UUID) -> Optional[VisitNote]:
        for note in self._store.values():
            if note.task_id == task_id:
                return note
        return None

    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        episode_id: Optional[str] = None,
        clinician_id: Optional[str] = None,
        status: Optional[VisitNoteStatus] = None,
    ) -> Iterable[VisitNote]:
        for note in self._store.values():
            if patient_id is not None and note.patient_id != patient_id:
                continue
            if episode_id is not None and note.episode_id != episode_id:
                continue
            if clinician_id is not None and note.clinician_id != clinician_id:
                continue
            if status is not None and note.status != status:
                continue
            yield note

    def save(self, note: VisitNote, *, expected_version: Optional[int] = None) -> VisitNote:
        return self._store.save(note, expected_version)

    def clear(self) -> None:
        self._store.clear()


task_repository: TaskRepository = InMemoryTaskRepository()
oasis_assessment_repository: OasisAssessmentRepository = InMemoryOasisAssessmentRepository()
visit_note_repository: VisitNoteRepository = InMemoryVisitNoteRepository()
