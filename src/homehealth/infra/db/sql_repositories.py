from __future__ import annotations

from datetime import date
from typing import Any, Generic, Iterable, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from src.homehealth.domain.errors import ConcurrentModificationError, ValidationError
from src.homehealth.domain.models.oasis_assessment import AssessmentStatus, AssessmentType, OasisAssessment
from src.homehealth.domain.models.task import Task, TaskStatus
from src.homehealth.domain.models.visit_note import VisitNote, VisitNoteStatus
from src.homehealth.infra.db.models import OasisAssessmentORM, TaskORM, VisitNoteORM
from src.homehealth.infra.db.repositories import (
    OasisAssessmentRepository,
    TaskRepository,
    VisitNoteRepository,
)
from src.homehealth.infra.db.session import SessionFactory

M = TypeVar("M", bound=BaseModel)


class _SqlVersionedRepository(Generic[M]):
    """Shared get/save for SQL repositories with optimistic version checks.

    Updates are issued as ``UPDATE ... WHERE id = :id AND version = :expected``
    so of two writers that loaded the same version only one commits.
    """

    orm_class: Type[Any]
    entity_kind: str
    unique_field: Optional[str] = None

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def _get(self, item_id: UUID) -> Optional[M]:
        with self._session_factory() as session:
            orm = session.get(self.orm_class, item_id)
            return orm.to_domain() if orm is not None else None

    def _list(self, *criteria: Any) -> Iterable[M]:
        query = select(self.orm_class)
        if criteria:
            query = query.where(*criteria)
        with self._session_factory() as session:
            return [row.to_domain() for row in session.scalars(query).all()]

    def _save(self, entity: M, expected_version: Optional[int]) -> M:
        values = self.orm_class.column_values(entity)
        with self._session_factory() as session:
            try:
                if expected_version is None:
                    values["version"] = 1
                    session.add(self.orm_class(**values))
                else:
                    values["version"] = expected_version + 1
                    result = session.execute(
                        update(self.orm_class)
                        .where(self.orm_class.id == entity.id, self.orm_class.version == expected_version)  # type: ignore[attr-defined]
                        .values(**values)
                    )
                    if result.rowcount != 1:
                        session.rollback()
                        current = session.get(self.orm_class, entity.id)  # type: ignore[attr-defined]
                        raise ConcurrentModificationError(
                            entity_kind=self.entity_kind,
                            entity_id=entity.id,  # type: ignore[attr-defined]
                            expected_version=expected_version,
                            actual_version=current.version if current is not None else None,
                        )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if self.unique_field is None:
                    raise
                raise ValidationError(
                    f"{self.unique_field} {getattr(entity, self.unique_field)} is already used by another "
                    f"{self.entity_kind}",
                    field=self.unique_field,
                ) from exc
        return entity.model_copy(update={"version": values["version"]})


class SqlTaskRepository(_SqlVersionedRepository[Task], TaskRepository):
    orm_class = TaskORM
    entity_kind = "TASK"

    def get(self, task_id: UUID) -> Optional[Task]:
        return self._get(task_id)

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
        criteria = []
        if patient_id is not None:
            criteria.append(TaskORM.patient_id == patient_id)
        if episode_id is not None:
            criteria.append(TaskORM.episode_id == episode_id)
        if assigned_to_id is not None:
            criteria.append(TaskORM.assigned_to_id == assigned_to_id)
        if status is not None:
            criteria.append(TaskORM.status == status.value)
        if scheduled_from is not None:
            criteria.append(TaskORM.scheduled_date >= scheduled_from)
        if scheduled_to is not None:
            criteria.append(TaskORM.scheduled_date <= scheduled_to)
        return self._list(*criteria)

    def save(self, task: Task, *, expected_version: Optional[int] = None) -> Task:
        return self._save(task, expected_version)


class SqlOasisAssessmentRepository(_SqlVersionedRepository[OasisAssessment], OasisAssessmentRepository):
    orm_class = OasisAssessmentORM
    entity_kind = "ASSESSMENT"

    def get(self, assessment_id: UUID) -> Optional[OasisAssessment]:
        return self._get(assessment_id)

    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        episode_id: Optional[str] = None,
        clinician_id: Optional[str] = None,
        status: Optional[AssessmentStatus] = None,
        assessment_type: Optional[AssessmentType] = None,
    ) -> Iterable[OasisAssessment]:
        criteria = []
        if patient_id is not None:
            criteria.append(OasisAssessmentORM.patient_id == patient_id)
        if episode_id is not None:
            criteria.append(OasisAssessmentORM.episode_id == episode_id)
        if clinician_id is not None:
            criteria.append(OasisAssessmentORM.clinician_id == clinician_id)
        if status is not None:
            criteria.append(OasisAssessmentORM.status == status.value)
        if assessment_type is not None:
            criteria.append(OasisAssessmentORM.assessment_type == assessment_type.value)
        return self._list(*criteria)

    def save(self, assessment: OasisAssessment, *, expected_version: Optional[int] = None) -> OasisAssessment:
        return self._save(assessment, expected_version)


class SqlVisitNoteRepository(_SqlVersionedRepository[VisitNote], VisitNoteRepository):
    orm_class = VisitNoteORM
    entity_kind = "VISIT_NOTE"
    unique_field = "task_id"

    def get(self, note_id: UUID) -> Optional[VisitNote]:
        return self._get(note_id)

    def get_by_task(self, task_id: UUID) -> Optional[VisitNote]:
        notes = list(self._list(VisitNoteORM.task_id == task_id))
        return notes[0] if notes else None

    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        episode_id: Optional[str] = None,
        clinician_id: Optional[str] = None,
        status: Optional[VisitNoteStatus] = None,
    ) -> Iterable[VisitNote]:
        criteria = []
        if patient_id is not None:
            criteria.append(VisitNoteORM.patient_id == patient_id)
        if episode_id is not None:
            criteria.append(VisitNoteORM.episode_id == episode_id)
        if clinician_id is not None:
            criteria.append(VisitNoteORM.clinician_id == clinician_id)
        if status is not None:
            criteria.append(VisitNoteORM.status == status.value)
        return self._list(*criteria)

    def save(self, note: VisitNote, *, expected_version: Optional[int] = None) -> VisitNote:
        return self._save(note, expected_version)

