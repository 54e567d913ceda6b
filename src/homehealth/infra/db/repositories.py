from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable, List, Optional
from uuid import UUID

from src.homehealth.domain.models.oasis_assessment import AssessmentStatus, AssessmentType, OasisAssessment
from src.homehealth.domain.models.task import Task, TaskStatus
from src.homehealth.domain.models.visit_note import VisitNote, VisitNoteStatus


class TaskRepository(ABC):
    @abstractmethod
    def get(self, task_id: UUID) -> Optional[Task]:
        raise NotImplementedError

    @abstractmethod
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
        raise NotImplementedError

    @abstractmethod
    def save(self, task: Task, *, expected_version: Optional[int] = None) -> Task:
        """Insert (``expected_version=None``) or update a task.

        Updates must name the version that was loaded; a mismatch raises
        ConcurrentModificationError and nothing is written. Returns the
        stored copy with its version bumped.
        """

        raise NotImplementedError

    def find_pending(self) -> List[Task]:
        return list(self.list_by_filters(status=TaskStatus.COMPLETED_PENDING_QA))


class OasisAssessmentRepository(ABC):
    @abstractmethod
    def get(self, assessment_id: UUID) -> Optional[OasisAssessment]:
        raise NotImplementedError

    @abstractmethod
    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        episode_id: Optional[str] = None,
        clinician_id: Optional[str] = None,
        status: Optional[AssessmentStatus] = None,
        assessment_type: Optional[AssessmentType] = None,
    ) -> Iterable[OasisAssessment]:
        raise NotImplementedError

    @abstractmethod
    def save(self, assessment: OasisAssessment, *, expected_version: Optional[int] = None) -> OasisAssessment:
        raise NotImplementedError

    def find_pending(self) -> List[OasisAssessment]:
        return list(self.list_by_filters(status=AssessmentStatus.SUBMITTED))


class VisitNoteRepository(ABC):
    @abstractmethod
    def get(self, note_id: UUID) -> Optional[VisitNote]:
        raise NotImplementedError

    @abstractmethod
    def get_by_task(self, task_id: UUID) -> Optional[VisitNote]:
        raise NotImplementedError

    @abstractmethod
    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        episode_id: Optional[str] = None,
        clinician_id: Optional[str] = None,
        status: Optional[VisitNoteStatus] = None,
    ) -> Iterable[VisitNote]:
        raise NotImplementedError

    @abstractmethod
    def save(self, note: VisitNote, *, expected_version: Optional[int] = None) -> VisitNote:
        raise NotImplementedError

    def find_pending(self) -> List[VisitNote]:
        return list(self.list_by_filters(status=VisitNoteStatus.SUBMITTED))
