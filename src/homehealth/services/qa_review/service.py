from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

from pydantic import BaseModel, Field

from src.homehealth.domain.errors import NotFoundError, PermissionDeniedError, ValidationError
from src.homehealth.domain.models.oasis_assessment import (
    AssessmentStatus,
    AssessmentType,
    OasisAssessment,
    ReviewAction,
)
from src.homehealth.domain.models.reviewable import EntityKind
from src.homehealth.domain.models.task import Task, TaskStatus, TaskType
from src.homehealth.domain.models.user import User
from src.homehealth.domain.models.visit_note import VisitNote, VisitNoteStatus
from src.homehealth.services.assessments.service import OasisAssessmentService, oasis_assessment_service
from src.homehealth.services.tasks.service import TaskWorkflowService, task_service
from src.homehealth.services.visit_notes.service import VisitNoteService, visit_note_service

logger = logging.getLogger("workflow")

ReviewableItem = Union[Task, OasisAssessment, VisitNote]


class Decision(str, Enum):
    APPROVE = "APPROVE"
    RETURN = "RETURN"


class ReviewItem(BaseModel):
    kind: EntityKind
    item: ReviewableItem
    submitted_at: Optional[datetime] = None


class PendingReviews(BaseModel):
    """Unified QA worklist.

    ``failed_sources`` lists the entity kinds whose pending list could not be
    fetched; their sub-list is empty and ``warning`` describes the failure
    once for all of them.
    """

    items: List[ReviewItem] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    assessments: List[OasisAssessment] = Field(default_factory=list)
    visit_notes: List[VisitNote] = Field(default_factory=list)
    failed_sources: List[EntityKind] = Field(default_factory=list)
    warning: Optional[str] = None


class ReviewDecision(BaseModel):
    kind: EntityKind
    id: UUID
    action: Decision
    comments: Optional[str] = None


class TaskClosure(BaseModel):
    """Advisory view of whether a visit and its documentation are all final."""

    task_id: UUID
    task_status: TaskStatus
    visit_note_id: Optional[UUID] = None
    visit_note_status: Optional[VisitNoteStatus] = None
    assessment_required: bool = False
    assessment_id: Optional[UUID] = None
    assessment_status: Optional[AssessmentStatus] = None
    is_closed: bool = False
    outstanding: List[str] = Field(default_factory=list)


_FINAL_ASSESSMENT_STATUSES = frozenset({AssessmentStatus.APPROVED, AssessmentStatus.LOCKED})
_ASSESSMENT_TYPES_BY_TASK = {
    TaskType.OASIS_ASSESSMENT: frozenset({AssessmentType.SOC, AssessmentType.ROC, AssessmentType.FOLLOW_UP}),
    TaskType.OASIS_RECERT: frozenset({AssessmentType.RECERT}),
    TaskType.OASIS_DISCHARGE: frozenset({AssessmentType.DISCHARGE, AssessmentType.TRANSFER, AssessmentType.DEATH}),
}
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class QAReviewCoordinator:
    """Single entry point for reviewers across tasks, assessments and notes.

    The three state machines stay independent; the coordinator only reads
    their pending lists and routes decisions to the owning service.
    """

    def __init__(
        self,
        *,
        tasks: Optional[TaskWorkflowService] = None,
        assessments: Optional[OasisAssessmentService] = None,
        visit_notes: Optional[VisitNoteService] = None,
    ) -> None:
        self._tasks = tasks or task_service
        self._assessments = assessments or oasis_assessment_service
        self._visit_notes = visit_notes or visit_note_service

    def load_pending_reviews(self, actor: User) -> PendingReviews:
        sources: Sequence[Tuple[EntityKind, Callable[[User], list]]] = (
            (EntityKind.TASK, self._tasks.list_pending_review),
            (EntityKind.ASSESSMENT, self._assessments.list_pending_review),
            (EntityKind.VISIT_NOTE, self._visit_notes.list_pending_review),
        )

        fetched: Dict[EntityKind, list] = {}
        failures: Dict[EntityKind, Exception] = {}
        for kind, fetch in sources:
            try:
                fetched[kind] = list(fetch(actor))
            except Exception as exc:  # each source is isolated; reported below
                fetched[kind] = []
                failures[kind] = exc

        items = [
            ReviewItem(kind=kind, item=entity, submitted_at=entity.submitted_at)
            for kind, _ in sources
            for entity in fetched[kind]
        ]
        items.sort(key=lambda item: (item.submitted_at is None, item.submitted_at or _EPOCH))

        warning = _summarize_failures(failures)
        if warning:
            logger.warning("Partial QA worklist for %s: %s", actor.id, warning)

        return PendingReviews(
            items=items,
            tasks=fetched[EntityKind.TASK],
            assessments=fetched[EntityKind.ASSESSMENT],
            visit_notes=fetched[EntityKind.VISIT_NOTE],
            failed_sources=list(failures),
            warning=warning,
        )

    def submit_review(self, actor: User, decision: ReviewDecision) -> ReviewableItem:
        approve = decision.action == Decision.APPROVE
        if decision.kind == EntityKind.TASK:
            if approve:
                return self._tasks.approve_qa(actor, decision.id, decision.comments)
            return self._tasks.return_for_correction(actor, decision.id, decision.comments or "")
        if decision.kind == EntityKind.ASSESSMENT:
            action = ReviewAction.APPROVE if approve else ReviewAction.REJECT
            return self._assessments.review(actor, decision.id, action, decision.comments)
        if decision.kind == EntityKind.VISIT_NOTE:
            if approve:
                return self._visit_notes.approve(actor, decision.id, decision.comments)
            return self._visit_notes.return_for_correction(actor, decision.id, decision.comments or "")
        raise ValidationError(f"Unsupported review kind {decision.kind}", field="kind")

    def closure_status(self, actor: User, task_id: UUID) -> TaskClosure:
        """Report whether a task, its note and (for OASIS visits) its assessment are final.

        Read-only; nothing here blocks or cascades transitions.
        """

        task = self._tasks.get_task(actor, task_id)
        closure = TaskClosure(task_id=task.id, task_status=task.status)
        if task.status != TaskStatus.QA_APPROVED:
            closure.outstanding.append(f"task is {task.status.value}")

        try:
            note = self._visit_notes.get_by_task(actor, task.id)
        except NotFoundError:
            note = None
        if note is None:
            closure.outstanding.append("visit note missing")
        else:
            closure.visit_note_id = note.id
            closure.visit_note_status = note.status
            if note.status != VisitNoteStatus.APPROVED:
                closure.outstanding.append(f"visit note is {note.status.value}")

        if task.task_type.is_oasis:
            closure.assessment_required = True
            assessment = self._find_assessment(actor, task)
            if assessment is None:
                closure.outstanding.append("assessment missing")
            else:
                closure.assessment_id = assessment.id
                closure.assessment_status = assessment.status
                if assessment.status not in _FINAL_ASSESSMENT_STATUSES:
                    closure.outstanding.append(f"assessment is {assessment.status.value}")

        closure.is_closed = not closure.outstanding
        return closure

    def _find_assessment(self, actor: User, task: Task) -> Optional[OasisAssessment]:
        # Tasks and assessments are only correlated by patient and episode;
        # prefer the most advanced assessment of the matching type.
        wanted = _ASSESSMENT_TYPES_BY_TASK.get(task.task_type)
        candidates = [
            assessment
            for assessment in self._assessments.list_by_episode(actor, task.episode_id)
            if assessment.patient_id == task.patient_id
            and (wanted is None or assessment.assessment_type in wanted)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda a: (a.status in _FINAL_ASSESSMENT_STATUSES, a.updated_at))


def _summarize_failures(failures: Dict[EntityKind, Exception]) -> Optional[str]:
    if not failures:
        return None
    denied = [kind.value for kind, exc in failures.items() if isinstance(exc, PermissionDeniedError)]
    other = [kind.value for kind, exc in failures.items() if not isinstance(exc, PermissionDeniedError)]
    parts = []
    if denied:
        parts.append(f"no permission to review {', '.join(denied)}")
    if other:
        parts.append(f"could not load {', '.join(other)}")
    return "; ".join(parts)
