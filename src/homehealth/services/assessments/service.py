from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from uuid import UUID, uuid4

from src.homehealth.clock import Clock, system_clock
from src.homehealth.config import Settings, settings
from src.homehealth.domain.errors import NotFoundError, ValidationError, require_text
from src.homehealth.domain.models.oasis_assessment import (
    AssessmentStatus,
    AssessmentType,
    OasisAssessment,
    ReviewAction,
)
from src.homehealth.domain.models.reviewable import (
    EntityKind,
    StatusChange,
    clear_review,
    mark_reviewed,
    mark_submitted,
)
from src.homehealth.domain.models.user import User
from src.homehealth.domain.workflow.permissions import Action, PermissionGate, permission_gate
from src.homehealth.domain.workflow.transitions import ASSESSMENT_TRANSITIONS, resolve_transition
from src.homehealth.infra.db import inmemory as inmemory_repos
from src.homehealth.infra.db.repositories import OasisAssessmentRepository
from src.homehealth.services.audit.service import AuditService, audit_service

KIND = EntityKind.ASSESSMENT

Mutation = Callable[[OasisAssessment, datetime], None]


def calculate_completion_percentage(
    payload: Mapping[str, Any],
    total_fields: int,
    skipped: Iterable[str] = (),
) -> int:
    """Percentage of answerable OASIS items that carry a value.

    Items skipped by the form's skip logic do not count against completion.
    Empty strings, ``None`` and empty lists are unanswered.
    """

    skipped = set(skipped)
    answerable = total_fields - len(skipped)
    if answerable <= 0:
        return 100
    filled = sum(1 for key, value in payload.items() if key not in skipped and value not in (None, "", [], {}))
    return min(100, round(filled * 100 / answerable))


class OasisAssessmentService:
    """Draft / submit / review / lock lifecycle of OASIS assessments."""

    def __init__(
        self,
        *,
        repository: Optional[OasisAssessmentRepository] = None,
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
    def repository(self) -> OasisAssessmentRepository:
        return self._repository or inmemory_repos.oasis_assessment_repository

    def create_assessment(
        self,
        actor: User,
        *,
        patient_id: str,
        episode_id: str,
        assessment_type: AssessmentType,
        assessment_date: date,
        clinician_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> OasisAssessment:
        self._gate.require(actor, Action.CREATE, KIND)
        require_text(patient_id, field="patient_id")
        require_text(episode_id, field="episode_id")

        now = self._clock.now()
        assessment = OasisAssessment(
            id=uuid4(),
            created_at=now,
            updated_at=now,
            created_by=actor.id,
            patient_id=patient_id,
            episode_id=episode_id,
            clinician_id=clinician_id or actor.id,
            assessment_type=assessment_type,
            assessment_date=assessment_date,
            status=AssessmentStatus.DRAFT,
            payload=dict(payload or {}),
            history=[
                StatusChange(action="create", to_status=AssessmentStatus.DRAFT.value, actor_id=actor.id, at=now)
            ],
        )
        saved = self.repository.save(assessment)
        self._log(actor, "create", saved, from_status=None)
        return saved

    def auto_save(
        self,
        actor: User,
        assessment_id: UUID,
        payload: Mapping[str, Any],
        completion_percentage: Optional[int] = None,
    ) -> OasisAssessment:
        """Merge ``payload`` into a DRAFT assessment.

        Non-DRAFT assessments reject the call with InvalidStateError so that a
        stale client notices it is editing submitted work.
        """

        self._gate.require(actor, Action.UPDATE, KIND)
        if completion_percentage is not None and not 0 <= completion_percentage <= 100:
            raise ValidationError("completion_percentage must be between 0 and 100", field="completion_percentage")

        def mutate(assessment: OasisAssessment, now: datetime) -> None:
            assessment.payload.update(payload)
            assessment.last_auto_saved = now
            if completion_percentage is not None:
                assessment.completion_percentage = completion_percentage
            else:
                assessment.completion_percentage = calculate_completion_percentage(
                    assessment.payload, self._settings.oasis_total_fields
                )

        return self._apply(
            actor, assessment_id, "auto_save", mutate, details={"fields": len(payload)}, record_history=False
        )

    def submit(self, actor: User, assessment_id: UUID) -> OasisAssessment:
        self._gate.require(actor, Action.SUBMIT_FOR_QA, KIND)
        threshold = self._settings.oasis_min_completion_to_submit

        def mutate(assessment: OasisAssessment, now: datetime) -> None:
            if assessment.completion_percentage < threshold:
                raise ValidationError(
                    f"Assessment is {assessment.completion_percentage}% complete; "
                    f"{threshold}% is required to submit",
                    field="completion_percentage",
                )
            mark_submitted(assessment, actor_id=actor.id, now=now)

        return self._apply(actor, assessment_id, "submit", mutate)

    def review(
        self,
        actor: User,
        assessment_id: UUID,
        action: ReviewAction,
        comments: Optional[str] = None,
    ) -> OasisAssessment:
        if action == ReviewAction.APPROVE:
            self._gate.require(actor, Action.APPROVE, KIND)
            comments = comments.strip() if comments and comments.strip() else None
            operation = "approve"
        else:
            self._gate.require(actor, Action.RETURN, KIND)
            comments = require_text(comments, field="comments")
            operation = "reject"

        def mutate(assessment: OasisAssessment, now: datetime) -> None:
            mark_reviewed(assessment, actor_id=actor.id, now=now, comments=comments)

        return self._apply(actor, assessment_id, operation, mutate, reason=comments)

    def back_to_draft(self, actor: User, assessment_id: UUID) -> OasisAssessment:
        self._gate.require(actor, Action.UPDATE, KIND)

        def mutate(assessment: OasisAssessment, now: datetime) -> None:
            clear_review(assessment)

        return self._apply(actor, assessment_id, "back_to_draft", mutate)

    def lock(self, actor: User, assessment_id: UUID) -> OasisAssessment:
        self._gate.require(actor, Action.LOCK, KIND)

        def mutate(assessment: OasisAssessment, now: datetime) -> None:
            assessment.locked_by = actor.id
            assessment.locked_at = now

        return self._apply(actor, assessment_id, "lock", mutate)

    # Queries

    def get_assessment(self, actor: User, assessment_id: UUID) -> OasisAssessment:
        self._gate.require(actor, Action.READ, KIND)
        return self._load(assessment_id)

    def list_by_patient(self, actor: User, patient_id: str) -> List[OasisAssessment]:
        self._gate.require(actor, Action.READ, KIND)
        return _by_date(self.repository.list_by_filters(patient_id=patient_id))

    def list_by_episode(self, actor: User, episode_id: str) -> List[OasisAssessment]:
        self._gate.require(actor, Action.READ, KIND)
        return _by_date(self.repository.list_by_filters(episode_id=episode_id))

    def incomplete(self, actor: User) -> List[OasisAssessment]:
        self._gate.require(actor, Action.READ, KIND)
        return _by_date(self.repository.list_by_filters(status=AssessmentStatus.DRAFT))

    def my_rejected(self, actor: User) -> List[OasisAssessment]:
        self._gate.require(actor, Action.READ, KIND)
        return _by_date(self.repository.list_by_filters(clinician_id=actor.id, status=AssessmentStatus.REJECTED))

    def list_pending_review(self, actor: User) -> List[OasisAssessment]:
        self._gate.require(actor, Action.APPROVE, KIND)
        return sorted(self.repository.find_pending(), key=lambda a: a.submitted_at or a.updated_at)

    # Internals

    def _load(self, assessment_id: UUID) -> OasisAssessment:
        assessment = self.repository.get(assessment_id)
        if assessment is None:
            raise NotFoundError(entity_kind=KIND.value, entity_id=assessment_id)
        return assessment

    def _apply(
        self,
        actor: User,
        assessment_id: UUID,
        operation: str,
        mutate: Mutation,
        *,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        record_history: bool = True,
    ) -> OasisAssessment:
        assessment = self._load(assessment_id)
        from_status = assessment.status
        target = resolve_transition(
            ASSESSMENT_TRANSITIONS, operation, from_status, entity_kind=KIND.value, entity_id=assessment.id
        )

        now = self._clock.now()
        mutate(assessment, now)
        assessment.status = target
        assessment.updated_at = now
        # Auto-saves fire every few seconds from the form; they are audited
        # but kept out of the status history.
        if record_history:
            assessment.history.append(
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
        saved = self.repository.save(assessment, expected_version=assessment.version)
        self._log(actor, operation, saved, from_status=from_status)
        return saved

    def _log(
        self,
        actor: User,
        operation: str,
        assessment: OasisAssessment,
        *,
        from_status: Optional[AssessmentStatus],
    ) -> None:
        self._audit.log_event(
            action=operation,
            resource_type=KIND.value,
            resource_id=str(assessment.id),
            subject=actor.id,
            at=assessment.updated_at,
            extra={
                "from_status": from_status.value if from_status else None,
                "to_status": assessment.status.value,
                "completion_percentage": assessment.completion_percentage,
                "version": assessment.version,
            },
        )


def _by_date(assessments: Iterable[OasisAssessment]) -> List[OasisAssessment]:
    return sorted(assessments, key=lambda a: (a.assessment_date, a.created_at), reverse=True)


oasis_assessment_service = OasisAssessmentService()
