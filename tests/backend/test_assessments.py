from datetime import date

import pytest

from src.homehealth.config import Settings
from src.homehealth.domain.errors import InvalidStateError, PermissionDeniedError, ValidationError
from src.homehealth.domain.models.oasis_assessment import AssessmentStatus, AssessmentType, ReviewAction
from src.homehealth.services.assessments.service import OasisAssessmentService, calculate_completion_percentage


def _draft(assessments, nurse, **overrides):
    fields = dict(
        patient_id="pat-1",
        episode_id="ep-1",
        assessment_type=AssessmentType.SOC,
        assessment_date=date(2024, 1, 15),
    )
    fields.update(overrides)
    return assessments.create_assessment(nurse, **fields)


def _submitted(assessments, nurse):
    draft = _draft(assessments, nurse)
    assessments.auto_save(nurse, draft.id, {"M1800": "00"}, completion_percentage=100)
    return assessments.submit(nurse, draft.id)


def test_create_defaults_to_draft_owned_by_creator(assessments, nurse):
    draft = _draft(assessments, nurse)
    assert draft.status == AssessmentStatus.DRAFT
    assert draft.clinician_id == "rn-1"
    assert draft.completion_percentage == 0


def test_auto_save_merges_payload(assessments, nurse, clock):
    draft = _draft(assessments, nurse, payload={"M0010": "123"})
    clock.advance(seconds=30)
    saved = assessments.auto_save(nurse, draft.id, {"M1800": "01"}, completion_percentage=40)
    assert saved.status == AssessmentStatus.DRAFT
    assert saved.payload == {"M0010": "123", "M1800": "01"}
    assert saved.completion_percentage == 40
    assert saved.last_auto_saved == clock.now()
    # Auto-saves do not add status history entries.
    assert [entry.action for entry in saved.history] == ["create"]


def test_auto_save_computes_completion_when_not_given(clock, nurse):
    assessments = OasisAssessmentService(clock=clock, config=Settings(oasis_total_fields=4))
    draft = _draft(assessments, nurse)
    saved = assessments.auto_save(nurse, draft.id, {"A": 1, "B": "x", "C": ""})
    assert saved.completion_percentage == 50


def test_auto_save_outside_draft_is_rejected(assessments, nurse):
    submitted = _submitted(assessments, nurse)
    with pytest.raises(InvalidStateError):
        assessments.auto_save(nurse, submitted.id, {"M1800": "02"})


def test_submit_blocks_partial_assessment(assessments, nurse):
    draft = _draft(assessments, nurse)
    assessments.auto_save(nurse, draft.id, {"M1800": "00"}, completion_percentage=80)
    with pytest.raises(ValidationError):
        assessments.submit(nurse, draft.id)
    assert assessments.get_assessment(nurse, draft.id).status == AssessmentStatus.DRAFT


def test_submit_threshold_is_configurable(clock, nurse):
    assessments = OasisAssessmentService(clock=clock, config=Settings(oasis_min_completion_to_submit=0))
    draft = _draft(assessments, nurse)
    assert assessments.submit(nurse, draft.id).status == AssessmentStatus.SUBMITTED


def test_review_approve_and_lock(assessments, nurse, qa_nurse):
    submitted = _submitted(assessments, nurse)
    approved = assessments.review(qa_nurse, submitted.id, ReviewAction.APPROVE)
    assert approved.status == AssessmentStatus.APPROVED
    assert approved.reviewed_by == "qa-1"

    locked = assessments.lock(qa_nurse, submitted.id)
    assert locked.status == AssessmentStatus.LOCKED
    assert locked.locked_by == "qa-1"
    with pytest.raises(InvalidStateError):
        assessments.lock(qa_nurse, submitted.id)
    with pytest.raises(InvalidStateError):
        assessments.auto_save(nurse, submitted.id, {"M1800": "03"})


def test_reject_requires_comments(assessments, nurse, qa_nurse):
    submitted = _submitted(assessments, nurse)
    with pytest.raises(ValidationError):
        assessments.review(qa_nurse, submitted.id, ReviewAction.REJECT, "")
    assert assessments.get_assessment(qa_nurse, submitted.id).status == AssessmentStatus.SUBMITTED


def test_reject_back_to_draft_resubmit(assessments, nurse, qa_nurse):
    submitted = _submitted(assessments, nurse)
    rejected = assessments.review(qa_nurse, submitted.id, ReviewAction.REJECT, "fix vitals")
    assert rejected.status == AssessmentStatus.REJECTED
    assert [a.id for a in assessments.my_rejected(nurse)] == [submitted.id]

    draft = assessments.back_to_draft(nurse, submitted.id)
    assert draft.status == AssessmentStatus.DRAFT
    assert draft.reviewed_by is None
    assert draft.review_comments is None
    assert any(entry.reason == "fix vitals" for entry in draft.history)

    resubmitted = assessments.submit(nurse, submitted.id)
    assert resubmitted.status == AssessmentStatus.SUBMITTED


def test_only_reviewers_review(assessments, nurse):
    submitted = _submitted(assessments, nurse)
    with pytest.raises(PermissionDeniedError):
        assessments.review(nurse, submitted.id, ReviewAction.APPROVE)
    with pytest.raises(PermissionDeniedError):
        assessments.lock(nurse, submitted.id)
    assert assessments.get_assessment(nurse, submitted.id).status == AssessmentStatus.SUBMITTED


def test_queries(assessments, nurse, qa_nurse):
    first = _draft(assessments, nurse)
    second = _draft(assessments, nurse, episode_id="ep-2", assessment_date=date(2024, 3, 1))
    pending = _submitted(assessments, nurse)

    assert {a.id for a in assessments.list_by_patient(nurse, "pat-1")} == {first.id, second.id, pending.id}
    assert [a.id for a in assessments.list_by_episode(nurse, "ep-2")] == [second.id]
    assert {a.id for a in assessments.incomplete(nurse)} == {first.id, second.id}
    assert [a.id for a in assessments.list_pending_review(qa_nurse)] == [pending.id]


def test_calculate_completion_percentage():
    assert calculate_completion_percentage({}, 300) == 0
    assert calculate_completion_percentage({"a": 1, "b": None}, 4) == 25
    assert calculate_completion_percentage({"a": 1, "b": 2}, 4, skipped=["c", "d"]) == 100
    assert calculate_completion_percentage({}, 2, skipped=["a", "b"]) == 100
