import logging
from datetime import date

import pytest

from src.homehealth.domain.errors import ValidationError
from src.homehealth.domain.models.oasis_assessment import AssessmentStatus, AssessmentType, ReviewAction
from src.homehealth.domain.models.reviewable import EntityKind
from src.homehealth.domain.models.task import TaskStatus, TaskType
from src.homehealth.domain.models.user import User
from src.homehealth.domain.models.visit_note import VisitNoteStatus
from src.homehealth.services.qa_review.service import Decision, ReviewDecision


@pytest.fixture
def worklist(tasks, assessments, visit_notes, scheduler, nurse, clock):
    """One pending item of each kind, submitted a minute apart."""

    task = tasks.create_task(
        scheduler,
        patient_id="pat-1",
        episode_id="ep-1",
        task_type=TaskType.OASIS_ASSESSMENT,
        scheduled_date=date(2024, 1, 15),
        assigned_to_id="rn-1",
    )
    note = visit_notes.create_visit_note(nurse, patient_id="pat-1", episode_id="ep-1", task_id=task.id)
    assessment = assessments.create_assessment(
        nurse,
        patient_id="pat-1",
        episode_id="ep-1",
        assessment_type=AssessmentType.SOC,
        assessment_date=date(2024, 1, 15),
    )
    assessments.auto_save(nurse, assessment.id, {"M1800": "00"}, completion_percentage=100)

    clock.advance(minutes=1)
    assessments.submit(nurse, assessment.id)
    clock.advance(minutes=1)
    tasks.complete(nurse, task.id)
    clock.advance(minutes=1)
    visit_notes.submit(nurse, note.id)
    return {"task": task, "note": note, "assessment": assessment}


def test_load_pending_reviews_merges_all_kinds(coordinator, qa_nurse, worklist):
    pending = coordinator.load_pending_reviews(qa_nurse)

    assert pending.warning is None
    assert pending.failed_sources == []
    assert [item.kind for item in pending.items] == [EntityKind.ASSESSMENT, EntityKind.TASK, EntityKind.VISIT_NOTE]
    assert [t.id for t in pending.tasks] == [worklist["task"].id]
    assert [a.id for a in pending.assessments] == [worklist["assessment"].id]
    assert [n.id for n in pending.visit_notes] == [worklist["note"].id]


def test_one_forbidden_source_yields_single_warning(coordinator, worklist, caplog):
    # May review tasks and visit notes, but not OASIS.
    reviewer = User(id="qa-2", permissions=frozenset({"TASK_APPROVE", "VISIT_APPROVE"}))

    with caplog.at_level(logging.WARNING, logger="workflow"):
        pending = coordinator.load_pending_reviews(reviewer)

    assert pending.assessments == []
    assert [t.id for t in pending.tasks] == [worklist["task"].id]
    assert [n.id for n in pending.visit_notes] == [worklist["note"].id]
    assert pending.failed_sources == [EntityKind.ASSESSMENT]
    assert "ASSESSMENT" in pending.warning
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1


def test_all_sources_failing_still_reports_once(coordinator, nurse, worklist, caplog):
    with caplog.at_level(logging.WARNING, logger="workflow"):
        pending = coordinator.load_pending_reviews(nurse)

    assert pending.items == []
    assert len(pending.failed_sources) == 3
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 1


def test_failing_repository_is_isolated(tasks, assessments, visit_notes, qa_nurse, worklist):
    from src.homehealth.services.qa_review.service import QAReviewCoordinator

    class BrokenRepository:
        def find_pending(self):
            raise ConnectionError("database unavailable")

    broken_notes = type(visit_notes)(repository=BrokenRepository())
    coordinator = QAReviewCoordinator(tasks=tasks, assessments=assessments, visit_notes=broken_notes)

    pending = coordinator.load_pending_reviews(qa_nurse)
    assert pending.visit_notes == []
    assert len(pending.tasks) == 1
    assert len(pending.assessments) == 1
    assert pending.failed_sources == [EntityKind.VISIT_NOTE]
    assert "could not load VISIT_NOTE" in pending.warning


def test_submit_review_routes_by_kind(coordinator, qa_nurse, worklist):
    task = coordinator.submit_review(
        qa_nurse, ReviewDecision(kind=EntityKind.TASK, id=worklist["task"].id, action=Decision.APPROVE)
    )
    assert task.status == TaskStatus.QA_APPROVED

    assessment = coordinator.submit_review(
        qa_nurse,
        ReviewDecision(
            kind=EntityKind.ASSESSMENT,
            id=worklist["assessment"].id,
            action=Decision.RETURN,
            comments="fix vitals",
        ),
    )
    assert assessment.status == AssessmentStatus.REJECTED

    note = coordinator.submit_review(
        qa_nurse,
        ReviewDecision(kind=EntityKind.VISIT_NOTE, id=worklist["note"].id, action=Decision.RETURN, comments="sign"),
    )
    assert note.status == VisitNoteStatus.RETURNED

    assert coordinator.load_pending_reviews(qa_nurse).items == []


def test_return_without_comments_is_rejected(coordinator, qa_nurse, worklist):
    with pytest.raises(ValidationError):
        coordinator.submit_review(
            qa_nurse, ReviewDecision(kind=EntityKind.TASK, id=worklist["task"].id, action=Decision.RETURN)
        )


def test_closure_status_tracks_all_three_entities(coordinator, assessments, qa_nurse, worklist):
    closure = coordinator.closure_status(qa_nurse, worklist["task"].id)
    assert closure.assessment_required is True
    assert closure.is_closed is False
    assert len(closure.outstanding) == 3

    for kind, key in ((EntityKind.TASK, "task"), (EntityKind.VISIT_NOTE, "note")):
        coordinator.submit_review(qa_nurse, ReviewDecision(kind=kind, id=worklist[key].id, action=Decision.APPROVE))
    partial = coordinator.closure_status(qa_nurse, worklist["task"].id)
    assert partial.outstanding == ["assessment is SUBMITTED"]

    assessments.review(qa_nurse, worklist["assessment"].id, ReviewAction.APPROVE)
    closed = coordinator.closure_status(qa_nurse, worklist["task"].id)
    assert closed.is_closed is True
    assert closed.assessment_status == AssessmentStatus.APPROVED
    assert closed.visit_note_status == VisitNoteStatus.APPROVED
