from datetime import datetime, timezone

import pytest

from src.homehealth.clock import FixedClock
from src.homehealth.domain.models.user import Role, User
from src.homehealth.infra.db import inmemory as inmemory_repos
from src.homehealth.services.assessments.service import OasisAssessmentService
from src.homehealth.services.qa_review.service import QAReviewCoordinator
from src.homehealth.services.tasks.service import TaskWorkflowService
from src.homehealth.services.visit_notes.service import VisitNoteService


@pytest.fixture(autouse=True)
def reset_repositories():
    """Each test starts from empty in-memory stores."""
    for repository in (
        inmemory_repos.task_repository,
        inmemory_repos.oasis_assessment_repository,
        inmemory_repos.visit_note_repository,
    ):
        if hasattr(repository, "clear"):
            repository.clear()
    yield


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def tasks(clock) -> TaskWorkflowService:
    return TaskWorkflowService(clock=clock)


@pytest.fixture
def assessments(clock) -> OasisAssessmentService:
    return OasisAssessmentService(clock=clock)


@pytest.fixture
def visit_notes(clock) -> VisitNoteService:
    return VisitNoteService(clock=clock)


@pytest.fixture
def coordinator(tasks, assessments, visit_notes) -> QAReviewCoordinator:
    return QAReviewCoordinator(tasks=tasks, assessments=assessments, visit_notes=visit_notes)


@pytest.fixture
def scheduler() -> User:
    return User(id="sched-1", roles=frozenset({Role.SCHEDULER}))


@pytest.fixture
def nurse() -> User:
    return User(id="rn-1", email="rn-1@example.com", roles=frozenset({Role.RN}))


@pytest.fixture
def aide() -> User:
    return User(id="hha-1", roles=frozenset({Role.HHA}))


@pytest.fixture
def qa_nurse() -> User:
    return User(id="qa-1", roles=frozenset({Role.QA_NURSE}))


@pytest.fixture
def biller() -> User:
    return User(id="bill-1", roles=frozenset({Role.BILLING_SPECIALIST}))
