from __future__ import annotations

from typing import Union
from uuid import UUID

from fastapi import APIRouter, Depends

from src.homehealth.domain.models.oasis_assessment import OasisAssessment
from src.homehealth.domain.models.task import Task
from src.homehealth.domain.models.user import User
from src.homehealth.domain.models.visit_note import VisitNote
from src.homehealth.security import get_api_key, get_current_user
from src.homehealth.services.qa_review.service import (
    PendingReviews,
    QAReviewCoordinator,
    ReviewDecision,
    TaskClosure,
)

router = APIRouter(
    prefix="/qa-review",
    tags=["qa-review"],
    dependencies=[Depends(get_api_key)],
)

qa_review_coordinator = QAReviewCoordinator()


@router.get("/pending", response_model=PendingReviews)
async def load_pending_reviews(current_user: User = Depends(get_current_user)) -> PendingReviews:
    """Unified worklist; a failing source yields an empty list and a warning."""
    return qa_review_coordinator.load_pending_reviews(current_user)


@router.post("/decision", response_model=Union[Task, OasisAssessment, VisitNote])
async def submit_review(
    payload: ReviewDecision,
    current_user: User = Depends(get_current_user),
) -> Union[Task, OasisAssessment, VisitNote]:
    return qa_review_coordinator.submit_review(current_user, payload)


@router.get("/tasks/{task_id}/closure", response_model=TaskClosure)
async def closure_status(task_id: UUID, current_user: User = Depends(get_current_user)) -> TaskClosure:
    return qa_review_coordinator.closure_status(current_user, task_id)
