from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.homehealth.domain.models.oasis_assessment import AssessmentType, OasisAssessment, ReviewAction
from src.homehealth.domain.models.user import User
from src.homehealth.security import get_api_key, get_current_user
from src.homehealth.services.assessments.service import oasis_assessment_service

router = APIRouter(
    prefix="/oasis",
    tags=["oasis"],
    dependencies=[Depends(get_api_key)],
)


class AssessmentCreateRequest(BaseModel):
    patient_id: str
    episode_id: str
    assessment_type: AssessmentType
    assessment_date: date
    clinician_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class AutoSaveRequest(BaseModel):
    payload: Dict[str, Any]
    completion_percentage: Optional[int] = None


class AssessmentReviewRequest(BaseModel):
    action: ReviewAction
    comments: Optional[str] = None


@router.post("/", response_model=OasisAssessment, status_code=status.HTTP_201_CREATED)
async def create_assessment(
    payload: AssessmentCreateRequest,
    current_user: User = Depends(get_current_user),
) -> OasisAssessment:
    return oasis_assessment_service.create_assessment(current_user, **payload.model_dump())


@router.get("/incomplete", response_model=List[OasisAssessment])
async def incomplete(current_user: User = Depends(get_current_user)) -> List[OasisAssessment]:
    return oasis_assessment_service.incomplete(current_user)


@router.get("/my/rejected", response_model=List[OasisAssessment])
async def my_rejected(current_user: User = Depends(get_current_user)) -> List[OasisAssessment]:
    return oasis_assessment_service.my_rejected(current_user)


@router.get("/pending-review", response_model=List[OasisAssessment])
async def pending_review(current_user: User = Depends(get_current_user)) -> List[OasisAssessment]:
    return oasis_assessment_service.list_pending_review(current_user)


@router.get("/patient/{patient_id}", response_model=List[OasisAssessment])
async def by_patient(patient_id: str, current_user: User = Depends(get_current_user)) -> List[OasisAssessment]:
    return oasis_assessment_service.list_by_patient(current_user, patient_id)


@router.get("/episode/{episode_id}", response_model=List[OasisAssessment])
async def by_episode(episode_id: str, current_user: User = Depends(get_current_user)) -> List[OasisAssessment]:
    return oasis_assessment_service.list_by_episode(current_user, episode_id)


@router.get("/{assessment_id}", response_model=OasisAssessment)
async def get_assessment(assessment_id: UUID, current_user: User = Depends(get_current_user)) -> OasisAssessment:
    return oasis_assessment_service.get_assessment(current_user, assessment_id)


@router.put("/{assessment_id}/auto-save", response_model=OasisAssessment)
async def auto_save(
    assessment_id: UUID,
    payload: AutoSaveRequest,
    current_user: User = Depends(get_current_user),
) -> OasisAssessment:
    return oasis_assessment_service.auto_save(
        current_user,
        assessment_id,
        payload.payload,
        completion_percentage=payload.completion_percentage,
    )


@router.post("/{assessment_id}/submit", response_model=OasisAssessment)
async def submit(assessment_id: UUID, current_user: User = Depends(get_current_user)) -> OasisAssessment:
    return oasis_assessment_service.submit(current_user, assessment_id)


@router.post("/{assessment_id}/review", response_model=OasisAssessment)
async def review(
    assessment_id: UUID,
    payload: AssessmentReviewRequest,
    current_user: User = Depends(get_current_user),
) -> OasisAssessment:
    return oasis_assessment_service.review(current_user, assessment_id, payload.action, payload.comments)


@router.post("/{assessment_id}/back-to-draft", response_model=OasisAssessment)
async def back_to_draft(assessment_id: UUID, current_user: User = Depends(get_current_user)) -> OasisAssessment:
    return oasis_assessment_service.back_to_draft(current_user, assessment_id)


@router.post("/{assessment_id}/lock", response_model=OasisAssessment)
async def lock(assessment_id: UUID, current_user: User = Depends(get_current_user)) -> OasisAssessment:
    return oasis_assessment_service.lock(current_user, assessment_id)
