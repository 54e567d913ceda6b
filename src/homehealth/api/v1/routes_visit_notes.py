from __future__ import annotations

from datetime import date, time
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.homehealth.domain.models.user import User
from src.homehealth.domain.models.visit_note import VisitNote, VisitNoteStatus, VisitType
from src.homehealth.security import get_api_key, get_current_user
from src.homehealth.services.visit_notes.service import VisitNoteUpdate, visit_note_service

router = APIRouter(
    prefix="/visit-notes",
    tags=["visit-notes"],
    dependencies=[Depends(get_api_key)],
)


class VisitNoteCreateRequest(BaseModel):
    patient_id: str
    episode_id: str
    task_id: Optional[UUID] = None
    visit_type: Optional[VisitType] = None
    visit_date: Optional[date] = None
    visit_start_time: Optional[time] = None
    visit_end_time: Optional[time] = None
    clinician_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ApproveRequest(BaseModel):
    qa_comments: Optional[str] = None


class ReturnRequest(BaseModel):
    correction_comments: str


@router.post("/", response_model=VisitNote, status_code=status.HTTP_201_CREATED)
async def create_visit_note(
    payload: VisitNoteCreateRequest,
    current_user: User = Depends(get_current_user),
) -> VisitNote:
    return visit_note_service.create_visit_note(current_user, **payload.model_dump())


@router.get("/pending-review", response_model=List[VisitNote])
async def pending_review(current_user: User = Depends(get_current_user)) -> List[VisitNote]:
    return visit_note_service.list_pending_review(current_user)


@router.get("/task/{task_id}", response_model=VisitNote)
async def get_by_task(task_id: UUID, current_user: User = Depends(get_current_user)) -> VisitNote:
    return visit_note_service.get_by_task(current_user, task_id)


@router.get("/patient/{patient_id}", response_model=List[VisitNote])
async def by_patient(patient_id: str, current_user: User = Depends(get_current_user)) -> List[VisitNote]:
    return visit_note_service.list_by_patient(current_user, patient_id)


@router.get("/episode/{episode_id}", response_model=List[VisitNote])
async def by_episode(episode_id: str, current_user: User = Depends(get_current_user)) -> List[VisitNote]:
    return visit_note_service.list_by_episode(current_user, episode_id)


@router.get("/clinician/{clinician_id}", response_model=List[VisitNote])
async def by_clinician(clinician_id: str, current_user: User = Depends(get_current_user)) -> List[VisitNote]:
    return visit_note_service.list_by_clinician(current_user, clinician_id)


@router.get("/status/{note_status}", response_model=List[VisitNote])
async def by_status(note_status: VisitNoteStatus, current_user: User = Depends(get_current_user)) -> List[VisitNote]:
    return visit_note_service.list_by_status(current_user, note_status)


@router.get("/{note_id}", response_model=VisitNote)
async def get_visit_note(note_id: UUID, current_user: User = Depends(get_current_user)) -> VisitNote:
    return visit_note_service.get_visit_note(current_user, note_id)


@router.put("/{note_id}", response_model=VisitNote)
async def update_visit_note(
    note_id: UUID,
    payload: VisitNoteUpdate,
    current_user: User = Depends(get_current_user),
) -> VisitNote:
    return visit_note_service.update(current_user, note_id, payload)


@router.post("/{note_id}/submit", response_model=VisitNote)
async def submit(note_id: UUID, current_user: User = Depends(get_current_user)) -> VisitNote:
    return visit_note_service.submit(current_user, note_id)


@router.post("/{note_id}/approve", response_model=VisitNote)
async def approve(
    note_id: UUID,
    payload: ApproveRequest,
    current_user: User = Depends(get_current_user),
) -> VisitNote:
    return visit_note_service.approve(current_user, note_id, payload.qa_comments)


@router.post("/{note_id}/return", response_model=VisitNote)
async def return_for_correction(
    note_id: UUID,
    payload: ReturnRequest,
    current_user: User = Depends(get_current_user),
) -> VisitNote:
    return visit_note_service.return_for_correction(current_user, note_id, payload.correction_comments)


@router.post("/{note_id}/reopen", response_model=VisitNote)
async def reopen(note_id: UUID, current_user: User = Depends(get_current_user)) -> VisitNote:
    return visit_note_service.reopen(current_user, note_id)
