from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from uuid import UUID

from pydantic import BaseModel, Field


class EntityKind(str, Enum):
    TASK = "TASK"
    ASSESSMENT = "ASSESSMENT"
    VISIT_NOTE = "VISIT_NOTE"


class StatusChange(BaseModel):
    """One append-only history entry recorded by every transition."""

    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    actor_id: Optional[str] = None
    at: datetime
    reason: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class ReviewableEntity(Protocol):
    """Capability shared by Task, OasisAssessment and VisitNote.

    The three models declare these fields independently; nothing inherits
    from a common base. The coordinator only relies on this shape.
    """

    id: UUID
    status: Enum
    version: int
    submitted_by: Optional[str]
    submitted_at: Optional[datetime]
    reviewed_by: Optional[str]
    reviewed_at: Optional[datetime]
    review_comments: Optional[str]
    history: List[StatusChange]


def mark_submitted(entity: ReviewableEntity, *, actor_id: str, now: datetime) -> None:
    """Stamp submission metadata and drop the previous review outcome.

    The earlier review survives in ``history``; clearing it keeps
    ``reviewed_at >= submitted_at`` true after a resubmission.
    """

    entity.submitted_by = actor_id
    entity.submitted_at = now
    entity.reviewed_by = None
    entity.reviewed_at = None
    entity.review_comments = None


def mark_reviewed(entity: ReviewableEntity, *, actor_id: str, now: datetime, comments: Optional[str]) -> None:
    # Clamp to the submission instant so clock skew between writers can never
    # record a review that precedes its submission.
    reviewed_at = now
    if entity.submitted_at is not None and reviewed_at < entity.submitted_at:
        reviewed_at = entity.submitted_at
    entity.reviewed_by = actor_id
    entity.reviewed_at = reviewed_at
    entity.review_comments = comments


def clear_review(entity: ReviewableEntity) -> None:
    entity.reviewed_by = None
    entity.reviewed_at = None
    entity.review_comments = None
