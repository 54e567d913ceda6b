from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, String, Text, Time, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.homehealth.domain.models.oasis_assessment import OasisAssessment
from src.homehealth.domain.models.task import Task
from src.homehealth.domain.models.visit_note import VisitNote

JSON_COLUMNS = frozenset({"history", "payload"})


class Base(DeclarativeBase):
    pass


class DomainMappedMixin:
    """Column-by-name mapping between an ORM row and its pydantic model.

    Column names match the domain field names; enums are stored by value and
    ``history`` / ``payload`` as JSON documents.
    """

    __domain_model__: ClassVar[Type[BaseModel]]

    @classmethod
    def column_values(cls, entity: BaseModel) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for column in cls.__table__.columns:  # type: ignore[attr-defined]
            if column.name in JSON_COLUMNS:
                values[column.name] = entity.model_dump(mode="json", include={column.name})[column.name]
                continue
            value = getattr(entity, column.name)
            if isinstance(value, Enum):
                value = value.value
            values[column.name] = value
        return values

    @classmethod
    def from_domain(cls, entity: BaseModel) -> "DomainMappedMixin":
        return cls(**cls.column_values(entity))  # type: ignore[call-arg]

    def to_domain(self) -> Any:
        data: Dict[str, Any] = {}
        for column in self.__table__.columns:  # type: ignore[attr-defined]
            value = getattr(self, column.name)
            # Some backends (SQLite) drop tzinfo on the way back.
            if isinstance(value, datetime) and value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            data[column.name] = value
        return self.__domain_model__.model_validate(data)


class ReviewColumnsMixin:
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    submitted_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    review_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class TaskORM(DomainMappedMixin, ReviewColumnsMixin, Base):
    __tablename__ = "tasks"
    __domain_model__ = Task

    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    episode_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    assigned_to_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    plan_of_care_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    task_type: Mapped[str] = mapped_column(String(64), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    scheduled_start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    scheduled_end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    estimated_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    actual_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    billing_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    billed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class OasisAssessmentORM(DomainMappedMixin, ReviewColumnsMixin, Base):
    __tablename__ = "oasis_assessments"
    __domain_model__ = OasisAssessment

    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    episode_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    clinician_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    assessment_type: Mapped[str] = mapped_column(String(32), nullable=False)
    assessment_date: Mapped[date] = mapped_column(Date, nullable=False)
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_auto_saved: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    locked_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class VisitNoteORM(DomainMappedMixin, ReviewColumnsMixin, Base):
    __tablename__ = "visit_notes"
    __domain_model__ = VisitNote

    # One note per task.
    task_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, unique=True)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    episode_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    clinician_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    visit_type: Mapped[str] = mapped_column(String(32), nullable=False)
    visit_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    visit_start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    visit_end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
