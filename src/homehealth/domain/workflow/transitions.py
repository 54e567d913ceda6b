"""Legal-transition tables for the three reviewable entity kinds.

Each table maps a workflow operation to the statuses it may start from and
the status it lands in (``None`` when the operation leaves status alone).
The services consult these tables instead of open-coding status checks, and
the tests assert against the same data.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Generic, Mapping, Optional, Set, TypeVar, Union
from uuid import UUID

from src.homehealth.domain.errors import InvalidStateError
from src.homehealth.domain.models.oasis_assessment import AssessmentStatus
from src.homehealth.domain.models.task import TaskStatus
from src.homehealth.domain.models.visit_note import VisitNoteStatus

S = TypeVar("S", bound=Enum)


@dataclass(frozen=True)
class Transition(Generic[S]):
    sources: FrozenSet[S]
    target: Optional[S]


TASK_TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.QA_APPROVED, TaskStatus.CANCELLED, TaskStatus.MISSED, TaskStatus.NO_SHOW}
)
TASK_NON_TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(set(TaskStatus) - TASK_TERMINAL_STATUSES)
TASK_EDITABLE_STATUSES: FrozenSet[TaskStatus] = frozenset({TaskStatus.SCHEDULED, TaskStatus.IN_PROGRESS})

TASK_TRANSITIONS: Dict[str, Transition[TaskStatus]] = {
    "start": Transition(frozenset({TaskStatus.SCHEDULED}), TaskStatus.IN_PROGRESS),
    "complete": Transition(TASK_EDITABLE_STATUSES, TaskStatus.COMPLETED_PENDING_QA),
    "reschedule": Transition(TASK_NON_TERMINAL_STATUSES, TaskStatus.SCHEDULED),
    "cancel": Transition(
        TASK_NON_TERMINAL_STATUSES - {TaskStatus.COMPLETED_PENDING_QA},
        TaskStatus.CANCELLED,
    ),
    "approve_qa": Transition(frozenset({TaskStatus.COMPLETED_PENDING_QA}), TaskStatus.QA_APPROVED),
    "return_for_correction": Transition(frozenset({TaskStatus.COMPLETED_PENDING_QA}), TaskStatus.SCHEDULED),
    "update": Transition(TASK_EDITABLE_STATUSES, None),
    "assign": Transition(TASK_NON_TERMINAL_STATUSES - {TaskStatus.COMPLETED_PENDING_QA}, None),
    "mark_no_show": Transition(frozenset({TaskStatus.SCHEDULED, TaskStatus.RESCHEDULED}), TaskStatus.NO_SHOW),
    "mark_missed": Transition(frozenset({TaskStatus.SCHEDULED}), TaskStatus.MISSED),
}

ASSESSMENT_TRANSITIONS: Dict[str, Transition[AssessmentStatus]] = {
    "auto_save": Transition(frozenset({AssessmentStatus.DRAFT}), None),
    "submit": Transition(frozenset({AssessmentStatus.DRAFT}), AssessmentStatus.SUBMITTED),
    "approve": Transition(frozenset({AssessmentStatus.SUBMITTED}), AssessmentStatus.APPROVED),
    "reject": Transition(frozenset({AssessmentStatus.SUBMITTED}), AssessmentStatus.REJECTED),
    "back_to_draft": Transition(frozenset({AssessmentStatus.REJECTED}), AssessmentStatus.DRAFT),
    "lock": Transition(frozenset({AssessmentStatus.APPROVED}), AssessmentStatus.LOCKED),
}

VISIT_NOTE_TRANSITIONS: Dict[str, Transition[VisitNoteStatus]] = {
    # Editing a returned note puts it back into DRAFT.
    "update": Transition(frozenset({VisitNoteStatus.DRAFT, VisitNoteStatus.RETURNED}), VisitNoteStatus.DRAFT),
    "submit": Transition(frozenset({VisitNoteStatus.DRAFT}), VisitNoteStatus.SUBMITTED),
    "approve": Transition(frozenset({VisitNoteStatus.SUBMITTED}), VisitNoteStatus.APPROVED),
    "return_for_correction": Transition(frozenset({VisitNoteStatus.SUBMITTED}), VisitNoteStatus.RETURNED),
    "reopen": Transition(frozenset({VisitNoteStatus.RETURNED}), VisitNoteStatus.DRAFT),
}


def resolve_transition(
    table: Mapping[str, Transition[S]],
    operation: str,
    current: S,
    *,
    entity_kind: str,
    entity_id: Union[UUID, str, None] = None,
) -> S:
    """Return the status ``operation`` leads to from ``current``.

    Raises InvalidStateError naming both the current status and the
    requested operation when the move is not in the table.
    """

    transition = table[operation]
    if current not in transition.sources:
        raise InvalidStateError(
            entity_kind=entity_kind,
            entity_id=entity_id,
            current=current,
            requested=operation,
            target=transition.target,
        )
    return transition.target if transition.target is not None else current


def legal_operations(table: Mapping[str, Transition[S]], current: S) -> Set[str]:
    return {name for name, transition in table.items() if current in transition.sources}


def next_statuses(table: Mapping[str, Transition[S]], current: S) -> Set[S]:
    """Statuses reachable from ``current`` in one step (status changes only)."""

    return {
        transition.target
        for transition in table.values()
        if current in transition.sources and transition.target is not None and transition.target != current
    }
