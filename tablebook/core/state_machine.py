from __future__ import annotations

from enum import Enum
from typing import Dict, Set

from tablebook.core.errors import InvalidStateTransition


class ReservationStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"


# Statuses that hold a resource for conflict purposes.
OCCUPYING_STATUSES = frozenset(
    {ReservationStatus.PENDING_PAYMENT, ReservationStatus.CONFIRMED, ReservationStatus.SEATED}
)


class ReservationStateMachine:
    """Legal reservation status transitions."""

    _ALLOWED_TRANSITIONS: Dict[ReservationStatus, Set[ReservationStatus]] = {
        ReservationStatus.PENDING_PAYMENT: {
            ReservationStatus.CONFIRMED,
            ReservationStatus.INCOMPLETE,
            ReservationStatus.CANCELLED,
        },
        ReservationStatus.CONFIRMED: {
            ReservationStatus.SEATED,
            ReservationStatus.CANCELLED,
        },
        ReservationStatus.SEATED: {
            ReservationStatus.FINISHED,
        },
        ReservationStatus.FINISHED: set(),
        ReservationStatus.CANCELLED: set(),
        ReservationStatus.INCOMPLETE: set(),
    }

    @classmethod
    def can_transition(cls, from_status: ReservationStatus, to_status: ReservationStatus) -> bool:
        return ReservationStatus(to_status) in cls._ALLOWED_TRANSITIONS.get(ReservationStatus(from_status), set())

    @classmethod
    def validate_transition(cls, from_status: ReservationStatus, to_status: ReservationStatus) -> None:
        """Raises InvalidStateTransition if the transition is illegal."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransition(
                from_state=ReservationStatus(from_status).value,
                to_state=ReservationStatus(to_status).value,
            )

    @classmethod
    def is_terminal(cls, status: ReservationStatus) -> bool:
        return len(cls._ALLOWED_TRANSITIONS.get(ReservationStatus(status), set())) == 0

    @classmethod
    def is_occupying(cls, status: ReservationStatus | str) -> bool:
        return ReservationStatus(status) in OCCUPYING_STATUSES


class EventStatus(str, Enum):
    RECEIVED = "received"
    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class EventOutcome(str, Enum):
    LINKED = "linked"
    WALK_IN_CREATED = "walk_in_created"
    REVIEW_CREATED = "review_created"
    RESERVATION_FINISHED = "reservation_finished"
    ESCALATED = "escalated"
    IGNORED = "ignored"
