# tests/unit/test_state_machine.py

import pytest

from tablebook.core.errors import InvalidStateTransition
from tablebook.core.state_machine import ReservationStateMachine, ReservationStatus


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_paid_booking_path():
    assert ReservationStateMachine.can_transition(
        ReservationStatus.PENDING_PAYMENT,
        ReservationStatus.CONFIRMED,
    )
    assert ReservationStateMachine.can_transition(
        ReservationStatus.CONFIRMED,
        ReservationStatus.SEATED,
    )
    assert ReservationStateMachine.can_transition(
        ReservationStatus.SEATED,
        ReservationStatus.FINISHED,
    )


def test_payment_failure_and_cancellation():
    assert ReservationStateMachine.can_transition(
        ReservationStatus.PENDING_PAYMENT,
        ReservationStatus.INCOMPLETE,
    )
    assert ReservationStateMachine.can_transition(
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELLED,
    )


def test_accepts_plain_strings():
    assert ReservationStateMachine.can_transition("confirmed", "seated")


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_seat_unpaid_booking():
    with pytest.raises(InvalidStateTransition) as exc:
        ReservationStateMachine.validate_transition(
            ReservationStatus.PENDING_PAYMENT,
            ReservationStatus.SEATED,
        )
    assert exc.value.from_state == "pending_payment"
    assert exc.value.to_state == "seated"
    assert exc.value.status_code == 409


def test_cannot_cancel_seated_party():
    assert not ReservationStateMachine.can_transition(
        ReservationStatus.SEATED,
        ReservationStatus.CANCELLED,
    )


@pytest.mark.parametrize(
    "status",
    [ReservationStatus.FINISHED, ReservationStatus.CANCELLED, ReservationStatus.INCOMPLETE],
)
def test_terminal_states(status):
    assert ReservationStateMachine.is_terminal(status)

    with pytest.raises(InvalidStateTransition):
        ReservationStateMachine.validate_transition(status, ReservationStatus.CONFIRMED)


def test_occupying_statuses():
    assert ReservationStateMachine.is_occupying("pending_payment")
    assert ReservationStateMachine.is_occupying("confirmed")
    assert ReservationStateMachine.is_occupying("seated")
    assert not ReservationStateMachine.is_occupying("finished")
    assert not ReservationStateMachine.is_occupying("cancelled")
    assert not ReservationStateMachine.is_occupying("incomplete")


def test_unknown_status_rejected():
    with pytest.raises(ValueError):
        ReservationStateMachine.validate_transition("no_show", ReservationStatus.CONFIRMED)
