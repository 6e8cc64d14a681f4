"""
Booking lifecycle: legal status transitions, progress ordering and the
wizard step table.

Everything here is pure. Callers guard every status change with
`assert_transition` (or branch on `can_transition` when a transition that no
longer applies should be a silent no-op, as with redelivered webhooks).
"""

from dataclasses import dataclass
from enum import Enum

from rental_booking.core.errors import InvalidTransitionError


class BookingStatus(str, Enum):
    DRAFT = "DRAFT"
    QUALIFIED = "QUALIFIED"
    SCHEDULED = "SCHEDULED"
    PAID_SETUP = "PAID_SETUP"
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    CLOSED = "CLOSED"


_ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.DRAFT: frozenset({BookingStatus.QUALIFIED, BookingStatus.CANCELED}),
    BookingStatus.QUALIFIED: frozenset({BookingStatus.SCHEDULED, BookingStatus.CANCELED}),
    BookingStatus.SCHEDULED: frozenset({BookingStatus.PAID_SETUP, BookingStatus.CANCELED}),
    BookingStatus.PAID_SETUP: frozenset({BookingStatus.CONTRACT_SIGNED, BookingStatus.CANCELED}),
    BookingStatus.CONTRACT_SIGNED: frozenset({BookingStatus.ACTIVE, BookingStatus.CANCELED}),
    BookingStatus.ACTIVE: frozenset(
        {BookingStatus.PAST_DUE, BookingStatus.CLOSED, BookingStatus.CANCELED}
    ),
    BookingStatus.PAST_DUE: frozenset(
        {BookingStatus.ACTIVE, BookingStatus.CANCELED, BookingStatus.CLOSED}
    ),
    BookingStatus.CANCELED: frozenset(),
    BookingStatus.CLOSED: frozenset(),
}

# PAST_DUE is a lateral excursion from ACTIVE, so it has no rank.
_PROGRESS_ORDER: tuple[BookingStatus, ...] = (
    BookingStatus.DRAFT,
    BookingStatus.QUALIFIED,
    BookingStatus.SCHEDULED,
    BookingStatus.PAID_SETUP,
    BookingStatus.CONTRACT_SIGNED,
    BookingStatus.ACTIVE,
)

TERMINAL_STATUSES = frozenset({BookingStatus.CANCELED, BookingStatus.CLOSED})

# Statuses whose booking keeps its delivery slot even after the hold lapses.
PAID_STATUSES = frozenset(
    {BookingStatus.PAID_SETUP, BookingStatus.CONTRACT_SIGNED, BookingStatus.ACTIVE}
)

# Bookings in these statuses never count against a slot's capacity.
NON_CLAIMING_STATUSES = frozenset(
    {BookingStatus.CANCELED, BookingStatus.CLOSED, BookingStatus.DRAFT}
)


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    return BookingStatus(to_status) in _ALLOWED_TRANSITIONS.get(BookingStatus(from_status), frozenset())


def assert_transition(from_status: BookingStatus, to_status: BookingStatus) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(BookingStatus(from_status).value, BookingStatus(to_status).value)


def allowed_transitions(status: BookingStatus) -> frozenset[BookingStatus]:
    return _ALLOWED_TRANSITIONS[BookingStatus(status)]


def is_terminal(status: BookingStatus) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES


def is_at_least(current: BookingStatus, required: BookingStatus) -> bool:
    """
    True when `current` is at or beyond `required` in the happy-path order.
    Either side being PAST_DUE, CANCELED or CLOSED yields False.
    """
    current, required = BookingStatus(current), BookingStatus(required)
    if current not in _PROGRESS_ORDER or required not in _PROGRESS_ORDER:
        return False
    return _PROGRESS_ORDER.index(current) >= _PROGRESS_ORDER.index(required)


@dataclass(frozen=True)
class StepRule:
    required_status: BookingStatus
    completes_to: BookingStatus


STEP_RULES: dict[int, StepRule] = {
    1: StepRule(BookingStatus.DRAFT, BookingStatus.QUALIFIED),
    2: StepRule(BookingStatus.QUALIFIED, BookingStatus.QUALIFIED),
    3: StepRule(BookingStatus.QUALIFIED, BookingStatus.QUALIFIED),
    4: StepRule(BookingStatus.QUALIFIED, BookingStatus.QUALIFIED),
    5: StepRule(BookingStatus.QUALIFIED, BookingStatus.SCHEDULED),
    6: StepRule(BookingStatus.SCHEDULED, BookingStatus.SCHEDULED),
    7: StepRule(BookingStatus.PAID_SETUP, BookingStatus.CONTRACT_SIGNED),
    8: StepRule(BookingStatus.CONTRACT_SIGNED, BookingStatus.CONTRACT_SIGNED),
}

FINAL_STEP = 8

_MAX_STEP: dict[BookingStatus, int] = {
    BookingStatus.DRAFT: 1,
    BookingStatus.QUALIFIED: 5,
    BookingStatus.SCHEDULED: 6,
    BookingStatus.PAID_SETUP: 7,
    BookingStatus.CONTRACT_SIGNED: 8,
    BookingStatus.ACTIVE: 8,
}


def max_step_for_status(status: BookingStatus) -> int:
    """Highest wizard step a booking in `status` may (re-)enter; 0 for none."""
    return _MAX_STEP.get(BookingStatus(status), 0)
