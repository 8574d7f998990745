"""Booking state machine and transition validation."""

from typing import NamedTuple

from django.db import models

from ..constants import BookingStatus
from ..exceptions import StateError


class BookingAction(models.TextChoices):
    APPROVE = "approve", "Approve"
    CHECK_OUT = "check_out", "Check out"
    CHECK_IN = "check_in", "Check in"
    CANCEL = "cancel", "Cancel"


VALID_TRANSITIONS = {
    BookingStatus.PENDING: {
        BookingAction.APPROVE: BookingStatus.APPROVED,
        BookingAction.CANCEL: BookingStatus.CANCELLED,
    },
    BookingStatus.APPROVED: {
        BookingAction.CHECK_OUT: BookingStatus.ACTIVE,
        BookingAction.CANCEL: BookingStatus.CANCELLED,
    },
    BookingStatus.ACTIVE: {
        BookingAction.CHECK_IN: BookingStatus.COMPLETED,
        BookingAction.CANCEL: BookingStatus.CANCELLED,
    },
    BookingStatus.COMPLETED: {},
    BookingStatus.CANCELLED: {},
}

_SPECIFIC_REJECTIONS = {
    (BookingStatus.CANCELLED, BookingAction.CANCEL): (
        "Booking is already cancelled"
    ),
    (BookingStatus.COMPLETED, BookingAction.CANCEL): (
        "Completed bookings cannot be cancelled"
    ),
    (BookingStatus.PENDING, BookingAction.CHECK_OUT): (
        "Can only check out approved bookings"
    ),
}


class Rejection(NamedTuple):
    status: str
    action: str
    message: str


def next_status(current, action):
    """Return the status ``action`` leads to, or a ``Rejection``.

    Pure function over ``VALID_TRANSITIONS``; nothing is read or written.
    """
    current, action = BookingStatus(current), BookingAction(action)
    target = VALID_TRANSITIONS.get(current, {}).get(action)
    if target is not None:
        return target
    message = _SPECIFIC_REJECTIONS.get((current, action))
    if message is None:
        allowed = ", ".join(VALID_TRANSITIONS.get(current, {})) or "none"
        message = (
            f"Cannot {BookingAction(action).label.lower()} a booking with "
            f"status '{current}'. Allowed actions: {allowed}."
        )
    return Rejection(status=current, action=action, message=message)


def validate_transition(booking, action):
    """Return the next status for ``booking``.

    Raises StateError if ``action`` is not allowed from its status.
    """
    result = next_status(booking.status, action)
    if isinstance(result, Rejection):
        raise StateError(result.message)
    return result
