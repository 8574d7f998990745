"""Booking-window availability checks."""

from ..constants import BLOCKING_BOOKING_STATUSES
from ..schemas import parse_moment


def windows_overlap(start_a, end_a, start_b, end_b) -> bool:
    """Closed-interval overlap: touching boundaries count as a clash."""
    return start_a <= end_b and end_a >= start_b


def get_conflicting_bookings(
    store, asset_id, start, end, exclude_booking_id=None
):
    """Return approved/active bookings holding ``asset_id`` in the window.

    Pending, completed and cancelled bookings never block.
    """
    start, end = parse_moment(start, "start"), parse_moment(end, "end")
    bookings = store.get_bookings(
        asset_id=asset_id,
        status=BLOCKING_BOOKING_STATUSES,
        start=start,
        end=end,
    )
    if exclude_booking_id is not None:
        bookings = [b for b in bookings if b.id != str(exclude_booking_id)]
    return bookings


def is_asset_available(
    store, asset_id, start, end, exclude_booking_id=None
) -> bool:
    """Return True if no blocking booking overlaps ``[start, end]``."""
    return not get_conflicting_bookings(
        store, asset_id, start, end, exclude_booking_id=exclude_booking_id
    )
