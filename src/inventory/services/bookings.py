"""Booking lifecycle: creation, approval, check-out/in and cancellation.

Availability is checked and then the booking is written; the record store
offers no lock between the two. Two requests for the same asset can both
pass the check. When ``INVENTORY_VERIFY_BOOKING_WRITES`` is on, every write
that makes a booking blocking is re-checked afterwards and the booking that
became blocking later is undone (see ``_enforce_first_writer``).
"""

import datetime as dt
import logging

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist, ValidationError
from django.utils import timezone

from ..constants import (
    BLOCKED_ASSET_STATUSES,
    BLOCKING_BOOKING_STATUSES,
    AssetStatus,
    BookingMode,
    BookingStatus,
)
from ..exceptions import (
    AvailabilityError,
    BookingNotFound,
    StateError,
    error_message,
)
from ..schemas import (
    BookingRequest,
    ConditionAssessment,
    GroupBookingFailure,
    GroupBookingResult,
    GroupBookingSuccess,
    InUseBy,
    coerce_moment,
    parse_moment,
    parse_payload,
)
from .allocation import allocate_child_assets
from .availability import get_conflicting_bookings, is_asset_available
from .groups import get_group
from .kits import allocate_kit_assets, is_kit_available
from .records import field_changes
from .state import BookingAction, validate_transition

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Asset is not available for the selected timeframe"


def resolve_window(request: BookingRequest):
    """Return the ``(start, end)`` of a booking request.

    Single-day bookings span ``date`` from ``start_time`` (default start of
    day) to ``end_time`` (default end of day) and may be zero-length.
    Date-range bookings need ``end_date`` strictly after ``start_date``.
    """
    if request.booking_mode == BookingMode.SINGLE_DAY:
        if request.date is None:
            raise ValidationError("date: Single-day bookings need a date")
        start = coerce_moment(
            dt.datetime.combine(request.date, request.start_time or dt.time.min)
        )
        end = coerce_moment(
            dt.datetime.combine(request.date, request.end_time or dt.time.max)
        )
        if end < start:
            raise ValidationError(
                "end_time: End time must not be before the start time"
            )
        return start, end

    if request.start_date is None or request.end_date is None:
        raise ValidationError(
            "start_date: Start and end dates are required"
        )
    if request.end_date <= request.start_date:
        raise ValidationError(
            "end_date: End date must be after the start date"
        )
    return request.start_date, request.end_date


def _booking_name(booking):
    return booking.purpose or booking.target_label


def _check_bookable(asset):
    if asset.status in BLOCKED_ASSET_STATUSES:
        raise StateError(f"Asset cannot be booked (status: {asset.status})")
    if not asset.bookable:
        raise StateError(f"Asset {asset.asset_number} is not bookable")


def _enforce_first_writer(store, booking, revert_to=None):
    """Claim a write sequence for ``booking`` and undo it if an overlapping
    blocking booking claimed first.

    Called right after a write that made ``booking`` blocking. The losing
    booking is deleted (new booking) or returned to ``revert_to``
    (approval). Returns the booking with its ``blocking_seq`` set.
    """
    if not settings.INVENTORY_VERIFY_BOOKING_WRITES:
        return booking
    booking = store.update_booking_record(
        booking.id, {"blocking_seq": store.claim_blocking_write(booking.id)}
    )
    for asset_id in booking.custody_asset_ids():
        conflicts = get_conflicting_bookings(
            store,
            asset_id,
            booking.start_date,
            booking.end_date,
            exclude_booking_id=booking.id,
        )
        earlier = [b for b in conflicts if b.claimed_before(booking)]
        if not earlier:
            continue
        logger.warning(
            "Booking %s lost asset %s to earlier booking %s; undoing",
            booking.id,
            asset_id,
            earlier[0].id,
        )
        if revert_to is None:
            store.delete_booking_record(booking.id)
        else:
            store.update_booking_record(
                booking.id,
                {
                    "status": revert_to,
                    "approved_by": None,
                    "approved_by_name": None,
                    "approved_at": None,
                    "blocking_seq": None,
                },
            )
        raise AvailabilityError(NOT_AVAILABLE, unavailable_assets=[asset_id])


def create_booking(store, data):
    """Validate a booking request, check availability and persist it.

    ``data`` is a ``BookingRequest`` or a mapping accepted by it. A request
    with a ``request_key`` that was already stored returns that booking
    unchanged. Raises ValidationError, StateError, AvailabilityError or a
    RecordNotFound subclass.
    """
    request = (
        data
        if isinstance(data, BookingRequest)
        else parse_payload(BookingRequest, data)
    )
    if request.request_key:
        existing = store.get_booking_by_key(request.request_key)
        if existing is not None:
            logger.info(
                "Booking request %s already stored as %s",
                request.request_key,
                existing.id,
            )
            return existing

    if request.asset is None and request.kit is None:
        raise ValidationError("asset: Asset reference is required")
    if request.asset is not None and request.kit is not None:
        raise ValidationError(
            "asset: A booking targets an asset or a kit, not both"
        )
    if request.quantity < 1:
        raise ValidationError("quantity: must be at least 1.")
    start, end = resolve_window(request)

    status = request.status or settings.INVENTORY_DEFAULT_BOOKING_STATUS
    if status not in (BookingStatus.PENDING, BookingStatus.APPROVED):
        raise ValidationError(
            f"status: New bookings start as pending or approved, not "
            f"'{status}'"
        )

    actor = store.get_current_actor()
    booked_by_id = request.booked_by_id or actor.id
    booked_by_name = request.booked_by_name or actor.name
    payload = {
        "booking_mode": request.booking_mode,
        "date": request.date,
        "start_time": request.start_time,
        "end_time": request.end_time,
        "start_date": start,
        "end_date": end,
        "quantity": request.quantity,
        "purpose": request.purpose,
        "notes": request.notes,
        "status": status,
        "booked_by_id": booked_by_id,
        "booked_by_name": booked_by_name,
        "booking_for_id": request.booking_for_id or booked_by_id,
        "booking_for_name": request.booking_for_name or booked_by_name,
    }
    if status == BookingStatus.APPROVED:
        payload.update(
            approved_by=actor.id,
            approved_by_name=actor.name,
            approved_at=timezone.now(),
        )

    if request.kit is not None:
        kit = store.get_kit(request.kit.id)
        availability = is_kit_available(store, kit.id, start, end)
        if not availability.available:
            raise AvailabilityError(
                availability.reason or "Kit is not available",
                unavailable_assets=availability.unavailable_assets,
            )
        payload["kit"] = kit.reference()
        payload["kit_assets"] = allocate_kit_assets(store, kit, start, end)
    else:
        asset = store.get_asset(request.asset.id)
        _check_bookable(asset)
        if request.group is not None:
            group = get_group(store, request.group.id)
            if asset.id not in group.member_asset_ids:
                raise ValidationError("Asset is not a member of this group")
            payload["group"] = group.reference()

        if request.quantity > 1 or asset.is_parent:
            result = allocate_child_assets(
                store, asset.id, request.quantity, start, end
            )
            if not result.fulfilled:
                raise AvailabilityError(
                    result.shortage.message, shortage=result.shortage
                )
            payload["allocated_child_assets"] = [
                child.reference() for child in result.allocated
            ]
        elif not is_asset_available(store, asset.id, start, end):
            raise AvailabilityError(
                NOT_AVAILABLE, unavailable_assets=[asset.id]
            )
        payload["asset"] = asset.reference()

    booking = store.create_booking_record(payload, key=request.request_key)
    if booking.status in BLOCKING_BOOKING_STATUSES:
        booking = _enforce_first_writer(store, booking)

    store.record_change(
        "booking",
        booking.id,
        _booking_name(booking),
        "created",
        field_changes(None, booking),
    )
    logger.info(
        "Created %s booking %s for %s (%s to %s)",
        booking.status,
        booking.id,
        booking.target_label,
        booking.start_date.isoformat(),
        booking.end_date.isoformat(),
    )
    return booking


def create_group_booking(
    store, group_id, asset_ids, template, stop_on_error=False
) -> GroupBookingResult:
    """Book several members of a group with the same request template.

    Each member is booked on its own; failures are collected rather than
    raised. With ``stop_on_error`` the loop ends at the first failure.
    """
    group = get_group(store, group_id)
    template = dict(template)
    request_key = template.pop("request_key", None)
    result = GroupBookingResult()

    for asset_id in dict.fromkeys(str(a) for a in asset_ids):
        try:
            if asset_id not in group.member_asset_ids:
                raise ValidationError("Asset is not a member of this group")
            data = {
                **template,
                "asset": asset_id,
                "kit": None,
                "group": group.reference().model_dump(),
            }
            if request_key:
                data["request_key"] = f"{request_key}:{asset_id}"
            booking = create_booking(store, data)
        except (ValidationError, ObjectDoesNotExist) as exc:
            logger.info(
                "Group booking for asset %s in group %s failed: %s",
                asset_id,
                group.label,
                error_message(exc),
            )
            result.failures.append(
                GroupBookingFailure(asset_id=asset_id, error=error_message(exc))
            )
            if stop_on_error:
                break
        else:
            result.successes.append(
                GroupBookingSuccess(asset_id=asset_id, booking=booking)
            )
    return result


def approve_booking(store, booking_id):
    """Move a pending booking to approved after re-checking its assets."""
    booking = store.get_booking(booking_id)
    new_status = validate_transition(booking, BookingAction.APPROVE)
    for asset_id in booking.custody_asset_ids():
        _check_bookable(store.get_asset(asset_id))
        if not is_asset_available(
            store,
            asset_id,
            booking.start_date,
            booking.end_date,
            exclude_booking_id=booking.id,
        ):
            raise AvailabilityError(
                NOT_AVAILABLE, unavailable_assets=[asset_id]
            )

    actor = store.get_current_actor()
    updated = store.update_booking_record(
        booking.id,
        {
            "status": new_status,
            "approved_by": actor.id,
            "approved_by_name": actor.name,
            "approved_at": timezone.now(),
        },
    )
    updated = _enforce_first_writer(
        store, updated, revert_to=booking.status
    )
    store.record_change(
        "booking",
        booking.id,
        _booking_name(booking),
        "updated",
        field_changes(booking, updated),
    )
    logger.info("Approved booking %s", booking.id)
    return updated


def _condition(value):
    if value is None or isinstance(value, ConditionAssessment):
        return value
    return parse_payload(ConditionAssessment, value)


def check_out(store, booking_id, condition=None):
    """Hand out an approved booking's assets and mark it active."""
    condition = _condition(condition)
    booking = store.get_booking(booking_id)
    new_status = validate_transition(booking, BookingAction.CHECK_OUT)
    actor = store.get_current_actor()
    now = timezone.now()

    updated = store.update_booking_record(
        booking.id,
        {
            "status": new_status,
            "checked_out_at": now,
            "checked_out_by": actor.id,
            "checked_out_by_name": actor.name,
            "condition_on_check_out": condition,
        },
    )
    in_use_by = InUseBy(
        person_id=booking.booking_for_id or actor.id,
        person_name=booking.booking_for_name or actor.name,
        since=now,
    )
    for asset_id in booking.custody_asset_ids():
        asset = store.get_asset(asset_id)
        checked_out = store.update_asset(
            asset_id,
            {
                "status": AssetStatus.IN_USE,
                "in_use_by": in_use_by,
                "current_booking_id": booking.id,
            },
        )
        store.record_change(
            "asset",
            asset.id,
            asset.name,
            "updated",
            field_changes(asset, checked_out),
        )

    store.record_change(
        "booking",
        booking.id,
        _booking_name(booking),
        "updated",
        field_changes(booking, updated),
    )
    logger.info(
        "Checked out booking %s to %s", booking.id, in_use_by.person_name
    )
    return updated


def check_in(store, booking_id, condition):
    """Return an active booking's assets and complete it.

    A condition rating listed in ``INVENTORY_DAMAGE_RATINGS`` sends the
    assets to ``broken`` and flags the booking as damaged.
    """
    condition = _condition(condition)
    if condition is None:
        raise ValidationError(
            "condition: A condition assessment is required to check in"
        )
    booking = store.get_booking(booking_id)
    new_status = validate_transition(booking, BookingAction.CHECK_IN)
    actor = store.get_current_actor()
    damaged = condition.rating in settings.INVENTORY_DAMAGE_RATINGS

    updated = store.update_booking_record(
        booking.id,
        {
            "status": new_status,
            "checked_in_at": timezone.now(),
            "checked_in_by": actor.id,
            "checked_in_by_name": actor.name,
            "condition_on_check_in": condition,
            "damage_reported": damaged,
            "damage_notes": condition.notes if damaged else None,
        },
    )
    for asset_id in booking.custody_asset_ids():
        asset = store.get_asset(asset_id)
        patch = {
            "status": AssetStatus.BROKEN if damaged else AssetStatus.AVAILABLE,
            "in_use_by": None,
            "current_booking_id": None,
        }
        if damaged:
            patch["damage_notes"] = condition.notes or (
                f"Reported {condition.rating} on check-in"
            )
        returned = store.update_asset(asset_id, patch)
        store.record_change(
            "asset",
            asset.id,
            asset.name,
            "updated",
            field_changes(asset, returned),
        )

    store.record_change(
        "booking",
        booking.id,
        _booking_name(booking),
        "updated",
        field_changes(booking, updated),
    )
    if damaged:
        logger.warning(
            "Booking %s checked in with %s condition",
            booking.id,
            condition.rating,
        )
    else:
        logger.info("Checked in booking %s", booking.id)
    return updated


def _release_asset(store, booking, asset_id):
    """Put an asset held by ``booking`` back to available."""
    asset = store.get_asset(asset_id)
    if asset.current_booking_id not in (None, booking.id):
        logger.info(
            "Asset %s is held by booking %s; not released",
            asset_id,
            asset.current_booking_id,
        )
        return
    if asset.is_blocked:
        return
    released = store.update_asset(
        asset_id,
        {
            "status": AssetStatus.AVAILABLE,
            "in_use_by": None,
            "current_booking_id": None,
        },
    )
    store.record_change(
        "asset",
        asset.id,
        asset.name,
        "updated",
        field_changes(asset, released),
    )


def cancel_booking(store, booking_id, reason=None):
    """Cancel a booking, releasing its assets if it was checked out."""
    booking = store.get_booking(booking_id)
    new_status = validate_transition(booking, BookingAction.CANCEL)
    if booking.status == BookingStatus.ACTIVE:
        for asset_id in booking.custody_asset_ids():
            _release_asset(store, booking, asset_id)

    updated = store.update_booking_record(
        booking.id,
        {"status": new_status, "cancellation_reason": reason or None},
    )
    store.record_change(
        "booking",
        booking.id,
        _booking_name(booking),
        "updated",
        field_changes(booking, updated),
    )
    logger.info(
        "Cancelled booking %s%s",
        booking.id,
        f": {reason}" if reason else "",
    )
    return updated


def delete_booking(store, booking_id):
    """Remove a booking record and reset its assets.

    Deleting an unknown booking is a no-op. A failure resetting an asset is
    logged; it does not undo the deletion. Returns True if a record was
    removed.
    """
    try:
        booking = store.get_booking(booking_id)
    except BookingNotFound:
        logger.info("Delete of unknown booking %s ignored", booking_id)
        return False

    store.delete_booking_record(booking.id)
    store.record_change(
        "booking",
        booking.id,
        _booking_name(booking),
        "deleted",
        field_changes(booking, None),
    )
    for asset_id in booking.custody_asset_ids():
        try:
            _release_asset(store, booking, asset_id)
        except Exception:
            logger.warning(
                "Could not reset asset %s after deleting booking %s",
                asset_id,
                booking.id,
                exc_info=True,
            )
    logger.info("Deleted booking %s", booking.id)
    return True


def get_bookings(
    store, asset_id=None, kit_id=None, status=None, start=None, end=None
):
    return store.get_bookings(
        asset_id=asset_id,
        kit_id=kit_id,
        status=status,
        start=parse_moment(start, "start"),
        end=parse_moment(end, "end"),
    )
