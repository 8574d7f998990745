"""Check-then-act race between overlapping booking requests.

Two requests can both pass the availability check before either booking
is written. These tests stand in for that interleaving by making the
pre-write check report the asset free.
"""

from unittest.mock import patch

import pytest

from django.test.utils import override_settings

from inventory.exceptions import AvailabilityError
from inventory.services.availability import is_asset_available
from inventory.services.bookings import (
    _enforce_first_writer,
    approve_booking,
    create_booking,
)

WINDOW = {
    "start_date": "2025-10-25T09:00:00Z",
    "end_date": "2025-10-25T17:00:00Z",
}


def approved_request(asset):
    return {"asset": asset.id, "status": "approved", **WINDOW}


def stale_check():
    """Simulate a request whose availability check ran before the other
    request's booking was written."""
    return patch(
        "inventory.services.bookings.is_asset_available", return_value=True
    )


class TestUnverifiedRace:
    @override_settings(INVENTORY_VERIFY_BOOKING_WRITES=False)
    def test_both_requests_can_win(self, store, make_asset):
        asset = make_asset()
        first = create_booking(store, approved_request(asset))
        with stale_check():
            second = create_booking(store, approved_request(asset))

        # Two overlapping blocking bookings for one asset: the race is real
        assert first.status == second.status == "approved"
        assert len(store.get_bookings(asset_id=asset.id)) == 2
        assert not is_asset_available(
            store, asset.id, WINDOW["start_date"], WINDOW["end_date"]
        )


class TestFirstClaimWins:
    def test_later_create_is_undone(self, store, make_asset):
        asset = make_asset()
        first = create_booking(store, approved_request(asset))
        with stale_check():
            with pytest.raises(AvailabilityError) as exc:
                create_booking(store, approved_request(asset))

        assert exc.value.unavailable_assets == [asset.id]
        assert [b.id for b in store.get_bookings(asset_id=asset.id)] == [
            first.id
        ]

    def test_claims_follow_write_order(self, store, make_asset):
        first = create_booking(store, approved_request(make_asset()))
        second = create_booking(store, approved_request(make_asset()))
        assert first.blocking_seq < second.blocking_seq
        assert store.get_booking(first.id).blocking_seq == first.blocking_seq

    def test_pending_requests_are_not_verified(self, store, make_asset):
        asset = make_asset()
        create_booking(store, approved_request(asset))
        with stale_check():
            pending = create_booking(
                store, {"asset": asset.id, "status": "pending", **WINDOW}
            )
        assert pending.status == "pending"
        assert pending.blocking_seq is None

    def test_order_follows_approval_not_record_id(self, store, make_asset):
        asset = make_asset()
        pending = create_booking(store, {"asset": asset.id, **WINDOW})
        approved = create_booking(store, approved_request(asset))
        assert int(pending.id) < int(approved.id)

        with stale_check():
            with pytest.raises(AvailabilityError):
                approve_booking(store, pending.id)

        assert store.get_booking(pending.id).status == "pending"
        assert store.get_booking(approved.id).status == "approved"

    def test_approval_losing_to_earlier_claim(
        self, store, make_asset, make_booking
    ):
        asset = make_asset()
        winner = create_booking(store, approved_request(asset))
        loser = make_booking(asset, status="pending")

        with stale_check():
            with pytest.raises(AvailabilityError):
                approve_booking(store, loser.id)

        reverted = store.get_booking(loser.id)
        assert reverted.status == "pending"
        assert reverted.approved_by is None
        assert reverted.approved_at is None
        assert reverted.blocking_seq is None
        assert store.get_booking(winner.id).status == "approved"

    def test_early_stamp_written_late_still_loses(
        self, store, make_asset, make_booking
    ):
        # Approval time was stamped before the other request's, but the
        # record reached the store only after it
        asset = make_asset()
        other = make_booking(asset, approved_at="2099-01-01T00:00:00+00:00")
        other = _enforce_first_writer(store, other)

        with stale_check():
            with pytest.raises(AvailabilityError):
                create_booking(store, approved_request(asset))

        blocking = store.get_bookings(
            asset_id=asset.id, status=["approved", "active"]
        )
        assert [b.id for b in blocking] == [other.id]

    def test_unclaimed_blocking_write_wins(
        self, store, make_asset, make_booking
    ):
        # ``written`` is stored but has not claimed yet when the other
        # request verifies; it claims afterwards and keeps the asset
        asset = make_asset()
        written = make_booking(asset)

        with stale_check():
            with pytest.raises(AvailabilityError):
                create_booking(store, approved_request(asset))

        claimed = _enforce_first_writer(store, written)
        assert claimed.blocking_seq is not None
        assert [b.id for b in store.get_bookings(asset_id=asset.id)] == [
            written.id
        ]

    def test_disjoint_windows_unaffected(self, store, make_asset):
        asset = make_asset()
        create_booking(store, approved_request(asset))
        later = create_booking(
            store,
            {
                "asset": asset.id,
                "status": "approved",
                "start_date": "2025-10-26T09:00:00Z",
                "end_date": "2025-10-26T17:00:00Z",
            },
        )
        assert later.status == "approved"
