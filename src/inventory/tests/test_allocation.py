"""Tests for quantity allocation of child assets."""

import pytest

from django.core.exceptions import ValidationError

from inventory.schemas import AllocationCandidate
from inventory.services.allocation import (
    allocate_booking_quantity,
    allocate_child_assets,
    candidates_for_parent,
)


def candidate(n, **fields):
    return AllocationCandidate(
        id=str(n), asset_number=f"CAB-{n:03d}", **fields
    )


class TestAllocateBookingQuantity:
    def test_fulfilled_takes_first_in_order(self):
        candidates = [candidate(1), candidate(2), candidate(3)]
        result = allocate_booking_quantity(2, candidates)
        assert result.status == "fulfilled"
        assert result.fulfilled
        assert result.allocated == candidates[:2]
        assert result.shortage is None

    def test_input_order_is_kept(self):
        candidates = [candidate(3), candidate(1), candidate(2)]
        result = allocate_booking_quantity(2, candidates)
        assert [c.id for c in result.allocated] == ["3", "1"]

    def test_ineligible_candidates_skipped(self):
        free = candidate(4)
        candidates = [
            candidate(1, bookable=False),
            candidate(2, is_available=False),
            candidate(3, status="in-use", current_booking_id="77"),
            free,
        ]
        result = allocate_booking_quantity(1, candidates)
        assert result.status == "fulfilled"
        assert result.allocated == [free]

    def test_shortage_reports_counts(self):
        result = allocate_booking_quantity(3, [candidate(1)])
        assert result.status == "shortage"
        assert result.shortage.requested == 3
        assert result.shortage.available == 1
        assert result.shortage.missing == 2
        assert "only 1 available" in result.shortage.message
        assert [c.id for c in result.allocated] == ["1"]

    def test_excluded_ids_skipped(self):
        result = allocate_booking_quantity(
            1, [candidate(1), candidate(2)], exclude_ids=["1"]
        )
        assert [c.id for c in result.allocated] == ["2"]

    def test_broken_candidate_skipped(self):
        result = allocate_booking_quantity(
            1, [candidate(1, status="broken"), candidate(2)]
        )
        assert [c.id for c in result.allocated] == ["2"]

    def test_accepts_plain_mappings(self):
        result = allocate_booking_quantity(
            1, [{"id": 9, "asset_number": "CAB-009"}]
        )
        assert result.allocated[0].id == "9"

    def test_same_input_same_result(self):
        candidates = [candidate(n) for n in range(1, 6)]
        first = allocate_booking_quantity(3, candidates)
        second = allocate_booking_quantity(3, candidates)
        assert first == second

    def test_quantity_below_one_rejected(self):
        with pytest.raises(ValidationError, match="quantity"):
            allocate_booking_quantity(0, [candidate(1)])


class TestAllocateChildAssets:
    def test_children_sorted_by_asset_number(self, store, make_asset):
        parent = make_asset(is_parent=True)
        make_asset(asset_number="CAB-003", parent_asset_id=parent.id)
        make_asset(asset_number="CAB-001", parent_asset_id=parent.id)
        make_asset(asset_number="CAB-002", parent_asset_id=parent.id)

        candidates = candidates_for_parent(
            store, parent.id, "2025-10-25T09:00", "2025-10-25T17:00"
        )
        assert [c.asset_number for c in candidates] == [
            "CAB-001",
            "CAB-002",
            "CAB-003",
        ]

    def test_booked_child_skipped_for_window(
        self, store, make_asset, make_booking
    ):
        parent = make_asset(is_parent=True)
        first = make_asset(asset_number="CAB-001", parent_asset_id=parent.id)
        second = make_asset(asset_number="CAB-002", parent_asset_id=parent.id)
        make_booking(first)

        result = allocate_child_assets(
            store, parent.id, 1, "2025-10-25T10:00", "2025-10-25T11:00"
        )
        assert [c.id for c in result.allocated] == [second.id]

        later = allocate_child_assets(
            store, parent.id, 2, "2025-10-27T10:00", "2025-10-27T11:00"
        )
        assert later.fulfilled
