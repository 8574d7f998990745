"""Allocation of concrete child assets against quantity bookings."""

import logging

from django.core.exceptions import ValidationError

from ..constants import AssetStatus
from ..schemas import (
    AllocationCandidate,
    AllocationResult,
    Shortage,
    parse_payload,
)
from .assets import get_child_assets
from .availability import is_asset_available

logger = logging.getLogger(__name__)


def is_allocatable(candidate: AllocationCandidate, excluded=frozenset()):
    return (
        candidate.bookable
        and candidate.is_available
        and candidate.id not in excluded
        and candidate.current_booking_id is None
        and candidate.status == AssetStatus.AVAILABLE
    )


def allocate_booking_quantity(
    quantity: int,
    candidates,
    parent_asset_id=None,
    exclude_ids=(),
) -> AllocationResult:
    """Pick ``quantity`` candidates, keeping the order they were given in.

    Callers sort candidates beforehand (by asset number) so the same input
    always yields the same allocation. On a shortage every eligible
    candidate is still returned in ``allocated``.
    """
    if quantity < 1:
        raise ValidationError("quantity: must be at least 1.")

    excluded = {str(i) for i in exclude_ids}
    eligible = [
        candidate
        for candidate in (
            c
            if isinstance(c, AllocationCandidate)
            else parse_payload(AllocationCandidate, c)
            for c in candidates
        )
        if is_allocatable(candidate, excluded)
    ]

    if len(eligible) >= quantity:
        return AllocationResult(
            status="fulfilled", allocated=eligible[:quantity]
        )

    available = len(eligible)
    missing = quantity - available
    logger.info(
        "Shortage allocating %s item(s) of %s: %s available",
        quantity,
        parent_asset_id or "pool",
        available,
    )
    return AllocationResult(
        status="shortage",
        allocated=eligible,
        shortage=Shortage(
            requested=quantity,
            available=available,
            missing=missing,
            message=(
                f"Requested {quantity} items but only {available} "
                f"available ({missing} missing)."
            ),
        ),
    )


def candidates_for_parent(
    store, parent_asset_id, start, end, exclude_booking_id=None
):
    """Children of a parent asset as candidates for the given window."""
    return [
        AllocationCandidate.from_asset(
            child,
            is_available=is_asset_available(
                store,
                child.id,
                start,
                end,
                exclude_booking_id=exclude_booking_id,
            ),
        )
        for child in get_child_assets(store, parent_asset_id)
    ]


def allocate_child_assets(
    store, parent_asset_id, quantity, start, end, exclude_booking_id=None
) -> AllocationResult:
    candidates = candidates_for_parent(
        store, parent_asset_id, start, end, exclude_booking_id
    )
    return allocate_booking_quantity(
        quantity, candidates, parent_asset_id=parent_asset_id
    )
