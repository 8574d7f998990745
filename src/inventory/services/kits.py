"""Kit availability, member selection and kit record management."""

import logging

from django.core.exceptions import ValidationError

from ..constants import OPEN_BOOKING_STATUSES, AssetStatus, KitType
from ..exceptions import AssetNotFound, AvailabilityError, StateError
from ..schemas import (
    BoundAsset,
    KitAvailability,
    PoolRequirement,
    parse_payload,
)
from .availability import is_asset_available
from .records import field_changes

logger = logging.getLogger(__name__)


def _filter_value(asset, key):
    if key in asset.custom_field_values:
        return asset.custom_field_values[key]
    return getattr(asset, key, None)


def matches_pool_filters(asset, filters) -> bool:
    """All filters must match. Custom field values win over attributes."""
    return all(
        _filter_value(asset, key) == expected
        for key, expected in (filters or {}).items()
    )


def pool_assets(store, pool: PoolRequirement):
    """Bookable assets matching a pool requirement, by asset number."""
    assets = [
        asset
        for asset in store.get_assets(asset_type_id=pool.asset_type_id)
        if not asset.is_blocked
        and asset.bookable
        and matches_pool_filters(asset, pool.filters)
    ]
    return sorted(assets, key=lambda asset: asset.asset_number)


def available_pool_assets(
    store, pool, start, end, exclude_booking_id=None
):
    return [
        asset
        for asset in pool_assets(store, pool)
        if is_asset_available(
            store, asset.id, start, end, exclude_booking_id=exclude_booking_id
        )
    ]


def _bound_asset_available(store, bound, start, end, exclude_booking_id):
    try:
        asset = store.get_asset(bound.asset_id)
    except AssetNotFound:
        logger.warning("Kit references missing asset %s", bound.asset_id)
        return False
    if asset.is_blocked:
        return False
    return is_asset_available(
        store, asset.id, start, end, exclude_booking_id=exclude_booking_id
    )


def is_kit_available(
    store, kit_id, start, end, exclude_booking_id=None
) -> KitAvailability:
    """Decide whether a kit can be booked for ``[start, end]``.

    Fixed kits check every bound asset and report all that fail. Flexible
    kits count available assets per pool and stop at the first pool that
    falls short. Raises KitNotFound for an unknown kit.
    """
    kit = store.get_kit(kit_id)

    if kit.kit_type == KitType.FIXED:
        if not kit.bound_assets:
            return KitAvailability(
                available=False, reason="Fixed kit has no bound assets"
            )
        unavailable = [
            bound.asset_id
            for bound in kit.bound_assets
            if not _bound_asset_available(
                store, bound, start, end, exclude_booking_id
            )
        ]
        if unavailable:
            return KitAvailability(
                available=False,
                unavailable_assets=unavailable,
                reason=f"{len(unavailable)} asset(s) unavailable",
            )
        return KitAvailability(available=True)

    if not kit.pool_requirements:
        return KitAvailability(
            available=False, reason="Flexible kit has no pool requirements"
        )
    for pool in kit.pool_requirements:
        count = len(
            available_pool_assets(store, pool, start, end, exclude_booking_id)
        )
        if count < pool.quantity:
            return KitAvailability(
                available=False,
                reason=(
                    f"Insufficient assets in pool {pool.label}: "
                    f"need {pool.quantity}, only {count} available"
                ),
            )
    return KitAvailability(available=True)


def allocate_kit_assets(store, kit, start, end, exclude_booking_id=None):
    """Return references to the concrete assets a kit booking holds.

    Fixed kits hold their bound assets. Flexible kits hold the first
    ``quantity`` available assets of each pool; an asset picked for one
    pool is not reused for another.
    """
    if kit.kit_type == KitType.FIXED:
        return [
            store.get_asset(bound.asset_id).reference()
            for bound in kit.bound_assets
        ]

    chosen = []
    for pool in kit.pool_requirements:
        taken = {ref.id for ref in chosen}
        picks = [
            asset
            for asset in available_pool_assets(
                store, pool, start, end, exclude_booking_id
            )
            if asset.id not in taken
        ][: pool.quantity]
        if len(picks) < pool.quantity:
            raise AvailabilityError(
                f"Insufficient assets in pool {pool.label}: need "
                f"{pool.quantity}, only {len(picks)} available"
            )
        chosen.extend(asset.reference() for asset in picks)
    return chosen


def _validate_bound_assets(store, bound_assets):
    """Resolve bound assets, filling number/name from the asset records."""
    if not bound_assets:
        raise ValidationError("bound_assets: Fixed kit has no bound assets")
    resolved = []
    for raw in bound_assets:
        bound = (
            raw
            if isinstance(raw, BoundAsset)
            else parse_payload(BoundAsset, raw)
        )
        asset = store.get_asset(bound.asset_id)
        if asset.status != AssetStatus.AVAILABLE:
            raise ValidationError(
                f"bound_assets: asset {asset.asset_number} is not available "
                f"(status: {asset.status})."
            )
        resolved.append(
            bound.model_copy(
                update={
                    "asset_number": asset.asset_number,
                    "name": asset.name,
                }
            )
        )
    return resolved


def _validate_pool_requirements(pool_requirements):
    if not pool_requirements:
        raise ValidationError(
            "pool_requirements: Flexible kit has no pool requirements"
        )
    pools = [
        pool
        if isinstance(pool, PoolRequirement)
        else parse_payload(PoolRequirement, pool)
        for pool in pool_requirements
    ]
    for pool in pools:
        if pool.quantity < 1:
            raise ValidationError(
                f"pool_requirements: quantity for {pool.label} must be at "
                f"least 1."
            )
    return pools


def create_kit(store, data, key=None):
    """Create a kit after validating its bound assets or pools."""
    data = dict(data)
    kit_type = data.get("kit_type")
    if kit_type == KitType.FIXED:
        data["bound_assets"] = [
            b.model_dump()
            for b in _validate_bound_assets(store, data.get("bound_assets"))
        ]
        data["pool_requirements"] = []
    elif kit_type == KitType.FLEXIBLE:
        data["pool_requirements"] = [
            p.model_dump()
            for p in _validate_pool_requirements(
                data.get("pool_requirements")
            )
        ]
        data["bound_assets"] = []
    else:
        raise ValidationError(
            f"kit_type: '{kit_type}' is not one of fixed, flexible."
        )

    kit = store.create_kit(data, key=key)
    store.record_change(
        "kit", kit.id, kit.name, "created", field_changes(None, kit)
    )
    logger.info("Created %s kit %s (%s)", kit.kit_type, kit.name, kit.id)
    return kit


def update_kit(store, kit_id, patch):
    """Update a kit, re-validating bound assets or pools they change."""
    existing = store.get_kit(kit_id)
    patch = dict(patch)
    if "kit_type" in patch and patch["kit_type"] != existing.kit_type:
        raise ValidationError("kit_type: a kit's type cannot be changed.")
    if "bound_assets" in patch:
        if existing.kit_type != KitType.FIXED:
            raise ValidationError(
                "bound_assets: only fixed kits have bound assets."
            )
        patch["bound_assets"] = [
            b.model_dump()
            for b in _validate_bound_assets(store, patch["bound_assets"])
        ]
    if "pool_requirements" in patch:
        if existing.kit_type != KitType.FLEXIBLE:
            raise ValidationError(
                "pool_requirements: only flexible kits have pool "
                "requirements."
            )
        patch["pool_requirements"] = [
            p.model_dump()
            for p in _validate_pool_requirements(patch["pool_requirements"])
        ]

    kit = store.update_kit(kit_id, patch)
    store.record_change(
        "kit", kit.id, kit.name, "updated", field_changes(existing, kit)
    )
    return kit


def delete_kit(store, kit_id):
    """Delete a kit. Refused while it has pending, approved or active
    bookings."""
    kit = store.get_kit(kit_id)
    bookings = store.get_bookings(kit_id=kit.id, status=OPEN_BOOKING_STATUSES)
    if bookings:
        raise StateError(
            f"Cannot delete kit with active bookings "
            f"({len(bookings)} bookings found)"
        )
    store.delete_kit_record(kit.id)
    store.record_change(
        "kit", kit.id, kit.name, "deleted", field_changes(kit, None)
    )
    logger.info("Deleted kit %s (%s)", kit.name, kit.id)
