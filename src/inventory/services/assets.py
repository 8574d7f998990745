"""Asset creation, numbering and logical deletion."""

import logging
import re

from django.conf import settings
from django.core.exceptions import ValidationError

from ..constants import AssetStatus
from ..exceptions import StateError
from .records import field_changes

logger = logging.getLogger(__name__)


def next_asset_number(store) -> str:
    """Return the next free ``<PREFIX>-<nnnnn>`` asset number."""
    prefix = settings.INVENTORY_ASSET_NUMBER_PREFIX
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    highest = 0
    for asset in store.get_assets():
        match = pattern.match(asset.asset_number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{highest + 1:05d}"


def get_child_assets(store, parent_asset_id):
    """Children of a multi-unit asset, ordered by asset number."""
    return sorted(
        store.get_assets(parent_asset_id=parent_asset_id),
        key=lambda asset: asset.asset_number,
    )


def create_asset(store, data, key=None):
    """Create an asset, numbering it and linking it to its parent.

    Raises ValidationError for a duplicate asset number or a group
    reference (groups are joined with ``add_asset_to_group``), and
    AssetNotFound for an unknown parent.
    """
    data = dict(data)
    if data.get("asset_group"):
        raise ValidationError(
            "asset_group: assets join groups through add_asset_to_group."
        )

    asset_number = (data.get("asset_number") or "").strip()
    if not asset_number:
        asset_number = next_asset_number(store)
    elif any(a.asset_number == asset_number for a in store.get_assets()):
        raise ValidationError(
            f"asset_number: '{asset_number}' is already in use."
        )
    data["asset_number"] = asset_number

    parent = None
    if data.get("parent_asset_id"):
        parent = store.get_asset(data["parent_asset_id"])
        data["parent_asset_id"] = parent.id

    asset = store.create_asset(data, key=key)
    store.record_change(
        "asset", asset.id, asset.name, "created", field_changes(None, asset)
    )

    if parent is not None and asset.id not in parent.child_asset_ids:
        updated = store.update_asset(
            parent.id,
            {
                "child_asset_ids": [*parent.child_asset_ids, asset.id],
                "is_parent": True,
            },
        )
        store.record_change(
            "asset",
            parent.id,
            parent.name,
            "updated",
            field_changes(parent, updated),
        )

    logger.info("Created asset %s (%s)", asset.asset_number, asset.id)
    return asset


def delete_asset(store, asset_id):
    """Mark an asset deleted. Records are never physically removed.

    The asset leaves its group first. Raises StateError while the asset is
    checked out.
    """
    from .groups import remove_asset_from_group

    asset = store.get_asset(asset_id)
    if asset.status == AssetStatus.DELETED:
        return asset
    if asset.status == AssetStatus.IN_USE or asset.current_booking_id:
        raise StateError(
            f"Cannot delete asset {asset.asset_number} while it is checked "
            f"out. Check it in first."
        )

    if asset.asset_group is not None:
        remove_asset_from_group(store, asset.asset_group.id, asset.id)
        asset = store.get_asset(asset.id)

    deleted = store.update_asset(asset.id, {"status": AssetStatus.DELETED})
    store.record_change(
        "asset",
        asset.id,
        asset.name,
        "deleted",
        field_changes(asset, deleted),
    )
    logger.info("Deleted asset %s (%s)", asset.asset_number, asset.id)
    return deleted
