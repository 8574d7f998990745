"""Asset groups: membership, field inheritance and bulk propagation.

A group's ``member_asset_ids`` is the source of truth for membership.
Each member carries an ``asset_group`` back-reference and a
``field_sources`` map. Both sides are written by ``sync_group_membership``
only; the other operations here validate and then call it.
"""

import logging

from pydantic import BaseModel

from django.core.exceptions import ValidationError

from ..constants import CUSTOM_FIELD_PREFIX, AssetStatus, FieldSource
from ..exceptions import AssetNotFound, GroupNotFound, StateError
from ..schemas import FieldResolution
from .assets import create_asset
from .records import field_changes

logger = logging.getLogger(__name__)

# Bulk patches may not touch identity or membership
PROTECTED_MEMBER_FIELDS = frozenset({"asset_group", "id", "asset_number"})


def get_group(store, group_id):
    group = store.get_asset_group(group_id)
    if group is None:
        raise GroupNotFound(f"Asset group '{group_id}' does not exist.")
    return group


# --- Field inheritance ---


def _custom_field_id(field_key):
    if field_key.startswith(CUSTOM_FIELD_PREFIX):
        return field_key[len(CUSTOM_FIELD_PREFIX):]
    return None


def get_inheritance_rule(group, field_key):
    custom_id = _custom_field_id(field_key)
    if custom_id is not None:
        return group.custom_field_rules.get(custom_id)
    return group.inheritance_rules.get(field_key)


def _inherited_keys(group):
    """Field keys the group currently pushes to members, with rules."""
    keys = {
        key: rule
        for key, rule in group.inheritance_rules.items()
        if rule.inherited
    }
    for custom_id, rule in group.custom_field_rules.items():
        if rule.inherited:
            keys[f"{CUSTOM_FIELD_PREFIX}{custom_id}"] = rule
    return keys


def compute_field_sources(group, existing=None):
    """Field-source map for a member of ``group``.

    Overrides survive where the rule allows them, inherited fields become
    ``group``, and stale ``group`` entries are dropped.
    """
    sources = {
        key: source
        for key, source in (existing or {}).items()
        if source != FieldSource.GROUP
    }
    for key, rule in _inherited_keys(group).items():
        if sources.get(key) == FieldSource.OVERRIDE and rule.overridable:
            continue
        sources[key] = FieldSource.GROUP
    return sources


def group_field_value(group, field_key):
    custom_id = _custom_field_id(field_key)
    if custom_id is not None:
        return group.shared_custom_fields.get(custom_id)
    return getattr(group, field_key, None)


def resolve_field_value(asset, group, field_key) -> FieldResolution:
    """Effective value of ``field_key`` for ``asset`` and where it came
    from."""
    if group is None:
        return FieldResolution(
            value=asset.field_value(field_key), source=FieldSource.LOCAL
        )
    if asset.field_sources.get(field_key) == FieldSource.OVERRIDE:
        return FieldResolution(
            value=asset.field_value(field_key), source=FieldSource.OVERRIDE
        )
    rule = get_inheritance_rule(group, field_key)
    if rule is not None and rule.inherited:
        return FieldResolution(
            value=group_field_value(group, field_key),
            source=FieldSource.GROUP,
        )
    return FieldResolution(
        value=asset.field_value(field_key), source=FieldSource.LOCAL
    )


def resolve_asset_field_value(store, asset_id, field_key) -> FieldResolution:
    asset = store.get_asset(asset_id)
    group = None
    if asset.asset_group is not None:
        group = store.get_asset_group(asset.asset_group.id)
        if group is None or asset.id not in group.member_asset_ids:
            logger.warning(
                "Asset %s points at group %s which does not list it",
                asset.id,
                asset.asset_group.id,
            )
            group = None
    return resolve_field_value(asset, group, field_key)


# --- Membership ---


def _check_can_join(asset, group, allow_reassign=False):
    if asset.status == AssetStatus.DELETED:
        raise ValidationError(
            f"Asset {asset.asset_number} is deleted and cannot join a group."
        )
    current = asset.asset_group
    if current is not None and current.id != group.id and not allow_reassign:
        raise ValidationError(
            f"Asset {asset.asset_number} already belongs to group "
            f"{current.group_number or current.name or current.id}. "
            f"Reassign it instead."
        )
    if (
        asset.asset_type is not None
        and group.asset_type is not None
        and asset.asset_type.id != group.asset_type.id
    ):
        raise ValidationError(
            f"Asset {asset.asset_number} is of type "
            f"'{asset.asset_type.name or asset.asset_type.id}' but group "
            f"{group.label} holds "
            f"'{group.asset_type.name or group.asset_type.id}'."
        )


def sync_group_membership(store, group_id, add=(), remove=()):
    """Apply membership changes to the group and its members together.

    The group's member set is written first, then each added asset gets the
    back-reference and its field sources, and each removed asset has both
    cleared. Returns the updated group.
    """
    group = get_group(store, group_id)
    add = [str(i) for i in add]
    remove = {str(i) for i in remove}
    members = [m for m in group.member_asset_ids if m not in remove]
    members.extend(i for i in add if i not in members)

    updated = store.update_asset_group(
        group.id, {"member_asset_ids": members}
    )
    if updated.member_asset_ids != group.member_asset_ids:
        store.record_change(
            "asset_group",
            group.id,
            group.name,
            "updated",
            field_changes(group, updated),
        )

    reference = updated.reference().model_dump()
    for asset_id in add:
        asset = store.get_asset(asset_id)
        member = store.update_asset(
            asset_id,
            {
                "asset_group": reference,
                "field_sources": compute_field_sources(
                    updated, asset.field_sources
                ),
            },
        )
        store.record_change(
            "asset", asset.id, asset.name, "updated", field_changes(asset, member)
        )

    for asset_id in remove:
        try:
            asset = store.get_asset(asset_id)
        except AssetNotFound:
            logger.warning(
                "Removed missing asset %s from group %s", asset_id, group.id
            )
            continue
        if asset.asset_group is None or asset.asset_group.id != group.id:
            continue
        released = store.update_asset(
            asset_id, {"asset_group": None, "field_sources": None}
        )
        store.record_change(
            "asset",
            asset.id,
            asset.name,
            "updated",
            field_changes(asset, released),
        )
    return updated


def create_asset_group(store, data, member_asset_ids=(), key=None):
    """Create a group and attach any initial members."""
    data = dict(data)
    if not (data.get("name") or "").strip():
        raise ValidationError("name: a group needs a name.")
    data.pop("member_asset_ids", None)
    data.pop("member_count", None)

    group = store.create_asset_group(data, key=key)
    store.record_change(
        "asset_group",
        group.id,
        group.name,
        "created",
        field_changes(None, group),
    )
    logger.info("Created asset group %s (%s)", group.label, group.id)

    if member_asset_ids:
        for asset_id in member_asset_ids:
            _check_can_join(store.get_asset(asset_id), group)
        group = sync_group_membership(store, group.id, add=member_asset_ids)
    return group


def update_asset_group(store, group_id, patch):
    """Update group fields and refresh members' field sources.

    Membership is changed with the add/remove/reassign operations.
    """
    if "member_asset_ids" in patch or "member_count" in patch:
        raise ValidationError(
            "member_asset_ids: change membership with add_asset_to_group "
            "or remove_asset_from_group."
        )
    group = get_group(store, group_id)
    updated = store.update_asset_group(group.id, patch)
    store.record_change(
        "asset_group",
        group.id,
        group.name,
        "updated",
        field_changes(group, updated),
    )
    if "inheritance_rules" in patch or "custom_field_rules" in patch:
        for asset_id in updated.member_asset_ids:
            asset = store.get_asset(asset_id)
            store.update_asset(
                asset_id,
                {
                    "field_sources": compute_field_sources(
                        updated, asset.field_sources
                    )
                },
            )
    return updated


def add_asset_to_group(store, group_id, asset_id):
    group = get_group(store, group_id)
    asset = store.get_asset(asset_id)
    if asset.id in group.member_asset_ids and (
        asset.asset_group is not None and asset.asset_group.id == group.id
    ):
        return group
    _check_can_join(asset, group)
    return sync_group_membership(store, group.id, add=[asset.id])


def remove_asset_from_group(store, group_id, asset_id):
    group = get_group(store, group_id)
    if str(asset_id) not in group.member_asset_ids:
        raise ValidationError("Asset is not a member of this group")
    return sync_group_membership(store, group.id, remove=[asset_id])


def reassign_asset_to_group(store, asset_id, target_group_id):
    """Move an asset from its current group (if any) to another."""
    asset = store.get_asset(asset_id)
    target = get_group(store, target_group_id)
    previous = asset.asset_group
    if previous is not None and previous.id == target.id:
        return asset
    _check_can_join(asset, target, allow_reassign=True)

    if previous is not None:
        if store.get_asset_group(previous.id) is not None:
            sync_group_membership(store, previous.id, remove=[asset.id])
        else:
            logger.warning(
                "Asset %s pointed at missing group %s", asset.id, previous.id
            )
    sync_group_membership(store, target.id, add=[asset.id])
    logger.info(
        "Reassigned asset %s to group %s", asset.asset_number, target.label
    )
    return store.get_asset(asset.id)


def dissolve_asset_group(store, group_id):
    """Release every member; the (now empty) group record is kept."""
    group = get_group(store, group_id)
    if not group.member_asset_ids:
        return group
    logger.info(
        "Dissolving group %s (%s member(s))",
        group.label,
        len(group.member_asset_ids),
    )
    return sync_group_membership(
        store, group.id, remove=group.member_asset_ids
    )


def delete_asset_group(store, group_id, reassign_assets=False):
    """Delete a group record.

    A group with members is refused unless ``reassign_assets`` is set, in
    which case the members are released first. Deleting an unknown group is
    a no-op.
    """
    group = store.get_asset_group(group_id)
    if group is None:
        logger.info("Delete of unknown asset group %s ignored", group_id)
        return
    if group.member_asset_ids:
        if not reassign_assets:
            raise StateError(
                f"Cannot delete asset group {group.label}: "
                f"{len(group.member_asset_ids)} member asset(s) still "
                f"assigned"
            )
        group = dissolve_asset_group(store, group.id)
    store.delete_asset_group(group.id)
    store.record_change(
        "asset_group",
        group.id,
        group.name,
        "deleted",
        field_changes(group, None),
    )
    logger.info("Deleted asset group %s (%s)", group.label, group.id)


def create_group_members(store, group_id, count, base_data=None):
    """Create ``count`` new assets and add them to the group."""
    if count < 1:
        raise ValidationError("count: must be at least 1.")
    group = get_group(store, group_id)
    base_data = dict(base_data or {})
    base_name = (base_data.get("name") or "").strip()
    stem = base_name or group.name.strip() or "Asset Group Member"
    first = len(group.member_asset_ids) + 1

    created = []
    for index in range(count):
        if count == 1 and base_name:
            name = base_name
        else:
            name = f"{stem} #{first + index}"
        data = {**base_data, "name": name}
        if not data.get("asset_type") and group.asset_type is not None:
            data["asset_type"] = group.asset_type.model_dump()
        created.append(create_asset(store, data))

    sync_group_membership(store, group.id, add=[a.id for a in created])
    return [store.get_asset(asset.id) for asset in created]


# --- Bulk propagation ---


def _patch_value(value):
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _member_patch(asset, group, patch, clear_overrides):
    custom_patch = patch.get("custom_field_values") or {}
    member_patch = {
        k: v for k, v in patch.items() if k not in ("custom_field_values",)
    }
    custom_values = dict(asset.custom_field_values)

    if clear_overrides:
        sources = {
            **compute_field_sources(group),
            **(patch.get("field_sources") or {}),
        }
        custom_values.update(custom_patch)
        for key, source in sources.items():
            if source != FieldSource.GROUP:
                continue
            custom_id = _custom_field_id(key)
            if custom_id is not None:
                if custom_id in group.shared_custom_fields:
                    custom_values[custom_id] = group.shared_custom_fields[
                        custom_id
                    ]
                else:
                    custom_values.pop(custom_id, None)
            else:
                member_patch[key] = _patch_value(
                    group_field_value(group, key)
                )
        member_patch["field_sources"] = sources
    else:
        overridden = {
            key
            for key, source in asset.field_sources.items()
            if source == FieldSource.OVERRIDE
        }
        member_patch = {
            k: v for k, v in member_patch.items() if k not in overridden
        }
        for custom_id, value in custom_patch.items():
            if f"{CUSTOM_FIELD_PREFIX}{custom_id}" not in overridden:
                custom_values[custom_id] = value

    if custom_patch or clear_overrides:
        member_patch["custom_field_values"] = custom_values
    return member_patch


def bulk_update_group_members(store, group_id, patch, clear_overrides=False):
    """Apply ``patch`` to every member of a group.

    Without ``clear_overrides`` fields a member has overridden are left
    alone. With it, field sources are recomputed from the group's rules and
    every group-sourced field is set to the group's value, or cleared when
    the group has none. Returns the updated members.
    """
    protected = PROTECTED_MEMBER_FIELDS & set(patch)
    if protected:
        raise ValidationError(
            f"{', '.join(sorted(protected))}: cannot be changed in a bulk "
            f"group update."
        )
    group = get_group(store, group_id)

    updated = []
    for asset_id in group.member_asset_ids:
        asset = store.get_asset(asset_id)
        member = store.update_asset(
            asset_id, _member_patch(asset, group, patch, clear_overrides)
        )
        store.record_change(
            "asset", asset.id, asset.name, "updated", field_changes(asset, member)
        )
        updated.append(member)
    logger.info(
        "Bulk updated %s member(s) of group %s", len(updated), group.label
    )
    return updated
