"""Schema versions for stored record payloads.

Every payload carries a ``schema_version``. Version 1 is the legacy
camelCase layout (``assetNumber``, ``category`` standing in for the asset
type, ``requestedBy`` on bookings, ``type`` on kits); payloads with no
version at all are treated as version 1. Version 2 is the current
snake_case layout.

``upgrade_record`` walks a payload forward one version at a time using the
step functions in ``UPGRADES``. Reads always upgrade in memory; the
``migrate_records`` command writes upgraded payloads back.
"""

import re

from .constants import CUSTOM_FIELD_PREFIX

CURRENT_SCHEMA_VERSION = 2

# Maps whose keys are user data (custom field ids, filter keys)
_OPAQUE_KEYS = frozenset(
    {
        "custom_field_values",
        "shared_custom_fields",
        "custom_field_rules",
        "filters",
    }
)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def _snake(name):
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def _snake_keys(value):
    """Recursively rename camelCase dict keys, leaving user data alone."""
    if isinstance(value, list):
        return [_snake_keys(item) for item in value]
    if not isinstance(value, dict):
        return value
    renamed = {}
    for key, item in value.items():
        new_key = key if key.startswith(CUSTOM_FIELD_PREFIX) else _snake(key)
        renamed[new_key] = item if new_key in _OPAQUE_KEYS else _snake_keys(
            item
        )
    return renamed


def _asset_v1(data):
    data = _snake_keys(data)
    legacy_category = data.pop("category", None)
    if not data.get("asset_type") and legacy_category:
        data["asset_type"] = legacy_category
    return data


def _asset_group_v1(data):
    data = _snake_keys(data)
    legacy_category = data.pop("category", None) or {}
    type_id = data.pop("asset_type_id", None) or data.pop("category_id", None)
    type_name = data.pop("asset_type_name", None) or data.pop(
        "category_name", None
    )
    if not data.get("asset_type"):
        type_id = type_id or legacy_category.get("id")
        type_name = type_name or legacy_category.get("name")
        data["asset_type"] = (
            {"id": str(type_id), "name": type_name or ""} if type_id else None
        )
    return data


def _kit_v1(data):
    data = _snake_keys(data)
    if "type" in data:
        data["kit_type"] = data.pop("type")
    return data


def _booking_v1(data):
    data = _snake_keys(data)
    requested_by = data.pop("requested_by", None)
    requested_by_name = data.pop("requested_by_name", None)
    if not data.get("booked_by_id"):
        data["booked_by_id"] = requested_by
    if not data.get("booked_by_name"):
        data["booked_by_name"] = requested_by_name
    if not data.get("booking_for_id"):
        data["booking_for_id"] = requested_by
    if not data.get("booking_for_name"):
        data["booking_for_name"] = requested_by_name
    # Legacy kit bookings stored an empty asset placeholder
    asset = data.get("asset")
    if isinstance(asset, dict) and not asset.get("id"):
        data["asset"] = None
    return data


UPGRADES = {
    1: {
        "asset": _asset_v1,
        "asset_group": _asset_group_v1,
        "kit": _kit_v1,
        "booking": _booking_v1,
    },
}


def record_version(data):
    """Return the integer schema version of a stored payload."""
    raw = data.get("schema_version", data.get("schemaVersion"))
    if raw in (None, ""):
        return 1
    try:
        return int(str(raw).split(".")[0])
    except ValueError:
        return 1


def upgrade_record(category, data):
    """Return a copy of ``data`` upgraded to ``CURRENT_SCHEMA_VERSION``."""
    version = record_version(data)
    if version > CURRENT_SCHEMA_VERSION:
        raise ValueError(
            f"{category} payload has schema version {version}; this build "
            f"only understands up to {CURRENT_SCHEMA_VERSION}."
        )
    upgraded = dict(data)
    upgraded.pop("schemaVersion", None)
    while version < CURRENT_SCHEMA_VERSION:
        step = UPGRADES.get(version, {}).get(category)
        if step is not None:
            upgraded = step(upgraded)
        version += 1
    upgraded["schema_version"] = version
    return upgraded
