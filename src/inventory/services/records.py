"""Typed client over the generic record store.

``Record`` rows are opaque ``category + JSON`` blobs. ``RecordStore`` is the
only code that touches them: it upgrades payloads to the current schema
version on read, validates them against ``inventory.schemas`` on write, and
stamps actor metadata. The booking, kit and group services receive a store
instance and never query ``Record`` themselves.
"""

import logging

from django.db import IntegrityError
from django.db import transaction as db_transaction
from django.utils import timezone

from ..exceptions import (
    AssetNotFound,
    BookingNotFound,
    KitNotFound,
    RecordNotFound,
)
from ..models import BlockingClaim, ChangeEntry, Record
from ..schemas import (
    Actor,
    Asset,
    AssetGroup,
    Booking,
    Kit,
    parse_moment,
    parse_payload,
)
from ..upgrades import CURRENT_SCHEMA_VERSION, upgrade_record
from .availability import windows_overlap

logger = logging.getLogger(__name__)

SCHEMAS = {
    "asset": Asset,
    "asset_group": AssetGroup,
    "kit": Kit,
    "booking": Booking,
}

SYSTEM_ACTOR = Actor(id="system", name="System")

# Bookkeeping fields left out of change history
_STAMP_FIELDS = frozenset(
    {
        "id",
        "schema_version",
        "created_at",
        "created_by",
        "created_by_name",
        "last_modified_at",
        "last_modified_by",
        "last_modified_by_name",
    }
)


def field_changes(before, after):
    """Return ``[{field, old_value, new_value}]`` between two records.

    Either side may be ``None`` (creation or deletion).
    """
    old = before.model_dump(mode="json") if before is not None else {}
    new = after.model_dump(mode="json") if after is not None else {}
    changes = []
    for field in sorted((old.keys() | new.keys()) - _STAMP_FIELDS):
        if old.get(field) != new.get(field):
            changes.append(
                {
                    "field": field,
                    "old_value": old.get(field),
                    "new_value": new.get(field),
                }
            )
    return changes


class RecordStore:
    """Record store client bound to an acting user (or the system)."""

    def __init__(self, user=None):
        self.user = user

    def get_current_actor(self) -> Actor:
        if self.user is None or not self.user.is_authenticated:
            return SYSTEM_ACTOR
        return Actor(
            id=str(self.user.pk),
            name=self.user.get_full_name() or self.user.get_username(),
        )

    # --- Generic record access ---

    def _record(self, category, record_id, not_found=RecordNotFound):
        try:
            return Record.objects.get(category=category, pk=int(record_id))
        except (Record.DoesNotExist, TypeError, ValueError):
            raise not_found(
                f"{category.replace('_', ' ').capitalize()} "
                f"'{record_id}' does not exist."
            ) from None

    def _load(self, record):
        data = upgrade_record(record.category, record.data)
        data["id"] = str(record.pk)
        return parse_payload(SCHEMAS[record.category], data)

    def _list(self, category):
        return [
            self._load(record)
            for record in Record.objects.filter(category=category)
        ]

    def _dump(self, entity):
        return entity.model_dump(
            mode="json", exclude={"id"}, exclude_none=True
        )

    def _create(self, category, data, key=None):
        if key:
            existing = Record.objects.filter(
                category=category, key=key
            ).first()
            if existing is not None:
                logger.info(
                    "Create of %s with key %s matched record %s",
                    category,
                    key,
                    existing.pk,
                )
                return self._load(existing)

        actor = self.get_current_actor()
        now = timezone.now()
        payload = dict(data)
        payload.pop("id", None)
        payload.update(
            schema_version=CURRENT_SCHEMA_VERSION,
            created_at=now,
            created_by=actor.id,
            created_by_name=actor.name,
            last_modified_at=now,
            last_modified_by=actor.id,
            last_modified_by_name=actor.name,
        )
        entity = parse_payload(SCHEMAS[category], payload)

        try:
            with db_transaction.atomic():
                record = Record.objects.create(
                    category=category, key=key or None, data=self._dump(entity)
                )
        except IntegrityError:
            # Another request created the keyed record first
            if not key:
                raise
            record = Record.objects.get(category=category, key=key)
        return self._load(record)

    def _update(self, category, record_id, patch, not_found=RecordNotFound):
        record = self._record(category, record_id, not_found)
        merged = upgrade_record(category, record.data)
        for field, value in patch.items():
            if value is None:
                merged.pop(field, None)
            else:
                merged[field] = value
        actor = self.get_current_actor()
        merged.pop("id", None)
        merged.update(
            last_modified_at=timezone.now(),
            last_modified_by=actor.id,
            last_modified_by_name=actor.name,
        )
        merged["id"] = str(record.pk)
        entity = parse_payload(SCHEMAS[category], merged)
        record.data = self._dump(entity)
        record.save(update_fields=["data", "modified_at"])
        return entity

    def _delete(self, category, record_id):
        try:
            pk = int(record_id)
        except (TypeError, ValueError):
            return False
        deleted, _ = Record.objects.filter(category=category, pk=pk).delete()
        return bool(deleted)

    # --- Assets ---

    def get_asset(self, asset_id) -> Asset:
        return self._load(self._record("asset", asset_id, AssetNotFound))

    def get_assets(
        self, asset_type_id=None, status=None, parent_asset_id=None
    ) -> list[Asset]:
        assets = self._list("asset")
        if asset_type_id is not None:
            assets = [
                a
                for a in assets
                if a.asset_type is not None
                and a.asset_type.id == str(asset_type_id)
            ]
        if status is not None:
            assets = [a for a in assets if a.status == status]
        if parent_asset_id is not None:
            assets = [
                a for a in assets if a.parent_asset_id == str(parent_asset_id)
            ]
        return assets

    def create_asset(self, data, key=None) -> Asset:
        return self._create("asset", data, key=key)

    def update_asset(self, asset_id, patch) -> Asset:
        return self._update("asset", asset_id, patch, AssetNotFound)

    # --- Bookings ---

    def get_booking(self, booking_id) -> Booking:
        return self._load(
            self._record("booking", booking_id, BookingNotFound)
        )

    def get_booking_by_key(self, key):
        record = Record.objects.filter(category="booking", key=key).first()
        return self._load(record) if record is not None else None

    def get_bookings(
        self, asset_id=None, kit_id=None, status=None, start=None, end=None
    ) -> list[Booking]:
        bookings = self._list("booking")
        if asset_id is not None:
            bookings = [
                b for b in bookings if b.references_asset(str(asset_id))
            ]
        if kit_id is not None:
            bookings = [
                b
                for b in bookings
                if b.kit is not None and b.kit.id == str(kit_id)
            ]
        if status is not None:
            wanted = {status} if isinstance(status, str) else set(status)
            bookings = [b for b in bookings if b.status in wanted]
        if start is not None and end is not None:
            start = parse_moment(start, "start")
            end = parse_moment(end, "end")
            bookings = [
                b
                for b in bookings
                if windows_overlap(b.start_date, b.end_date, start, end)
            ]
        return bookings

    def create_booking_record(self, payload, key=None) -> Booking:
        return self._create("booking", payload, key=key)

    def update_booking_record(self, booking_id, patch) -> Booking:
        return self._update("booking", booking_id, patch, BookingNotFound)

    def delete_booking_record(self, booking_id) -> bool:
        return self._delete("booking", booking_id)

    def claim_blocking_write(self, booking_id) -> int:
        """Return the next value of the store-wide blocking write sequence.

        Call only once the blocking booking is stored, so a later claim
        always belongs to a writer that can see this one.
        """
        return BlockingClaim.objects.create(booking_id=str(booking_id)).pk

    # --- Asset groups ---

    def get_asset_group(self, group_id):
        """Return the group, or ``None`` when no such group exists."""
        try:
            return self._load(self._record("asset_group", group_id))
        except RecordNotFound:
            return None

    def get_asset_groups(self, member_asset_id=None) -> list[AssetGroup]:
        groups = self._list("asset_group")
        if member_asset_id is not None:
            groups = [
                g for g in groups if str(member_asset_id) in g.member_asset_ids
            ]
        return groups

    def _with_member_count(self, data):
        data = dict(data)
        if "member_asset_ids" in data and "member_count" not in data:
            members = data["member_asset_ids"] or []
            data["member_count"] = len(dict.fromkeys(str(m) for m in members))
        return data

    def create_asset_group(self, data, key=None) -> AssetGroup:
        data = self._with_member_count(
            {"member_asset_ids": [], **dict(data)}
        )
        return self._create("asset_group", data, key=key)

    def update_asset_group(self, group_id, patch) -> AssetGroup:
        return self._update(
            "asset_group", group_id, self._with_member_count(patch)
        )

    def delete_asset_group(self, group_id) -> bool:
        return self._delete("asset_group", group_id)

    # --- Kits ---

    def get_kit(self, kit_id) -> Kit:
        return self._load(self._record("kit", kit_id, KitNotFound))

    def get_kits(self) -> list[Kit]:
        return self._list("kit")

    def create_kit(self, data, key=None) -> Kit:
        return self._create("kit", data, key=key)

    def update_kit(self, kit_id, patch) -> Kit:
        return self._update("kit", kit_id, patch, KitNotFound)

    def delete_kit_record(self, kit_id) -> bool:
        return self._delete("kit", kit_id)

    # --- Change history ---

    def record_change(
        self, entity_type, entity_id, entity_name, action, changes=None
    ) -> ChangeEntry:
        actor = self.get_current_actor()
        return ChangeEntry.objects.create(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entity_name=entity_name or "",
            action=action,
            changes=changes or [],
            changed_by=actor.id,
            changed_by_name=actor.name,
        )

    def get_changes(self, entity_type, entity_id) -> list[ChangeEntry]:
        return list(
            ChangeEntry.objects.filter(
                entity_type=entity_type, entity_id=str(entity_id)
            )
        )
