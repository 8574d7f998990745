"""Typed views over record-store payloads.

The record store holds schema-less JSON. These pydantic models are what
the services work with: payloads are upgraded (``inventory.upgrades``),
validated into a model on read, and dumped back to JSON on write.
"""

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from django.core.exceptions import ValidationError
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .constants import (
    BLOCKED_ASSET_STATUSES,
    CUSTOM_FIELD_PREFIX,
    AssetStatus,
    BookingMode,
    BookingStatus,
    ConditionRating,
    FieldSource,
    KitType,
)
from .upgrades import CURRENT_SCHEMA_VERSION


def coerce_moment(value):
    """Parse a date, datetime or ISO string into an aware datetime.

    Dates become midnight; naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is None:
            day = parse_date(value)
            if day is None:
                raise ValueError(f"'{value}' is not a valid date or datetime.")
            parsed = dt.datetime.combine(day, dt.time.min)
        value = parsed
    elif isinstance(value, dt.date) and not isinstance(value, dt.datetime):
        value = dt.datetime.combine(value, dt.time.min)
    elif not isinstance(value, dt.datetime):
        raise ValueError(f"'{value}' is not a valid date or datetime.")
    if timezone.is_naive(value):
        value = timezone.make_aware(value, dt.timezone.utc)
    return value


def parse_moment(value, field="date"):
    """Like ``coerce_moment``, raising ValidationError for bad input."""
    try:
        return coerce_moment(value)
    except ValueError as exc:
        raise ValidationError(f"{field}: {exc}") from exc


def parse_payload(schema, data):
    """Validate ``data`` into ``schema``, raising Django's ValidationError."""
    try:
        return schema.model_validate(data)
    except SchemaError as exc:
        messages = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "payload"
            messages.append(f"{field}: {error['msg']}")
        raise ValidationError(messages) from exc


def _id_to_reference(value):
    # Allow a bare id wherever a reference is expected
    if isinstance(value, (str, int)):
        return {"id": str(value)}
    return value


# --- References & small value objects ---


class Reference(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str = ""


class AssetReference(Reference):
    asset_number: str = ""


class GroupReference(Reference):
    group_number: str | None = None


class Actor(BaseModel):
    id: str
    name: str


class InUseBy(BaseModel):
    person_id: str
    person_name: str = ""
    since: dt.datetime


class ConditionAssessment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rating: ConditionRating
    notes: str = ""
    photos: list[str] = Field(default_factory=list)


class InheritanceRule(BaseModel):
    inherited: bool = False
    overridable: bool = True


# --- Stored records ---


class RecordModel(BaseModel):
    """Fields every stored record carries."""

    model_config = ConfigDict(
        extra="allow",
        protected_namespaces=(),
        coerce_numbers_to_str=True,
    )

    id: str = ""
    schema_version: int = CURRENT_SCHEMA_VERSION
    created_at: dt.datetime | None = None
    created_by: str | None = None
    created_by_name: str | None = None
    last_modified_at: dt.datetime | None = None
    last_modified_by: str | None = None
    last_modified_by_name: str | None = None


class Asset(RecordModel):
    asset_number: str = ""
    name: str = ""
    asset_type: Reference | None = None
    status: AssetStatus = AssetStatus.AVAILABLE
    bookable: bool = True
    is_parent: bool = False
    parent_asset_id: str | None = None
    child_asset_ids: list[str] = Field(default_factory=list)
    manufacturer: str | None = None
    model: str | None = None
    model_number: str | None = None
    description: str | None = None
    location: str | None = None
    in_use_by: InUseBy | None = None
    current_booking_id: str | None = None
    damage_notes: str | None = None
    asset_group: GroupReference | None = None
    field_sources: dict[str, FieldSource] = Field(default_factory=dict)
    custom_field_values: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_blocked(self):
        return self.status in BLOCKED_ASSET_STATUSES

    def reference(self):
        return AssetReference(
            id=self.id, asset_number=self.asset_number, name=self.name
        )

    def field_value(self, field_key):
        """Return the asset's own stored value for a field key."""
        if field_key.startswith(CUSTOM_FIELD_PREFIX):
            return self.custom_field_values.get(
                field_key[len(CUSTOM_FIELD_PREFIX):]
            )
        return getattr(self, field_key, None)


class AssetGroup(RecordModel):
    group_number: str | None = None
    name: str = ""
    barcode: str | None = None
    asset_type: Reference | None = None
    manufacturer: str | None = None
    model: str | None = None
    model_number: str | None = None
    description: str | None = None
    inheritance_rules: dict[str, InheritanceRule] = Field(default_factory=dict)
    custom_field_rules: dict[str, InheritanceRule] = Field(
        default_factory=dict
    )
    shared_custom_fields: dict[str, Any] = Field(default_factory=dict)
    member_asset_ids: list[str] = Field(default_factory=list)
    member_count: int = 0

    @field_validator("member_asset_ids", mode="before")
    @classmethod
    def _unique_members(cls, value):
        if value is None:
            return []
        return list(dict.fromkeys(str(member) for member in value))

    @field_validator("group_number", mode="before")
    @classmethod
    def _strip_group_number(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def label(self):
        return f"{self.group_number} ({self.name})" if self.group_number else (
            self.name or self.id
        )

    def reference(self):
        return GroupReference(
            id=self.id, group_number=self.group_number, name=self.name
        )


class BoundAsset(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    asset_id: str
    asset_number: str = ""
    name: str = ""
    inherits: dict[str, bool] = Field(default_factory=dict)


class PoolRequirement(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    asset_type_id: str
    asset_type_name: str = ""
    quantity: int = 1
    filters: dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self):
        return self.asset_type_name or self.asset_type_id


class Kit(RecordModel):
    name: str = ""
    description: str | None = None
    kit_type: KitType
    location: str | None = None
    bound_assets: list[BoundAsset] = Field(default_factory=list)
    pool_requirements: list[PoolRequirement] = Field(default_factory=list)

    def reference(self):
        return Reference(id=self.id, name=self.name)


class Booking(RecordModel):
    asset: AssetReference | None = None
    kit: Reference | None = None
    group: GroupReference | None = None
    quantity: int = 1
    allocated_child_assets: list[AssetReference] = Field(default_factory=list)
    kit_assets: list[AssetReference] = Field(default_factory=list)
    booking_mode: BookingMode = BookingMode.DATE_RANGE
    date: dt.date | None = None
    start_time: dt.time | None = None
    end_time: dt.time | None = None
    start_date: dt.datetime
    end_date: dt.datetime
    purpose: str = ""
    notes: str | None = None
    status: BookingStatus = BookingStatus.PENDING
    booked_by_id: str | None = None
    booked_by_name: str | None = None
    booking_for_id: str | None = None
    booking_for_name: str | None = None
    approved_by: str | None = None
    approved_by_name: str | None = None
    approved_at: dt.datetime | None = None
    blocking_seq: int | None = None
    checked_out_at: dt.datetime | None = None
    checked_out_by: str | None = None
    checked_out_by_name: str | None = None
    checked_in_at: dt.datetime | None = None
    checked_in_by: str | None = None
    checked_in_by_name: str | None = None
    condition_on_check_out: ConditionAssessment | None = None
    condition_on_check_in: ConditionAssessment | None = None
    damage_reported: bool = False
    damage_notes: str | None = None
    cancellation_reason: str | None = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_moment(cls, value):
        return coerce_moment(value)

    @property
    def target_label(self):
        if self.kit is not None:
            return f"kit {self.kit.name or self.kit.id}"
        if self.asset is not None:
            return f"asset {self.asset.asset_number or self.asset.id}"
        return "no target"

    def custody_asset_ids(self):
        """Ids of the concrete assets this booking holds.

        Quantity bookings hold their allocated children rather than the
        parent; kit bookings hold the kit's concrete assets.
        """
        if self.allocated_child_assets:
            ids = [child.id for child in self.allocated_child_assets]
        elif self.asset is not None:
            ids = [self.asset.id]
        else:
            ids = []
        ids.extend(asset.id for asset in self.kit_assets)
        return list(dict.fromkeys(ids))

    def claimed_before(self, other):
        """True if this booking started blocking before ``other``.

        ``blocking_seq`` is taken from the store after the blocking write
        is visible. A blocking booking without one predates claims or is
        between its write and its claim, and counts as earlier.
        """
        if self.blocking_seq is None:
            return True
        if other.blocking_seq is None:
            return False
        return self.blocking_seq < other.blocking_seq

    def references_asset(self, asset_id):
        if self.asset is not None and self.asset.id == asset_id:
            return True
        return asset_id in self.custody_asset_ids()


# --- Requests & results ---


class BookingRequest(BaseModel):
    """Input accepted by ``create_booking``."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    asset: AssetReference | None = None
    kit: Reference | None = None
    group: GroupReference | None = None
    quantity: int = 1
    booking_mode: BookingMode = BookingMode.DATE_RANGE
    start_date: dt.datetime | None = None
    end_date: dt.datetime | None = None
    date: dt.date | None = None
    start_time: dt.time | None = None
    end_time: dt.time | None = None
    purpose: str = ""
    notes: str | None = None
    status: BookingStatus | None = None
    booked_by_id: str | None = None
    booked_by_name: str | None = None
    booking_for_id: str | None = None
    booking_for_name: str | None = None
    request_key: str | None = None

    @field_validator("asset", "kit", "group", mode="before")
    @classmethod
    def _accept_bare_id(cls, value):
        return _id_to_reference(value)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_moment(cls, value):
        return coerce_moment(value)


class AllocationCandidate(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    asset_number: str = ""
    name: str = ""
    status: AssetStatus = AssetStatus.AVAILABLE
    bookable: bool = True
    is_available: bool = True
    current_booking_id: str | None = None

    @classmethod
    def from_asset(cls, asset, is_available=True):
        return cls(
            id=asset.id,
            asset_number=asset.asset_number,
            name=asset.name,
            status=asset.status,
            bookable=asset.bookable,
            is_available=is_available,
            current_booking_id=asset.current_booking_id,
        )

    def reference(self):
        return AssetReference(
            id=self.id, asset_number=self.asset_number, name=self.name
        )


class Shortage(BaseModel):
    requested: int
    available: int
    missing: int
    message: str


class AllocationResult(BaseModel):
    status: Literal["fulfilled", "shortage"]
    allocated: list[AllocationCandidate] = Field(default_factory=list)
    shortage: Shortage | None = None

    @property
    def fulfilled(self):
        return self.status == "fulfilled"


class KitAvailability(BaseModel):
    available: bool
    unavailable_assets: list[str] = Field(default_factory=list)
    reason: str | None = None


class FieldResolution(BaseModel):
    value: Any = None
    source: FieldSource


class GroupBookingSuccess(BaseModel):
    asset_id: str
    booking: Booking


class GroupBookingFailure(BaseModel):
    asset_id: str
    error: str


class GroupBookingResult(BaseModel):
    successes: list[GroupBookingSuccess] = Field(default_factory=list)
    failures: list[GroupBookingFailure] = Field(default_factory=list)
