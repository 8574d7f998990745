"""Status vocabularies and shared constants for inventory records."""

from django.db import models


class AssetStatus(models.TextChoices):
    AVAILABLE = "available", "Available"
    IN_USE = "in-use", "In Use"
    BROKEN = "broken", "Broken"
    SOLD = "sold", "Sold"
    DESTROYED = "destroyed", "Destroyed"
    DELETED = "deleted", "Deleted"


class BookingStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class BookingMode(models.TextChoices):
    DATE_RANGE = "date-range", "Date Range"
    SINGLE_DAY = "single-day", "Single Day"


class KitType(models.TextChoices):
    FIXED = "fixed", "Fixed"
    FLEXIBLE = "flexible", "Flexible"


class FieldSource(models.TextChoices):
    GROUP = "group", "Group"
    LOCAL = "local", "Local"
    OVERRIDE = "override", "Override"


class ConditionRating(models.TextChoices):
    EXCELLENT = "excellent", "Excellent"
    GOOD = "good", "Good"
    FAIR = "fair", "Fair"
    POOR = "poor", "Poor"
    DAMAGED = "damaged", "Damaged"


# Asset statuses that refuse any new booking
BLOCKED_ASSET_STATUSES = (
    AssetStatus.BROKEN,
    AssetStatus.SOLD,
    AssetStatus.DESTROYED,
    AssetStatus.DELETED,
)

# Booking statuses that hold an asset for their window
BLOCKING_BOOKING_STATUSES = (BookingStatus.APPROVED, BookingStatus.ACTIVE)

# Bookings in these statuses keep a kit from being deleted
OPEN_BOOKING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.APPROVED,
    BookingStatus.ACTIVE,
)

# Field-source keys for custom fields are "custom:<field id>"
CUSTOM_FIELD_PREFIX = "custom:"
