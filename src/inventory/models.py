"""Models for the Rigbook record store."""

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class Record(models.Model):
    """A category-tagged JSON payload.

    The store knows nothing about the payload's shape; typed access and
    schema upgrades live in ``inventory.services.records``.
    """

    CATEGORY_CHOICES = [
        ("asset", "Asset"),
        ("asset_group", "Asset Group"),
        ("kit", "Kit"),
        ("booking", "Booking"),
    ]

    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES)
    key = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Caller-supplied key; repeated creates with it return "
        "the existing record",
    )
    data = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    modified_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["category"], name="idx_record_category"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["category", "key"],
                name="unique_record_key",
            ),
        ]

    def __str__(self):
        return f"{self.get_category_display()} #{self.pk}"


class ChangeEntry(models.Model):
    """Immutable change history for inventory records."""

    ACTION_CHOICES = [
        ("created", "Created"),
        ("updated", "Updated"),
        ("deleted", "Deleted"),
    ]

    entity_type = models.CharField(
        max_length=20, choices=Record.CATEGORY_CHOICES
    )
    entity_id = models.CharField(max_length=64)
    entity_name = models.CharField(max_length=255, blank=True)
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    changes = models.JSONField(
        default=list,
        blank=True,
        help_text="List of {field, old_value, new_value} entries",
    )
    changed_by = models.CharField(max_length=64, blank=True)
    changed_by_name = models.CharField(max_length=255, blank=True)
    changed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-changed_at", "-id"]
        verbose_name_plural = "change entries"
        indexes = [
            models.Index(
                fields=["entity_type", "entity_id"],
                name="idx_change_entity",
            ),
        ]

    def __str__(self):
        return (
            f"{self.entity_type} {self.entity_id} "
            f"{self.get_action_display()} by {self.changed_by_name}"
        )

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError(
                "Change entries are immutable and cannot be modified."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Change entries are immutable and cannot be deleted."
        )


class BlockingClaim(models.Model):
    """Write-order sequence for bookings that became blocking.

    A claim is taken after the blocking write is stored; its id orders
    overlapping bookings so the later writer can undo itself.
    """

    booking_id = models.CharField(max_length=64)
    claimed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"Claim #{self.pk} for booking {self.booking_id}"
