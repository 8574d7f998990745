"""Factory Boy factories for Rigbook test data generation.

Record factories write payloads straight into the store, the way existing
data would be found there, bypassing the services.
"""

import factory
from factory.django import DjangoModelFactory

from inventory.upgrades import CURRENT_SCHEMA_VERSION


class UserFactory(DjangoModelFactory):
    """Factory for the Django auth User model."""

    class Meta:
        model = "auth.User"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    first_name = factory.Faker("first_name")
    last_name = factory.Faker("last_name")
    is_active = True

    @factory.post_generation
    def password(self, create, extracted, **kwargs):
        pwd = extracted or "testpass123!"
        self.set_password(pwd)
        if create:
            self.save(update_fields=["password"])


class RecordFactory(DjangoModelFactory):
    class Meta:
        model = "inventory.Record"

    category = "asset"
    key = None
    data = factory.Dict({"schema_version": CURRENT_SCHEMA_VERSION})


class AssetRecordFactory(RecordFactory):
    category = "asset"
    data = factory.Dict(
        {
            "schema_version": CURRENT_SCHEMA_VERSION,
            "asset_number": factory.Sequence(lambda n: f"TEST-{n:05d}"),
            "name": factory.Sequence(lambda n: f"Moving Head {n}"),
            "status": "available",
            "bookable": True,
            "is_parent": False,
            "child_asset_ids": [],
            "custom_field_values": {},
            "field_sources": {},
        }
    )


class AssetGroupRecordFactory(RecordFactory):
    category = "asset_group"
    data = factory.Dict(
        {
            "schema_version": CURRENT_SCHEMA_VERSION,
            "group_number": factory.Sequence(lambda n: f"GRP-{n:03d}"),
            "name": factory.Sequence(lambda n: f"Group {n}"),
            "member_asset_ids": [],
            "member_count": 0,
            "inheritance_rules": {},
            "custom_field_rules": {},
            "shared_custom_fields": {},
        }
    )


class KitRecordFactory(RecordFactory):
    category = "kit"
    data = factory.Dict(
        {
            "schema_version": CURRENT_SCHEMA_VERSION,
            "name": factory.Sequence(lambda n: f"Kit {n}"),
            "kit_type": "fixed",
            "bound_assets": [],
            "pool_requirements": [],
        }
    )


class BookingRecordFactory(RecordFactory):
    category = "booking"
    data = factory.Dict(
        {
            "schema_version": CURRENT_SCHEMA_VERSION,
            "asset": None,
            "quantity": 1,
            "booking_mode": "date-range",
            "start_date": "2025-10-25T09:00:00+00:00",
            "end_date": "2025-10-25T17:00:00+00:00",
            "status": "approved",
            "purpose": factory.Sequence(lambda n: f"Show {n}"),
            "booked_by_id": "system",
            "booked_by_name": "System",
        }
    )
