"""Shared pytest fixtures for Rigbook tests."""

from datetime import datetime, timezone

import pytest

from inventory.factories import (
    AssetRecordFactory,
    BookingRecordFactory,
    KitRecordFactory,
    UserFactory,
)
from inventory.services.records import RecordStore


def _moment(value):
    """Aware UTC datetime from an ISO string without offset."""
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


@pytest.fixture
def user(db):
    return UserFactory(first_name="Avery", last_name="Stone")


@pytest.fixture
def store(user):
    return RecordStore(user=user)


@pytest.fixture
def system_store(db):
    return RecordStore()


def _data_kwargs(fields):
    return {f"data__{key}": value for key, value in fields.items()}


@pytest.fixture
def make_asset(store):
    """Store an asset payload and return it as the store reads it."""

    def _make(**fields):
        record = AssetRecordFactory(**_data_kwargs(fields))
        return store.get_asset(record.pk)

    return _make


@pytest.fixture
def make_booking(store):
    """Store a booking payload for an asset (approved by default)."""

    def _make(
        asset=None, start="2025-10-25T09:00", end="2025-10-25T17:00", **fields
    ):
        if asset is not None:
            fields["asset"] = {
                "id": asset.id,
                "asset_number": asset.asset_number,
                "name": asset.name,
            }
        fields["start_date"] = _moment(start).isoformat()
        fields["end_date"] = _moment(end).isoformat()
        record = BookingRecordFactory(**_data_kwargs(fields))
        return store.get_booking(record.pk)

    return _make


@pytest.fixture
def make_kit(store):
    def _make(**fields):
        record = KitRecordFactory(**_data_kwargs(fields))
        return store.get_kit(record.pk)

    return _make


@pytest.fixture
def make_group(store):
    """Create a group through the service so both sides stay in sync."""
    from inventory.services.groups import create_asset_group

    counter = iter(range(1, 1000))

    def _make(members=(), **fields):
        fields.setdefault("name", f"Group {next(counter)}")
        return create_asset_group(
            store, fields, member_asset_ids=[m.id for m in members]
        )

    return _make
