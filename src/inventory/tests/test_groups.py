"""Tests for asset group membership and field inheritance."""

import pytest

from django.core.exceptions import ValidationError

from inventory.exceptions import GroupNotFound, StateError
from inventory.schemas import AssetGroup
from inventory.services.groups import (
    add_asset_to_group,
    bulk_update_group_members,
    compute_field_sources,
    create_group_members,
    delete_asset_group,
    dissolve_asset_group,
    reassign_asset_to_group,
    remove_asset_from_group,
    resolve_asset_field_value,
    update_asset_group,
)

INHERIT = {"inherited": True, "overridable": True}


class TestComputeFieldSources:
    def _group(self, **fields):
        return AssetGroup(id="1", name="Wash lights", **fields)

    def test_inherited_fields_become_group(self):
        group = self._group(
            inheritance_rules={"manufacturer": INHERIT, "model": {}},
            custom_field_rules={"7": INHERIT},
        )
        assert compute_field_sources(group) == {
            "manufacturer": "group",
            "custom:7": "group",
        }

    def test_overrides_kept(self):
        group = self._group(inheritance_rules={"manufacturer": INHERIT})
        sources = compute_field_sources(group, {"manufacturer": "override"})
        assert sources == {"manufacturer": "override"}

    def test_non_overridable_rule_wins(self):
        group = self._group(
            inheritance_rules={
                "manufacturer": {"inherited": True, "overridable": False}
            }
        )
        sources = compute_field_sources(group, {"manufacturer": "override"})
        assert sources == {"manufacturer": "group"}

    def test_stale_group_entries_dropped(self):
        group = self._group(inheritance_rules={})
        sources = compute_field_sources(
            group, {"manufacturer": "group", "location": "local"}
        )
        assert sources == {"location": "local"}


class TestResolveAssetFieldValue:
    def test_asset_without_group_is_local(self, store, make_asset):
        asset = make_asset(manufacturer="Robe")
        result = resolve_asset_field_value(store, asset.id, "manufacturer")
        assert result.source == "local"
        assert result.value == "Robe"

    def test_inherited_field_comes_from_group(
        self, store, make_asset, make_group
    ):
        asset = make_asset(manufacturer="Robe", status="available")
        make_group(
            members=[asset],
            manufacturer="Martin",
            inheritance_rules={"manufacturer": INHERIT},
        )

        manufacturer = resolve_asset_field_value(
            store, asset.id, "manufacturer"
        )
        assert manufacturer.source == "group"
        assert manufacturer.value == "Martin"

        status = resolve_asset_field_value(store, asset.id, "status")
        assert status.source == "local"
        assert status.value == "available"

    def test_override_uses_asset_value(self, store, make_asset, make_group):
        asset = make_asset(
            manufacturer="Robe", field_sources={"manufacturer": "override"}
        )
        make_group(
            members=[asset],
            manufacturer="Martin",
            inheritance_rules={"manufacturer": INHERIT},
        )
        result = resolve_asset_field_value(store, asset.id, "manufacturer")
        assert result.source == "override"
        assert result.value == "Robe"

    def test_custom_field_from_shared_values(
        self, store, make_asset, make_group
    ):
        asset = make_asset(custom_field_values={"7": "IP65"})
        make_group(
            members=[asset],
            custom_field_rules={"7": INHERIT},
            shared_custom_fields={"7": "IP20"},
        )
        result = resolve_asset_field_value(store, asset.id, "custom:7")
        assert result.source == "group"
        assert result.value == "IP20"

    def test_dangling_group_reference_is_local(
        self, store, make_asset
    ):
        asset = make_asset(
            manufacturer="Robe",
            asset_group={"id": "9999", "name": "Gone"},
        )
        result = resolve_asset_field_value(store, asset.id, "manufacturer")
        assert result.source == "local"


class TestMembership:
    def test_create_links_both_sides(self, store, make_asset, make_group):
        a, b = make_asset(), make_asset()
        group = make_group(
            members=[a, b], inheritance_rules={"manufacturer": INHERIT}
        )

        assert group.member_asset_ids == [a.id, b.id]
        assert group.member_count == 2
        member = store.get_asset(a.id)
        assert member.asset_group.id == group.id
        assert member.field_sources == {"manufacturer": "group"}

    def test_create_requires_name(self, store):
        from inventory.services.groups import create_asset_group

        with pytest.raises(ValidationError, match="name"):
            create_asset_group(store, {"name": "  "})

    def test_add_and_remove(self, store, make_asset, make_group):
        group = make_group()
        asset = make_asset()

        group = add_asset_to_group(store, group.id, asset.id)
        assert group.member_asset_ids == [asset.id]
        assert store.get_asset(asset.id).asset_group.id == group.id

        group = remove_asset_from_group(store, group.id, asset.id)
        assert group.member_asset_ids == []
        assert group.member_count == 0
        released = store.get_asset(asset.id)
        assert released.asset_group is None
        assert released.field_sources == {}

    def test_add_twice_is_idempotent(self, store, make_asset, make_group):
        asset = make_asset()
        group = make_group(members=[asset])
        group = add_asset_to_group(store, group.id, asset.id)
        assert group.member_asset_ids == [asset.id]

    def test_remove_non_member(self, store, make_asset, make_group):
        group = make_group()
        with pytest.raises(ValidationError, match="not a member"):
            remove_asset_from_group(store, group.id, make_asset().id)

    def test_deleted_asset_cannot_join(self, store, make_asset, make_group):
        group = make_group()
        with pytest.raises(ValidationError, match="deleted"):
            add_asset_to_group(store, group.id, make_asset(status="deleted").id)

    def test_member_of_other_group_needs_reassign(
        self, store, make_asset, make_group
    ):
        asset = make_asset()
        make_group(members=[asset])
        other = make_group()
        with pytest.raises(ValidationError, match="Reassign"):
            add_asset_to_group(store, other.id, asset.id)

    def test_asset_type_must_match(self, store, make_asset, make_group):
        group = make_group(asset_type={"id": "1", "name": "Light"})
        asset = make_asset(asset_type={"id": "2", "name": "Speaker"})
        with pytest.raises(ValidationError, match="Speaker"):
            add_asset_to_group(store, group.id, asset.id)

    def test_reassign_moves_both_sides(self, store, make_asset, make_group):
        asset = make_asset()
        source = make_group(members=[asset])
        target = make_group(inheritance_rules={"model": INHERIT})

        moved = reassign_asset_to_group(store, asset.id, target.id)
        assert moved.asset_group.id == target.id
        assert moved.field_sources == {"model": "group"}
        assert store.get_asset_group(source.id).member_asset_ids == []
        assert store.get_asset_group(target.id).member_asset_ids == [asset.id]

    def test_dissolve_releases_members(self, store, make_asset, make_group):
        a, b = make_asset(), make_asset()
        group = make_group(members=[a, b])
        dissolved = dissolve_asset_group(store, group.id)
        assert dissolved.member_asset_ids == []
        assert store.get_asset(a.id).asset_group is None
        assert store.get_asset_group(group.id) is not None

    def test_delete_refused_with_members(self, store, make_asset, make_group):
        group = make_group(members=[make_asset()])
        with pytest.raises(StateError, match="1 member asset"):
            delete_asset_group(store, group.id)

    def test_delete_with_reassign_releases_members(
        self, store, make_asset, make_group
    ):
        asset = make_asset()
        group = make_group(members=[asset])
        delete_asset_group(store, group.id, reassign_assets=True)
        assert store.get_asset_group(group.id) is None
        assert store.get_asset(asset.id).asset_group is None

    def test_delete_unknown_is_noop(self, store):
        delete_asset_group(store, "424242")

    def test_unknown_group(self, store, make_asset):
        with pytest.raises(GroupNotFound):
            add_asset_to_group(store, "424242", make_asset().id)

    def test_create_group_members(self, store, make_group):
        group = make_group(
            name="Par Can",
            asset_type={"id": "3", "name": "Light"},
            inheritance_rules={"manufacturer": INHERIT},
        )
        members = create_group_members(store, group.id, 2)

        assert [m.name for m in members] == ["Par Can #1", "Par Can #2"]
        assert all(m.asset_group.id == group.id for m in members)
        assert all(m.asset_type.id == "3" for m in members)
        assert store.get_asset_group(group.id).member_count == 2

    def test_create_group_members_count(self, store, make_group):
        with pytest.raises(ValidationError, match="count"):
            create_group_members(store, make_group().id, 0)

    def test_rule_change_updates_member_sources(
        self, store, make_asset, make_group
    ):
        asset = make_asset()
        group = make_group(members=[asset])
        update_asset_group(
            store, group.id, {"inheritance_rules": {"location": INHERIT}}
        )
        assert store.get_asset(asset.id).field_sources == {
            "location": "group"
        }

    def test_update_rejects_membership_changes(self, store, make_group):
        with pytest.raises(ValidationError, match="membership"):
            update_asset_group(
                store, make_group().id, {"member_asset_ids": ["1"]}
            )


class TestBulkUpdateGroupMembers:
    def test_patch_skips_overridden_fields(
        self, store, make_asset, make_group
    ):
        plain = make_asset(location="Store A")
        pinned = make_asset(
            location="Truck 2", field_sources={"location": "override"}
        )
        group = make_group(members=[plain, pinned])

        bulk_update_group_members(store, group.id, {"location": "Store B"})
        assert store.get_asset(plain.id).location == "Store B"
        assert store.get_asset(pinned.id).location == "Truck 2"

    def test_custom_field_patch_respects_overrides(
        self, store, make_asset, make_group
    ):
        plain = make_asset(custom_field_values={"7": "old", "8": "keep"})
        pinned = make_asset(
            custom_field_values={"7": "mine"},
            field_sources={"custom:7": "override"},
        )
        group = make_group(members=[plain, pinned])

        bulk_update_group_members(
            store, group.id, {"custom_field_values": {"7": "new"}}
        )
        assert store.get_asset(plain.id).custom_field_values == {
            "7": "new",
            "8": "keep",
        }
        assert store.get_asset(pinned.id).custom_field_values == {"7": "mine"}

    def test_clear_overrides_pushes_group_values(
        self, store, make_asset, make_group
    ):
        pinned = make_asset(
            manufacturer="Robe",
            model="Old",
            custom_field_values={"7": "IP65", "9": "stale"},
            field_sources={"manufacturer": "override"},
        )
        group = make_group(
            members=[pinned],
            manufacturer="Martin",
            inheritance_rules={
                "manufacturer": INHERIT,
                "model": INHERIT,
            },
            custom_field_rules={"7": INHERIT, "9": INHERIT},
            shared_custom_fields={"7": "IP20"},
        )

        (member,) = bulk_update_group_members(
            store, group.id, {}, clear_overrides=True
        )
        assert member.manufacturer == "Martin"
        # Group has no model value, so the member's is cleared
        assert member.model is None
        assert member.custom_field_values == {"7": "IP20"}
        assert member.field_sources == {
            "manufacturer": "group",
            "model": "group",
            "custom:7": "group",
            "custom:9": "group",
        }
        assert (
            resolve_asset_field_value(store, member.id, "manufacturer").source
            == "group"
        )

    @pytest.mark.parametrize("field", ["asset_group", "id", "asset_number"])
    def test_protected_fields(self, store, make_group, field):
        with pytest.raises(ValidationError, match=field):
            bulk_update_group_members(store, make_group().id, {field: "x"})

    def test_empty_group(self, store, make_group):
        assert bulk_update_group_members(
            store, make_group().id, {"location": "X"}
        ) == []
