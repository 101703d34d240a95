# Overview: Pytest coverage for the three-tier role tag and catalog records.

import pytest

from rrfc.errors import InvalidStateError, NotFoundError, PolicyViolationError
from rrfc.models import AppUser, Role
from rrfc.services import catalog_service


class TestRoleTag:
    @pytest.mark.parametrize("raw,expected", [
        ("admin", Role.ADMIN),
        ("Manager", Role.MANAGER),
        (" user ", Role.USER),
        (Role.ADMIN, Role.ADMIN),
    ])
    def test_parse(self, raw, expected):
        assert Role.parse(raw) is expected

    @pytest.mark.parametrize("raw", ["cashier", "", None, 3])
    def test_unknown_rejected(self, raw):
        with pytest.raises(PolicyViolationError) as excinfo:
            Role.parse(raw)
        assert excinfo.value.field == "role"

    def test_can_correct(self):
        assert Role.ADMIN.can_correct
        assert Role.MANAGER.can_correct
        assert not Role.USER.can_correct


class TestUsers:
    def test_create_user_normalizes(self, db_session):
        user = catalog_service.create_user(email="Ops@RRFC.local", role="MANAGER")
        assert user.email == "ops@rrfc.local"
        assert user.role == "manager"
        assert user.role_tag is Role.MANAGER

    def test_create_user_rejects_unknown_role(self, db_session):
        with pytest.raises(PolicyViolationError):
            catalog_service.create_user(email="x@rrfc.local", role="superuser")
        assert db_session.query(AppUser).count() == 0

    def test_model_rejects_unknown_role(self, db_session):
        with pytest.raises(PolicyViolationError):
            AppUser(email="y@rrfc.local", role="owner")

    def test_duplicate_email(self, db_session, admin):
        with pytest.raises(InvalidStateError):
            catalog_service.create_user(email="admin@rrfc.local")

    def test_resolve_actor(self, db_session, clerk):
        assert catalog_service.resolve_actor(None) is None
        assert catalog_service.resolve_actor(clerk.id).id == clerk.id
        assert catalog_service.resolve_actor(str(clerk.id)).id == clerk.id

    def test_resolve_actor_bad_id(self, db_session):
        with pytest.raises(PolicyViolationError):
            catalog_service.resolve_actor("not-a-uuid")


class TestCatalog:
    def test_vendor_lifecycle(self, db_session, vendor):
        assert catalog_service.set_vendor_active(vendor.id, False).active is False
        assert catalog_service.get_vendor(vendor.id).active is False
        assert catalog_service.set_vendor_active(vendor.id, True).active is True

    def test_duplicate_vendor(self, db_session, vendor):
        with pytest.raises(InvalidStateError):
            catalog_service.create_vendor(vendor_id=vendor.id, vendor_name="Again")

    def test_item_requires_type(self, db_session):
        with pytest.raises(PolicyViolationError) as excinfo:
            catalog_service.create_item(item_id="ITEM-9", item_type=" ", name="Thing")
        assert excinfo.value.field == "item_type"

    def test_item_identity_is_immutable(self, db_session, item):
        with pytest.raises(PolicyViolationError) as excinfo:
            catalog_service.update_item_descriptors(item.item_id, item_id="ITEM-XYZ")
        assert excinfo.value.field == "item_id"
        assert catalog_service.get_item(item.item_id).item_id == "ITEM-001"

    def test_get_missing_item(self, db_session):
        with pytest.raises(NotFoundError):
            catalog_service.get_item("NOPE")

    def test_lookup_values(self, db_session):
        catalog_service.add_lookup_value(list_key="color", value="Red", sort_order=2)
        catalog_service.add_lookup_value(list_key="color", value="Blue", sort_order=1)
        catalog_service.add_lookup_value(list_key="size", value="M")

        values = [v.value for v in catalog_service.list_lookup_values("color")]
        assert values == ["Blue", "Red"]
