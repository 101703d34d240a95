# Overview: Service-layer operations for catalog records (users, vendors, items, lookup lists).

"""
Catalog Service

WHY: The ledger engine reads items, vendors and users but does not own them.
These helpers are the keyed-record store it reads from: create, look up,
enable/disable. Nothing here is ever deleted; disabling is the only way to
retire a record, so historical ledger rows keep valid references.
"""

from __future__ import annotations

import uuid

from ..extensions import db
from ..models import AppUser, Item, LookupListEntry, Role, Vendor
from ..errors import InvalidStateError, NotFoundError, PolicyViolationError
from . import audit_service


def _required(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise PolicyViolationError(f"{field} is required", field=field)
    return str(value).strip()


def _coerce_uuid(value, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise PolicyViolationError(f"{field} is not a valid id", field=field)


# =============================================================================
# USERS
# =============================================================================

def create_user(*, email: str, role="user", display_name: str | None = None) -> AppUser:
    """Create an application user; role is validated through the closed Role tag."""
    email = _required(email, "email").lower()
    role_tag = Role.parse(role)

    existing = db.session.query(AppUser).filter(AppUser.email == email).first()
    if existing:
        raise InvalidStateError(
            f"user with email {email} already exists",
            field="email",
            entity_type="app_user",
            entity_id=existing.id,
        )

    user = AppUser(email=email, display_name=display_name, role=role_tag.value)
    db.session.add(user)
    db.session.commit()
    return user


def set_user_disabled(user_id, disabled: bool) -> AppUser:
    user = get_user(user_id)
    user.disabled = disabled
    db.session.commit()
    return user


def get_user(user_id) -> AppUser:
    uid = _coerce_uuid(user_id, "actor_id")
    user = db.session.get(AppUser, uid)
    if user is None:
        raise NotFoundError(f"user {user_id} not found", field="actor_id", entity_type="app_user", entity_id=user_id)
    return user


def resolve_actor(actor_id) -> AppUser | None:
    """
    Resolve the acting user for a mutating call.

    None means a system action. A given id must name an existing, enabled user.
    """
    if actor_id is None:
        return None
    user = get_user(actor_id)
    if user.disabled:
        raise InvalidStateError(
            f"user {user.email} is disabled",
            field="actor_id",
            entity_type="app_user",
            entity_id=user.id,
        )
    # Reject a persisted role string the engine does not know.
    Role.parse(user.role)
    return user


# =============================================================================
# VENDORS
# =============================================================================

def create_vendor(
    *,
    vendor_id: str,
    vendor_name: str,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    notes: str | None = None,
    created_by=None,
) -> Vendor:
    vendor_id = _required(vendor_id, "vendor_id")
    vendor_name = _required(vendor_name, "vendor_name")

    if db.session.get(Vendor, vendor_id) is not None:
        raise InvalidStateError(
            f"vendor {vendor_id} already exists", field="vendor_id", entity_type="vendor", entity_id=vendor_id
        )

    actor = resolve_actor(created_by)
    vendor = Vendor(
        id=vendor_id,
        vendor_name=vendor_name,
        contact_person=contact_person,
        email=email,
        phone=phone,
        address=address,
        notes=notes,
        active=True,
        created_by=actor.id if actor else None,
    )
    db.session.add(vendor)
    db.session.flush()

    audit_service.log(actor.id if actor else None, "vendor.created", "vendor", vendor.id, {"vendor_name": vendor_name})

    db.session.commit()
    return vendor


def get_vendor(vendor_id: str) -> Vendor:
    vendor = db.session.get(Vendor, vendor_id)
    if vendor is None:
        raise NotFoundError(f"vendor {vendor_id} not found", field="vendor_id", entity_type="vendor", entity_id=vendor_id)
    return vendor


def set_vendor_active(vendor_id: str, active: bool, *, actor_id=None) -> Vendor:
    """Enable or disable a vendor. Vendors are never deleted."""
    actor = resolve_actor(actor_id)
    vendor = get_vendor(vendor_id)
    vendor.active = active
    audit_service.log(
        actor.id if actor else None,
        "vendor.enabled" if active else "vendor.disabled",
        "vendor",
        vendor.id,
    )
    db.session.commit()
    return vendor


# =============================================================================
# ITEMS
# =============================================================================

ITEM_DESCRIPTOR_FIELDS = ("item_type", "category", "name", "description", "color", "size", "material")


def create_item(
    *,
    item_id: str,
    item_type: str,
    name: str,
    category: str | None = None,
    description: str | None = None,
    color: str | None = None,
    size: str | None = None,
    material: str | None = None,
    created_by=None,
) -> Item:
    item_id = _required(item_id, "item_id")
    item_type = _required(item_type, "item_type")
    name = _required(name, "name")

    if db.session.get(Item, item_id) is not None:
        raise InvalidStateError(f"item {item_id} already exists", field="item_id", entity_type="item", entity_id=item_id)

    actor = resolve_actor(created_by)
    item = Item(
        item_id=item_id,
        item_type=item_type,
        category=category,
        name=name,
        description=description,
        color=color,
        size=size,
        material=material,
        active=True,
        created_by=actor.id if actor else None,
    )
    db.session.add(item)
    db.session.flush()

    audit_service.log(actor.id if actor else None, "item.created", "item", item.item_id, item.descriptors())

    db.session.commit()
    return item


def get_item(item_id: str) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError(f"item {item_id} not found", field="item_id", entity_type="item", entity_id=item_id)
    return item


def update_item_descriptors(item_id: str, /, *, actor_id=None, **fields) -> Item:
    """
    Change descriptive fields. Identity is immutable.

    Existing transactions keep the descriptors they were written with.
    """
    unknown = set(fields) - set(ITEM_DESCRIPTOR_FIELDS)
    if unknown:
        raise PolicyViolationError(f"cannot update item fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])

    actor = resolve_actor(actor_id)
    item = get_item(item_id)
    for key, value in fields.items():
        setattr(item, key, value)
    audit_service.log(actor.id if actor else None, "item.updated", "item", item.item_id, fields)
    db.session.commit()
    return item


def set_item_active(item_id: str, active: bool, *, actor_id=None) -> Item:
    """Enable or disable an item (soft-disable; items are never deleted)."""
    actor = resolve_actor(actor_id)
    item = get_item(item_id)
    item.active = active
    audit_service.log(
        actor.id if actor else None,
        "item.enabled" if active else "item.disabled",
        "item",
        item.item_id,
    )
    db.session.commit()
    return item


# =============================================================================
# LOOKUP LISTS
# =============================================================================

def add_lookup_value(
    *,
    list_key: str,
    value: str,
    sort_order: int = 0,
    applicable_to: str | None = None,
    created_by=None,
) -> LookupListEntry:
    list_key = _required(list_key, "list_key")
    value = _required(value, "value")
    actor = resolve_actor(created_by)

    entry = LookupListEntry(
        list_key=list_key,
        value=value,
        sort_order=sort_order,
        applicable_to=applicable_to,
        created_by=actor.id if actor else None,
    )
    db.session.add(entry)
    db.session.commit()
    return entry


def list_lookup_values(list_key: str, *, include_inactive: bool = False) -> list[LookupListEntry]:
    q = db.session.query(LookupListEntry).filter(LookupListEntry.list_key == list_key)
    if not include_inactive:
        q = q.filter(LookupListEntry.active.is_(True))
    return q.order_by(LookupListEntry.sort_order, LookupListEntry.value).all()
