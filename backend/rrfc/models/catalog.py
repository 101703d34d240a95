from __future__ import annotations

import enum
import uuid

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import PolicyViolationError
from rrfc.time_utils import to_utc_z


class Role(str, enum.Enum):
    """
    Closed three-tier role tag.

    Persisted as plain text in app_users.role; every read and write goes
    through Role.parse so an unknown string never reaches the engine.
    """
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise PolicyViolationError(
            f"unknown role {value!r}; expected one of admin, manager, user",
            field="role",
        )

    @property
    def can_correct(self) -> bool:
        return self in (Role.ADMIN, Role.MANAGER)


class AppUser(db.Model):
    """
    Application users (attribution for every ledger write).

    WHY: Every mutating engine call records an actor. Users are never
    deleted; disabled users cannot author new entries.
    """
    __tablename__ = "app_users"
    __table_args__ = (
        db.Index("idx_app_users_email", "email"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    email = db.Column(db.Text, nullable=False, unique=True)
    display_name = db.Column(db.Text, nullable=True)

    # allowed: admin, manager, user (validated through Role)
    role = db.Column(db.Text, nullable=False, default=Role.USER.value)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    disabled = db.Column(db.Boolean, nullable=False, default=False)

    @validates("role")
    def _validate_role(self, key, value):
        return Role.parse(value).value

    @property
    def role_tag(self) -> Role:
        return Role.parse(self.role)

    def __repr__(self) -> str:
        return f"<AppUser id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
            "disabled": self.disabled,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LookupListEntry(db.Model):
    """
    Keyed lookup values (category, color, size, material, item_type, transaction_type).

    Catalog-owned; the engine never reads it for validation.
    """
    __tablename__ = "lookup_list"
    __table_args__ = (
        db.Index("idx_lookup_list_key_value", "list_key", "value"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    list_key = db.Column(db.Text, nullable=False)
    value = db.Column(db.Text, nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    active = db.Column(db.Boolean, nullable=False, default=True)

    # Comma separated item types (optional)
    applicable_to = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "list_key": self.list_key,
            "value": self.value,
            "sort_order": self.sort_order,
            "active": self.active,
            "applicable_to": self.applicable_to,
            "created_at": to_utc_z(self.created_at),
        }


class Vendor(db.Model):
    """
    Vendor master data.

    Referenced by batches and transactions. Never deleted, only disabled;
    Purchase and Return entries require an active vendor.
    """
    __tablename__ = "vendors"
    __table_args__ = (
        db.Index("idx_vendors_name", "vendor_name"),
    )

    id = db.Column(db.Text, primary_key=True)
    vendor_name = db.Column(db.Text, nullable=False)
    contact_person = db.Column(db.Text, nullable=True)
    email = db.Column(db.Text, nullable=True)
    phone = db.Column(db.Text, nullable=True)
    address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Vendor id={self.id!r} name={self.vendor_name!r} active={self.active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_name": self.vendor_name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "notes": self.notes,
            "active": self.active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Item(db.Model):
    """
    Item master list.

    Identity (item_id) is immutable. Descriptive fields belong to the catalog
    owner and may change; transactions copy them at entry time so history
    keeps the values that were true when the entry was written.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("idx_items_name", "name"),
        db.Index("idx_items_type", "item_type"),
        db.Index("idx_items_category", "category"),
    )

    item_id = db.Column(db.Text, primary_key=True)
    item_type = db.Column(db.Text, nullable=False)
    category = db.Column(db.Text, nullable=True)
    name = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    color = db.Column(db.Text, nullable=True)
    size = db.Column(db.Text, nullable=True)
    material = db.Column(db.Text, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Item item_id={self.item_id!r} name={self.name!r} active={self.active}>"

    def descriptors(self) -> dict:
        """Item state copied onto each transaction row."""
        return {
            "item_type": self.item_type,
            "category": self.category,
            "item_name": self.name,
            "color": self.color,
            "size": self.size,
            "material": self.material,
        }

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_type": self.item_type,
            "category": self.category,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "size": self.size,
            "material": self.material,
            "active": self.active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
