from __future__ import annotations

import uuid

from ..extensions import db
from rrfc.time_utils import to_utc_z


def _dec(value):
    return str(value) if value is not None else None


class InventoryBatch(db.Model):
    """
    One purchasing event (vendor + date).

    IMMUTABLE: created once per purchase intake; Purchase-type transactions
    reference it through batch_id.
    """
    __tablename__ = "inventory_batches"
    __table_args__ = (
        db.Index("idx_batches_batch_code", "batch_code"),
        db.Index("idx_batches_vendor_date", "vendor_id", "transaction_date"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)

    # e.g. 'BATCH-20250101-3F9A1C'
    batch_code = db.Column(db.Text, nullable=False)
    vendor_id = db.Column(db.Text, db.ForeignKey("vendors.id"), nullable=True)
    transaction_date = db.Column(db.Date, nullable=False)
    created_by = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    notes = db.Column(db.Text, nullable=True)

    vendor = db.relationship("Vendor", backref=db.backref("batches", lazy=True))

    def __repr__(self) -> str:
        return f"<InventoryBatch code={self.batch_code!r} vendor_id={self.vendor_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "batch_code": self.batch_code,
            "vendor_id": self.vendor_id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "created_by": str(self.created_by) if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
            "notes": self.notes,
        }


class Transaction(db.Model):
    """
    Append-only inventory ledger entry.

    - quantity is signed: positive = inbound, negative = outbound/reduction
    - total_cost = quantity * unit_price + shipping, fixed when the row is written
    - item descriptors are a snapshot of the item at entry time (not normalized away)
    - related_txn_id links returns and correction entries to their origin
    - never updated or deleted; corrections append new rows
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("idx_txn_item", "item_id"),
        db.Index("idx_txn_vendor", "vendor_id"),
        db.Index("idx_txn_date", "transaction_date"),
        db.Index("idx_txn_type_date", "transaction_type", "transaction_date"),
        db.Index("idx_txn_related", "related_txn_id"),
    )

    id = db.Column(db.Text, primary_key=True)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False)

    # Purchase, Return, Correction, Transfer, Waste, Damage, Loss
    transaction_type = db.Column(db.Text, nullable=False)

    vendor_id = db.Column(db.Text, db.ForeignKey("vendors.id"), nullable=True)
    batch_id = db.Column(db.Uuid, db.ForeignKey("inventory_batches.id"), nullable=True)
    item_id = db.Column(db.Text, db.ForeignKey("items.item_id"), nullable=True)

    # Denormalized item state at entry time
    item_type = db.Column(db.Text, nullable=True)
    category = db.Column(db.Text, nullable=True)
    item_name = db.Column(db.Text, nullable=True)
    color = db.Column(db.Text, nullable=True)
    size = db.Column(db.Text, nullable=True)
    material = db.Column(db.Text, nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_price = db.Column(db.Numeric(18, 4), default=0)
    shipping = db.Column(db.Numeric(18, 4), default=0)
    total_cost = db.Column(db.Numeric(18, 4), default=0)
    notes = db.Column(db.Text, nullable=True)
    related_txn_id = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("InventoryBatch", backref=db.backref("transactions", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id!r} type={self.transaction_type} "
            f"item_id={self.item_id!r} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_date": to_utc_z(self.transaction_date),
            "transaction_type": self.transaction_type,
            "vendor_id": self.vendor_id,
            "batch_id": str(self.batch_id) if self.batch_id else None,
            "item_id": self.item_id,
            "item_type": self.item_type,
            "category": self.category,
            "item_name": self.item_name,
            "color": self.color,
            "size": self.size,
            "material": self.material,
            "quantity": _dec(self.quantity),
            "unit_price": _dec(self.unit_price),
            "shipping": _dec(self.shipping),
            "total_cost": _dec(self.total_cost),
            "notes": self.notes,
            "related_txn_id": self.related_txn_id,
            "created_by": str(self.created_by) if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
        }


class MacSnapshot(db.Model):
    """
    Point-in-time valuation state for one item (mac_ledger).

    Append-only: one row per fold. The current state of an item is the row
    with the latest snapshot_date; snapshot_date is strictly increasing per
    item so "latest" is never ambiguous.
    """
    __tablename__ = "mac_ledger"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    item_id = db.Column(db.Text, db.ForeignKey("items.item_id"), nullable=True)
    snapshot_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    quantity_on_hand = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    # Moving average cost per unit
    mac = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    total_value = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    last_updated_by = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    note = db.Column(db.Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<MacSnapshot item_id={self.item_id!r} qty={self.quantity_on_hand} "
            f"mac={self.mac} at={self.snapshot_date}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "item_id": self.item_id,
            "snapshot_date": to_utc_z(self.snapshot_date),
            "quantity_on_hand": _dec(self.quantity_on_hand),
            "mac": _dec(self.mac),
            "total_value": _dec(self.total_value),
            "last_updated_by": str(self.last_updated_by) if self.last_updated_by else None,
            "note": self.note,
        }


db.Index("idx_mac_item", MacSnapshot.item_id)
db.Index("idx_mac_item_snapshot_desc", MacSnapshot.item_id, MacSnapshot.snapshot_date.desc())


class ReturnDetail(db.Model):
    """
    Business detail of a Return-type ledger entry (1:1 via return_txn_id).

    original_txn_id always points at the Purchase being returned against.
    """
    __tablename__ = "returns"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    return_txn_id = db.Column(db.Text, db.ForeignKey("transactions.id"), nullable=True, unique=True)
    original_txn_id = db.Column(db.Text, nullable=True, index=True)
    returned_quantity = db.Column(db.Numeric(18, 4), nullable=True)
    refund_amount = db.Column(db.Numeric(18, 4), nullable=True)
    restocking_fee = db.Column(db.Numeric(18, 4), nullable=True)
    created_by = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    return_txn = db.relationship("Transaction", foreign_keys=[return_txn_id])

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "return_txn_id": self.return_txn_id,
            "original_txn_id": self.original_txn_id,
            "returned_quantity": _dec(self.returned_quantity),
            "refund_amount": _dec(self.refund_amount),
            "restocking_fee": _dec(self.restocking_fee),
            "created_by": str(self.created_by) if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
        }


class Correction(db.Model):
    """
    Records that reversal_txn_id + corrected_txn_id replace original_txn_id's effect.

    The original row is never touched. At most one correction per original;
    further fixes correct the corrected entry, forming a traceable chain.
    """
    __tablename__ = "corrections"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    original_txn_id = db.Column(db.Text, nullable=True, unique=True)
    reversal_txn_id = db.Column(db.Text, nullable=True, index=True)
    corrected_txn_id = db.Column(db.Text, nullable=True, index=True)
    reason = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "original_txn_id": self.original_txn_id,
            "reversal_txn_id": self.reversal_txn_id,
            "corrected_txn_id": self.corrected_txn_id,
            "reason": self.reason,
            "created_by": str(self.created_by) if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
        }
