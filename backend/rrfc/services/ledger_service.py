# Overview: Service-layer operations for the transaction ledger; validates, appends, folds.

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from ..extensions import db
from ..models import AppUser, Item, MacSnapshot, ReturnDetail, SystemLog, Transaction, Vendor
from ..errors import InvalidStateError, NotFoundError, PolicyViolationError
from . import audit_service
from .batch_service import get_batch
from .catalog_service import resolve_actor
from .concurrency import item_valuation_lock, lock_for_update, run_with_retry
from .return_service import returnable_quantity
from .valuation_service import MONEY_PLACES, QTY_PLACES, ZERO, current_state, fold, to_decimal
from rrfc.time_utils import normalize_datetime
"""
Transaction Ledger Invariants (authoritative)

- The ledger is append-only and the single source of truth. Rows are never
  updated or deleted; corrections append compensating entries.
- append() validates everything before writing. A rejected draft performs no
  mutation at all.
- Each append is one unit of work under the item's valuation lock:
  ledger row + MAC snapshot (+ return detail) + audit row, one commit.
- total_cost = quantity * unit_price + shipping, fixed at store time.
- Item descriptors are copied onto the row at entry time.

Sign policy (quantity is never zero):
- Purchase: positive
- Return, Waste, Damage, Loss: negative
- Transfer: either (positive = transfer-in, negative = transfer-out)
- Correction: either
"""

PURCHASE = "Purchase"
RETURN = "Return"
CORRECTION = "Correction"
TRANSFER = "Transfer"
WASTE = "Waste"
DAMAGE = "Damage"
LOSS = "Loss"

TRANSACTION_TYPES = (PURCHASE, RETURN, CORRECTION, TRANSFER, WASTE, DAMAGE, LOSS)

INBOUND_ONLY = {PURCHASE}
OUTBOUND_ONLY = {RETURN, WASTE, DAMAGE, LOSS}

# Types whose vendor, when present, must be active
VENDOR_ACTIVE_REQUIRED = {PURCHASE, RETURN}

# Types that must reference an earlier entry on the same item
RELATED_REQUIRED = {RETURN, CORRECTION}

ID_PREFIXES = {
    PURCHASE: "PUR",
    RETURN: "RET",
    CORRECTION: "COR",
    TRANSFER: "TRF",
    WASTE: "WST",
    DAMAGE: "DMG",
    LOSS: "LSS",
}


@dataclass
class TransactionDraft:
    """Caller-supplied values for one ledger entry."""
    transaction_type: str
    item_id: str
    quantity: Any
    unit_price: Any = None
    shipping: Any = None
    vendor_id: str | None = None
    batch_id: Any = None
    related_txn_id: str | None = None
    transaction_date: Any = None
    notes: str | None = None
    # Return-type entries only
    refund_amount: Any = None
    restocking_fee: Any = None


@dataclass
class AppendResult:
    transaction: Transaction
    snapshot: MacSnapshot
    return_detail: ReturnDetail | None = None
    audit_entry: SystemLog | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when the ledger write committed but its audit row did not."""
        return bool(self.warnings)


def normalize_type(value) -> str:
    if isinstance(value, str):
        for t in TRANSACTION_TYPES:
            if t.lower() == value.strip().lower():
                return t
    raise PolicyViolationError(
        f"unknown transaction_type {value!r}; expected one of {', '.join(TRANSACTION_TYPES)}",
        field="transaction_type",
    )


def check_sign(transaction_type: str, quantity: Decimal) -> None:
    """Raise PolicyViolationError when quantity's sign is not allowed for the type."""
    if quantity == 0:
        raise PolicyViolationError("quantity must be non-zero", field="quantity")
    if transaction_type in INBOUND_ONLY and quantity < 0:
        raise PolicyViolationError(f"{transaction_type} quantity must be positive", field="quantity")
    if transaction_type in OUTBOUND_ONLY and quantity > 0:
        raise PolicyViolationError(f"{transaction_type} quantity must be negative", field="quantity")


def new_transaction_id(transaction_type: str, at: datetime) -> str:
    return f"{ID_PREFIXES[transaction_type]}-{at:%Y%m%d}-{uuid.uuid4().hex[:10].upper()}"


def get_transaction(txn_id: str, *, field_name: str = "txn_id") -> Transaction:
    txn = db.session.get(Transaction, txn_id) if txn_id else None
    if txn is None:
        raise NotFoundError(
            f"transaction {txn_id} not found", field=field_name, entity_type="transaction", entity_id=txn_id
        )
    return txn


def _load_item(item_id: str) -> Item:
    item = lock_for_update(db.session.query(Item).filter_by(item_id=item_id)).first()
    if item is None:
        raise NotFoundError(f"item {item_id} not found", field="item_id", entity_type="item", entity_id=item_id)
    if not item.active:
        raise InvalidStateError(f"item {item_id} is disabled", field="item_id", entity_type="item", entity_id=item_id)
    return item


def _load_vendor(vendor_id: str | None, transaction_type: str) -> Vendor | None:
    if vendor_id is None:
        return None
    vendor = db.session.get(Vendor, vendor_id)
    if vendor is None:
        raise NotFoundError(f"vendor {vendor_id} not found", field="vendor_id", entity_type="vendor", entity_id=vendor_id)
    if transaction_type in VENDOR_ACTIVE_REQUIRED and not vendor.active:
        raise InvalidStateError(
            f"vendor {vendor_id} is disabled", field="vendor_id", entity_type="vendor", entity_id=vendor_id
        )
    return vendor


def _append_inner(
    draft: TransactionDraft,
    *,
    actor: AppUser | None,
    allow_negative: bool | None = None,
) -> tuple[Transaction, MacSnapshot, ReturnDetail | None]:
    """
    Core append logic without locking, retry, audit, or commit.

    Called by append() and by the correction engine, which runs several
    appends inside one unit of work. Every check runs before the first write.
    """
    ttype = normalize_type(draft.transaction_type)
    if not draft.item_id:
        raise PolicyViolationError("item_id is required", field="item_id")

    quantity = to_decimal(draft.quantity, field="quantity").quantize(QTY_PLACES, rounding=ROUND_HALF_UP)
    check_sign(ttype, quantity)
    shipping = to_decimal(draft.shipping, field="shipping", default=ZERO).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    try:
        tx_date = normalize_datetime(draft.transaction_date)
    except ValueError:
        raise PolicyViolationError("transaction_date is not a valid datetime", field="transaction_date")

    item = _load_item(draft.item_id)

    vendor_id = draft.vendor_id
    batch = None
    if ttype == PURCHASE:
        if draft.batch_id is None:
            raise PolicyViolationError("Purchase entries must reference a batch", field="batch_id")
        batch = get_batch(draft.batch_id)
        if vendor_id is None:
            vendor_id = batch.vendor_id
        elif batch.vendor_id is not None and batch.vendor_id != vendor_id:
            raise InvalidStateError(
                f"vendor {vendor_id} does not match batch vendor {batch.vendor_id}",
                field="vendor_id",
                entity_type="inventory_batch",
                entity_id=batch.id,
            )
    elif draft.batch_id is not None:
        batch = get_batch(draft.batch_id)

    related = None
    if ttype in RELATED_REQUIRED:
        if not draft.related_txn_id:
            raise PolicyViolationError(f"{ttype} entries must reference related_txn_id", field="related_txn_id")
        related = get_transaction(draft.related_txn_id, field_name="related_txn_id")
        if related.item_id != item.item_id:
            raise InvalidStateError(
                f"related transaction {related.id} is for item {related.item_id}, not {item.item_id}",
                field="related_txn_id",
                entity_type="transaction",
                entity_id=related.id,
            )
    elif draft.related_txn_id:
        related = get_transaction(draft.related_txn_id, field_name="related_txn_id")

    return_detail_values = None
    if ttype == RETURN:
        if related.transaction_type != PURCHASE:
            raise InvalidStateError(
                f"returns must reference a Purchase; {related.id} is a {related.transaction_type}",
                field="related_txn_id",
                entity_type="transaction",
                entity_id=related.id,
            )
        available = returnable_quantity(related)
        if -quantity > available:
            raise InvalidStateError(
                f"cannot return {-quantity} of {related.id}; only {available} remain returnable",
                field="quantity",
                entity_type="transaction",
                entity_id=related.id,
            )
        if vendor_id is None:
            vendor_id = related.vendor_id
        restocking_fee = to_decimal(draft.restocking_fee, field="restocking_fee", default=ZERO)
        if restocking_fee < 0:
            raise PolicyViolationError("restocking_fee cannot be negative", field="restocking_fee")
        return_detail_values = {"restocking_fee": restocking_fee.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)}
        if draft.refund_amount is not None:
            return_detail_values["refund_amount"] = to_decimal(
                draft.refund_amount, field="refund_amount"
            ).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)

    vendor = _load_vendor(vendor_id, ttype)

    if draft.unit_price is None and quantity < 0:
        # Stock leaving without an explicit price leaves at its cost basis.
        _, unit_price = current_state(item.item_id)
    else:
        unit_price = to_decimal(draft.unit_price, field="unit_price", default=ZERO)
    if unit_price < 0:
        raise PolicyViolationError("unit_price cannot be negative", field="unit_price")
    unit_price = unit_price.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)

    total_cost = (quantity * unit_price + shipping).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    txn_id = new_transaction_id(ttype, tx_date)
    actor_uuid = actor.id if actor else None

    # Raises before any write when the entry would make on-hand negative.
    snapshot = fold(
        item.item_id,
        quantity,
        unit_price,
        shipping,
        actor_id=actor_uuid,
        note=f"{ttype} {txn_id}",
        allow_negative=allow_negative,
    )

    txn = Transaction(
        id=txn_id,
        transaction_date=tx_date,
        transaction_type=ttype,
        vendor_id=vendor.id if vendor else None,
        batch_id=batch.id if batch else None,
        item_id=item.item_id,
        quantity=quantity,
        unit_price=unit_price,
        shipping=shipping,
        total_cost=total_cost,
        notes=draft.notes,
        related_txn_id=related.id if related else None,
        created_by=actor_uuid,
        # Append order for replay matches the fold order.
        created_at=snapshot.snapshot_date,
        **item.descriptors(),
    )
    db.session.add(txn)
    db.session.flush()

    detail = None
    if return_detail_values is not None:
        returned = -quantity
        refund = return_detail_values.get(
            "refund_amount",
            (returned * unit_price - return_detail_values["restocking_fee"]).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP),
        )
        detail = ReturnDetail(
            return_txn_id=txn.id,
            original_txn_id=related.id,
            returned_quantity=returned,
            refund_amount=refund,
            restocking_fee=return_detail_values["restocking_fee"],
            created_by=actor_uuid,
        )
        db.session.add(detail)
        db.session.flush()

    return txn, snapshot, detail


def audit_details(txn: Transaction, snapshot: MacSnapshot) -> dict:
    return {
        "transaction_type": txn.transaction_type,
        "item_id": txn.item_id,
        "quantity": txn.quantity,
        "unit_price": txn.unit_price,
        "shipping": txn.shipping,
        "total_cost": txn.total_cost,
        "related_txn_id": txn.related_txn_id,
        "batch_id": txn.batch_id,
        "quantity_on_hand": snapshot.quantity_on_hand,
        "mac": snapshot.mac,
    }


def append(draft: TransactionDraft, *, actor_id=None, timeout: float | None = None) -> AppendResult:
    """
    Validate and append one ledger entry, folding it into the item's MAC.

    Runs under the item's valuation lock as one unit of work. The ledger row,
    its snapshot, any return detail, and the audit row commit together;
    on any error nothing is written.

    Raises:
        NotFoundError, InvalidStateError, PolicyViolationError: validation
        ConcurrencyConflictError: lock wait or DB contention exceeded limits
        PersistenceFailureError: storage error (rolled back)
    """
    if not draft.item_id:
        raise PolicyViolationError("item_id is required", field="item_id")

    def _op() -> AppendResult:
        actor = resolve_actor(actor_id)
        txn, snapshot, detail = _append_inner(draft, actor=actor)

        details = audit_details(txn, snapshot)
        if detail is not None:
            details["returned_quantity"] = detail.returned_quantity
            details["refund_amount"] = detail.refund_amount
        entry = audit_service.log(actor.id if actor else None, "transaction.appended", "transaction", txn.id, details)

        db.session.commit()
        result = AppendResult(transaction=txn, snapshot=snapshot, return_detail=detail, audit_entry=entry)
        if entry is None:
            result.warnings.append(audit_service.degraded_warning("transaction.appended", txn.id))
        return result

    with item_valuation_lock(draft.item_id, timeout):
        return run_with_retry(_op)


def list_item_transactions(item_id: str, *, limit: int = 200) -> list[Transaction]:
    """Ledger entries for an item, newest first."""
    return (
        db.session.query(Transaction)
        .filter(Transaction.item_id == item_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )
