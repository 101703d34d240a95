"""
Return Processing Service

WHY: Returning stock to a vendor is a Return-type ledger entry plus its
business detail (returned quantity, refund, restocking fee). The hard rule
is the returnable quantity: a Purchase can only be returned up to what it
still contributes after corrections, minus what earlier returns (also net of
their corrections) already took back.

DESIGN PRINCIPLES:
- Returns reference the original Purchase for traceability
- ReturnDetail is 1:1 with its Return-type ledger entry
- Returned stock leaves at the purchase price unless the caller overrides it
- Outbound MAC rule applies: a return never moves the item's cost basis
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import ReturnDetail, Transaction
from ..errors import NotFoundError, PolicyViolationError
from .lineage_service import net_quantity
from .valuation_service import ZERO, to_decimal


def _resolve_purchase(purchase) -> Transaction:
    if isinstance(purchase, Transaction):
        return purchase
    txn = db.session.get(Transaction, purchase) if purchase else None
    if txn is None:
        raise NotFoundError(
            f"transaction {purchase} not found",
            field="related_txn_id",
            entity_type="transaction",
            entity_id=purchase,
        )
    return txn


def net_returned_quantity(purchase) -> Decimal:
    """Units already returned against `purchase`, each return taken at its chain tail."""
    purchase = _resolve_purchase(purchase)
    returned = ZERO
    details = (
        db.session.query(ReturnDetail)
        .filter(ReturnDetail.original_txn_id == purchase.id)
        .all()
    )
    for detail in details:
        return_txn = db.session.get(Transaction, detail.return_txn_id)
        if return_txn is not None:
            returned += -net_quantity(return_txn)
    return returned


def returnable_quantity(purchase) -> Decimal:
    """
    Net purchased quantity of `purchase` (a Transaction or its id) not already returned.

    Both sides follow correction chains: a corrected purchase counts at its
    corrected quantity, a corrected return at its corrected quantity.
    """
    purchase = _resolve_purchase(purchase)
    available = net_quantity(purchase) - net_returned_quantity(purchase)
    return available if available > 0 else ZERO


def list_returns_for(purchase_txn_id: str) -> list[ReturnDetail]:
    return (
        db.session.query(ReturnDetail)
        .filter(ReturnDetail.original_txn_id == purchase_txn_id)
        .order_by(ReturnDetail.created_at.asc())
        .all()
    )


def record_return(
    original_txn_id: str,
    returned_quantity,
    *,
    refund_amount=None,
    restocking_fee=None,
    unit_price=None,
    transaction_date=None,
    notes: str | None = None,
    actor_id=None,
    timeout: float | None = None,
):
    """
    Return stock from a Purchase to its vendor.

    Args:
        original_txn_id: Purchase being returned against
        returned_quantity: positive number of units going back
        refund_amount: defaults to returned_quantity * unit_price - restocking_fee
        restocking_fee: fee withheld by the vendor (default 0)
        unit_price: defaults to the purchase's unit price

    Returns:
        AppendResult for the Return-type ledger entry (return_detail populated)
    """
    from .ledger_service import RETURN, TransactionDraft, append, get_transaction

    original = get_transaction(original_txn_id, field_name="related_txn_id")
    qty = to_decimal(returned_quantity, field="returned_quantity")
    if qty <= 0:
        raise PolicyViolationError("returned_quantity must be positive", field="returned_quantity")

    draft = TransactionDraft(
        transaction_type=RETURN,
        item_id=original.item_id,
        quantity=-qty,
        unit_price=original.unit_price if unit_price is None else unit_price,
        shipping=ZERO,
        vendor_id=original.vendor_id,
        related_txn_id=original.id,
        transaction_date=transaction_date,
        notes=notes,
        refund_amount=refund_amount,
        restocking_fee=restocking_fee,
    )
    return append(draft, actor_id=actor_id, timeout=timeout)
