# Overview: Service-layer operations for corrections; replaces an entry's effect without editing history.

"""
Correction/Reversal Engine

WHY: Ledger rows are immutable, yet data entry mistakes happen. Correcting
transaction T appends two entries and a link record instead of editing T:

1. Reversal   - Correction-type entry, quantity = -T.quantity, T's price and
                shipping, related_txn_id = T
2. Corrected  - Correction-type entry with the caller's replacement values,
                related_txn_id = T, same item as T
3. Correction - record linking T, the reversal and the corrected entry + reason

All three writes and the audit row form one unit of work under the item's
valuation lock. Any failure rolls everything back, leaving T, the ledger and
the item's valuation exactly as before the attempt.

RULES:
- Reversal entries cannot be corrected (correct the corrected entry instead).
- An entry can be corrected once; later fixes extend the chain from the
  corrected entry.
- The corrected entry keeps the sign policy of the chain's origin type.
- A corrected Return must still fit within its Purchase's returnable quantity.
- A corrected Purchase may not drop below what has been returned against it.
- Only admin and manager actors may correct.
- The reversal leg may pass through negative on-hand; the corrected leg is
  checked against the on-hand policy as usual.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import Correction, MacSnapshot, SystemLog, Transaction
from ..errors import InvalidStateError, PolicyViolationError
from . import audit_service
from .catalog_service import resolve_actor
from .concurrency import item_valuation_lock, run_with_retry
from .ledger_service import (
    CORRECTION,
    PURCHASE,
    RETURN,
    TransactionDraft,
    _append_inner,
    check_sign,
    get_transaction,
)
from .lineage_service import correction_of, is_reversal, net_quantity, origin_transaction
from .return_service import net_returned_quantity, returnable_quantity
from .valuation_service import to_decimal


@dataclass
class CorrectionResult:
    original: Transaction
    reversal: Transaction
    corrected: Transaction
    correction: Correction
    snapshot: MacSnapshot
    audit_entry: SystemLog | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


def _check_correctable(original: Transaction) -> None:
    if is_reversal(original.id):
        raise InvalidStateError(
            f"{original.id} is a reversal entry and cannot be corrected; correct the corrected entry instead",
            field="original_txn_id",
            entity_type="transaction",
            entity_id=original.id,
        )
    existing = correction_of(original.id)
    if existing is not None:
        raise InvalidStateError(
            f"{original.id} was already corrected; correct {existing.corrected_txn_id} instead",
            field="original_txn_id",
            entity_type="transaction",
            entity_id=original.id,
        )


def _check_return_capacity(original: Transaction, origin: Transaction, new_quantity) -> None:
    """A corrected Return may use what the chain currently holds plus what is still returnable."""
    purchase = get_transaction(origin.related_txn_id, field_name="related_txn_id")
    available = returnable_quantity(purchase) + (-net_quantity(original))
    if -new_quantity > available:
        raise InvalidStateError(
            f"cannot return {-new_quantity} of {purchase.id}; only {available} remain returnable",
            field="quantity",
            entity_type="transaction",
            entity_id=purchase.id,
        )


def _check_purchase_covers_returns(origin: Transaction, new_quantity) -> None:
    """A corrected Purchase may not drop below what has already been returned against it."""
    returned = net_returned_quantity(origin)
    if new_quantity < returned:
        raise InvalidStateError(
            f"cannot correct {origin.id} to {new_quantity}; {returned} already returned",
            field="quantity",
            entity_type="transaction",
            entity_id=origin.id,
        )


def correct(
    original_txn_id: str,
    corrected_draft: TransactionDraft,
    reason: str,
    *,
    actor_id=None,
    timeout: float | None = None,
) -> CorrectionResult:
    """
    Replace `original_txn_id`'s effect with `corrected_draft`'s values.

    corrected_draft.transaction_type and related_txn_id are ignored (forced to
    Correction and the original). Unset price, shipping, vendor, batch and
    date fall back to the original's values.

    Raises:
        NotFoundError: original (or actor) does not exist
        InvalidStateError: original is a reversal, already corrected, or the
            draft names a different item / over-returns
        PolicyViolationError: missing reason, sign mismatch, actor role,
            resulting negative on-hand
        ConcurrencyConflictError, PersistenceFailureError
    """
    if not reason or not reason.strip():
        raise PolicyViolationError("reason is required", field="reason")
    reason = reason.strip()

    # Immutable row: safe to read before taking the item's lock.
    item_id = get_transaction(original_txn_id, field_name="original_txn_id").item_id

    def _op() -> CorrectionResult:
        actor = resolve_actor(actor_id)
        if actor is not None and not actor.role_tag.can_correct:
            raise PolicyViolationError(
                f"role {actor.role} may not correct transactions",
                field="actor_id",
                entity_type="app_user",
                entity_id=actor.id,
            )

        original = get_transaction(original_txn_id, field_name="original_txn_id")
        _check_correctable(original)

        if corrected_draft.item_id and corrected_draft.item_id != original.item_id:
            raise InvalidStateError(
                f"corrected entry must stay on item {original.item_id}",
                field="item_id",
                entity_type="transaction",
                entity_id=original.id,
            )

        origin = origin_transaction(original)
        new_quantity = to_decimal(corrected_draft.quantity, field="quantity")
        check_sign(origin.transaction_type, new_quantity)
        if origin.transaction_type == RETURN:
            _check_return_capacity(original, origin, new_quantity)
        elif origin.transaction_type == PURCHASE:
            _check_purchase_covers_returns(origin, new_quantity)

        reversal_draft = TransactionDraft(
            transaction_type=CORRECTION,
            item_id=original.item_id,
            quantity=-original.quantity,
            unit_price=original.unit_price,
            shipping=original.shipping,
            vendor_id=original.vendor_id,
            batch_id=original.batch_id,
            related_txn_id=original.id,
            transaction_date=original.transaction_date,
            notes=f"Reversal of {original.id}: {reason}",
        )
        reversal, _, _ = _append_inner(reversal_draft, actor=actor, allow_negative=True)

        replacement = TransactionDraft(
            transaction_type=CORRECTION,
            item_id=original.item_id,
            quantity=new_quantity,
            unit_price=original.unit_price if corrected_draft.unit_price is None else corrected_draft.unit_price,
            shipping=original.shipping if corrected_draft.shipping is None else corrected_draft.shipping,
            vendor_id=corrected_draft.vendor_id or original.vendor_id,
            batch_id=corrected_draft.batch_id or original.batch_id,
            related_txn_id=original.id,
            transaction_date=corrected_draft.transaction_date or original.transaction_date,
            notes=corrected_draft.notes or f"Correction of {original.id}: {reason}",
        )
        corrected, snapshot, _ = _append_inner(replacement, actor=actor)

        correction = Correction(
            original_txn_id=original.id,
            reversal_txn_id=reversal.id,
            corrected_txn_id=corrected.id,
            reason=reason,
            created_by=actor.id if actor else None,
        )
        db.session.add(correction)
        db.session.flush()

        entry = audit_service.log(
            actor.id if actor else None,
            "transaction.corrected",
            "transaction",
            original.id,
            {
                "correction_id": correction.id,
                "reversal_txn_id": reversal.id,
                "corrected_txn_id": corrected.id,
                "original_quantity": original.quantity,
                "corrected_quantity": corrected.quantity,
                "reason": reason,
                "quantity_on_hand": snapshot.quantity_on_hand,
                "mac": snapshot.mac,
            },
        )

        db.session.commit()
        result = CorrectionResult(
            original=original,
            reversal=reversal,
            corrected=corrected,
            correction=correction,
            snapshot=snapshot,
            audit_entry=entry,
        )
        if entry is None:
            result.warnings.append(audit_service.degraded_warning("transaction.corrected", original.id))
        return result

    with item_valuation_lock(item_id, timeout):
        return run_with_retry(_op)
