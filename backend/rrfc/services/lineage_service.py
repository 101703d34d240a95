# Overview: Read-only helpers that walk correction chains over the append-only ledger.

"""
Correction chains

A correction of entry T appends a reversal R (quantity = -T.quantity) and a
corrected entry C, and records Correction(original=T, reversal=R,
corrected=C). T is never touched. Correcting C again extends the chain:

    T --corrected by--> C1 --corrected by--> C2 ...

The net effect of T on quantity is therefore the quantity of the last entry
in its chain (T's own quantity when it was never corrected).
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Correction, Transaction
from ..errors import InvalidStateError


def correction_of(txn_id: str) -> Correction | None:
    """The correction that replaced `txn_id`, if any (at most one)."""
    return db.session.query(Correction).filter(Correction.original_txn_id == txn_id).first()


def correction_producing(txn_id: str) -> Correction | None:
    """The correction whose corrected entry is `txn_id`, if any."""
    return db.session.query(Correction).filter(Correction.corrected_txn_id == txn_id).first()


def is_reversal(txn_id: str) -> bool:
    return (
        db.session.query(Correction.id)
        .filter(Correction.reversal_txn_id == txn_id)
        .first()
        is not None
    )


def chain_tail(txn: Transaction) -> Transaction:
    """Follow corrections forward to the entry currently standing in for `txn`."""
    seen = {txn.id}
    current = txn
    while True:
        corr = correction_of(current.id)
        if corr is None or corr.corrected_txn_id is None:
            return current
        if corr.corrected_txn_id in seen:
            raise InvalidStateError(
                f"correction cycle detected at {corr.corrected_txn_id}",
                entity_type="transaction",
                entity_id=corr.corrected_txn_id,
            )
        seen.add(corr.corrected_txn_id)
        nxt = db.session.get(Transaction, corr.corrected_txn_id)
        if nxt is None:
            return current
        current = nxt


def net_quantity(txn: Transaction) -> Decimal:
    """Quantity `txn` still contributes once every correction in its chain is applied."""
    return Decimal(chain_tail(txn).quantity)


def origin_transaction(txn: Transaction) -> Transaction:
    """Walk corrections backward to the entry that started the chain."""
    seen = {txn.id}
    current = txn
    while True:
        corr = correction_producing(current.id)
        if corr is None:
            return current
        if corr.original_txn_id in seen:
            raise InvalidStateError(
                f"correction cycle detected at {corr.original_txn_id}",
                entity_type="transaction",
                entity_id=corr.original_txn_id,
            )
        seen.add(corr.original_txn_id)
        prev = db.session.get(Transaction, corr.original_txn_id)
        if prev is None:
            return current
        current = prev
