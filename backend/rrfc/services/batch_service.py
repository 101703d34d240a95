# Overview: Service-layer operations for inventory batches (purchase intake grouping).

"""
Batch Manager

WHY: Every Purchase-type ledger entry belongs to one purchase intake
(vendor + date). The batch is only a grouping context: it carries no
quantities and triggers no recomputation.

IMMUTABLE: batches are never updated after creation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime

from ..extensions import db
from ..models import InventoryBatch, Transaction
from ..errors import InvalidStateError, NotFoundError, PolicyViolationError
from . import audit_service
from .catalog_service import get_vendor, resolve_actor
from .concurrency import run_with_retry
from rrfc.time_utils import parse_iso_datetime


@dataclass
class BatchResult:
    batch: InventoryBatch
    audit_entry: object | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


def _parse_transaction_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                dt = None
            if dt is not None:
                return dt.date()
    raise PolicyViolationError("transaction_date must be a date", field="transaction_date")


def _batch_code(tx_date: date) -> str:
    return f"BATCH-{tx_date:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def open_batch(vendor_id: str, transaction_date, notes: str | None = None, *, actor_id=None) -> BatchResult:
    """
    Open a batch for one purchase intake.

    Raises:
        NotFoundError: vendor or actor does not exist
        InvalidStateError: vendor or actor is disabled
        PolicyViolationError: missing vendor or unparseable date
    """
    if not vendor_id:
        raise PolicyViolationError("vendor_id is required", field="vendor_id")
    tx_date = _parse_transaction_date(transaction_date)

    def _op() -> BatchResult:
        actor = resolve_actor(actor_id)
        vendor = get_vendor(vendor_id)
        if not vendor.active:
            raise InvalidStateError(
                f"vendor {vendor_id} is disabled", field="vendor_id", entity_type="vendor", entity_id=vendor_id
            )

        batch = InventoryBatch(
            batch_code=_batch_code(tx_date),
            vendor_id=vendor.id,
            transaction_date=tx_date,
            created_by=actor.id if actor else None,
            notes=notes,
        )
        db.session.add(batch)
        db.session.flush()

        entry = audit_service.log(
            actor.id if actor else None,
            "batch.opened",
            "inventory_batch",
            batch.id,
            {"batch_code": batch.batch_code, "vendor_id": vendor.id, "transaction_date": tx_date},
        )

        db.session.commit()
        result = BatchResult(batch=batch, audit_entry=entry)
        if entry is None:
            result.warnings.append(audit_service.degraded_warning("batch.opened", batch.id))
        return result

    return run_with_retry(_op)


def get_batch(batch_id) -> InventoryBatch:
    try:
        bid = batch_id if isinstance(batch_id, uuid.UUID) else uuid.UUID(str(batch_id))
    except (TypeError, ValueError):
        raise NotFoundError(f"batch {batch_id} not found", field="batch_id", entity_type="inventory_batch", entity_id=batch_id)
    batch = db.session.get(InventoryBatch, bid)
    if batch is None:
        raise NotFoundError(f"batch {batch_id} not found", field="batch_id", entity_type="inventory_batch", entity_id=batch_id)
    return batch


def list_batch_transactions(batch_id) -> list[Transaction]:
    batch = get_batch(batch_id)
    return (
        db.session.query(Transaction)
        .filter(Transaction.batch_id == batch.id)
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        .all()
    )
