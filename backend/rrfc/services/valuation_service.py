# Overview: Service-layer operations for MAC valuation; folds ledger entries into per-item snapshots.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Item, MacSnapshot, Transaction
from ..errors import NotFoundError, PolicyViolationError
from rrfc.time_utils import utcnow, normalize_datetime
"""
MAC Valuation Invariants (authoritative)

State per item is (quantity_on_hand, mac); the current state is the latest
MacSnapshot by snapshot_date. No snapshot yet means (0, 0).

Fold rules for one ledger entry (quantity q, unit price p):
- Inbound (q > 0):  qty1 = qty0 + q
                    mac1 = (qty0 * mac0 + q * p) / qty1   when qty1 > 0
                    mac1 = p                             otherwise
  An inbound entry that lands on a negative on-hand (backorder, or a
  correction's reversal leg) still weighs in the negative quantity at mac0.
- Outbound (q < 0): qty1 = qty0 + q, mac1 = mac0 (removals never move cost basis)
- total_value1 = qty1 * mac1
- qty1 < 0 is rejected unless ALLOW_NEGATIVE_ON_HAND (backorders) is set.
- At zero on-hand MAC is retained until the next inbound entry redefines it.
- A zero unit price is valid and drags MAC toward zero proportionally.

Persistence:
- Every fold appends a new MacSnapshot; prior snapshots are never modified.
- snapshot_date is strictly increasing per item.
- fold() flushes but never commits; the caller's unit of work owns the commit.

Precision: quantities and money at 4 places, MAC at 6 places, half-up.
"""

ZERO = Decimal("0")
QTY_PLACES = Decimal("0.0001")
MONEY_PLACES = Decimal("0.0001")
MAC_PLACES = Decimal("0.000001")
SNAPSHOT_TICK = timedelta(microseconds=1)


@dataclass(frozen=True)
class FoldResult:
    quantity_on_hand: Decimal
    mac: Decimal
    total_value: Decimal


def to_decimal(value, *, field: str, default: Decimal | None = None) -> Decimal:
    """Coerce ints, strings and Decimals to Decimal; floats go through str()."""
    if value is None:
        if default is None:
            raise PolicyViolationError(f"{field} is required", field=field)
        return default
    if isinstance(value, bool):
        raise PolicyViolationError(f"{field} must be numeric", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise PolicyViolationError(f"{field} must be numeric", field=field)
    else:
        raise PolicyViolationError(f"{field} must be numeric", field=field)
    if not result.is_finite():
        raise PolicyViolationError(f"{field} must be a finite number", field=field)
    return result


def compute_fold(
    qty0: Decimal,
    mac0: Decimal,
    quantity: Decimal,
    unit_price: Decimal,
    shipping: Decimal = ZERO,
    *,
    include_shipping: bool = False,
) -> FoldResult:
    """Pure MAC arithmetic for one entry; no policy checks, no I/O."""
    qty1 = qty0 + quantity
    if quantity > 0:
        unit_cost = unit_price
        if include_shipping:
            unit_cost = unit_price + shipping / quantity
        if qty1 > 0:
            mac1 = (qty0 * mac0 + quantity * unit_cost) / qty1
        else:
            mac1 = unit_cost
    else:
        mac1 = mac0

    qty1 = qty1.quantize(QTY_PLACES, rounding=ROUND_HALF_UP)
    mac1 = mac1.quantize(MAC_PLACES, rounding=ROUND_HALF_UP)
    total = (qty1 * mac1).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    return FoldResult(quantity_on_hand=qty1, mac=mac1, total_value=total)


def latest_snapshot(item_id: str) -> MacSnapshot | None:
    return (
        db.session.query(MacSnapshot)
        .filter(MacSnapshot.item_id == item_id)
        .order_by(MacSnapshot.snapshot_date.desc())
        .first()
    )


def current_state(item_id: str) -> tuple[Decimal, Decimal]:
    """(quantity_on_hand, mac) for the item; (0, 0) before its first entry."""
    snap = latest_snapshot(item_id)
    if snap is None:
        return ZERO, ZERO
    return Decimal(snap.quantity_on_hand), Decimal(snap.mac)


def _next_snapshot_time(previous: MacSnapshot | None) -> datetime:
    now = utcnow()
    if previous is None:
        return now
    floor = normalize_datetime(previous.snapshot_date) + SNAPSHOT_TICK
    return now if now >= floor else floor


def fold(
    item_id: str,
    quantity,
    unit_price,
    shipping=ZERO,
    *,
    actor_id=None,
    note: str | None = None,
    allow_negative: bool | None = None,
) -> MacSnapshot:
    """
    Fold one ledger entry into the item's valuation state and append a snapshot.

    Must run inside the caller's unit of work while the item's valuation lock
    is held. Raises PolicyViolationError (before writing anything) when the
    entry would drive on-hand negative under the default policy.

    allow_negative overrides ALLOW_NEGATIVE_ON_HAND for one fold; corrections
    use it for the reversal leg and check the corrected leg normally.
    """
    cfg = current_app.config
    if allow_negative is None:
        allow_negative = cfg["ALLOW_NEGATIVE_ON_HAND"]
    quantity = to_decimal(quantity, field="quantity")
    unit_price = to_decimal(unit_price, field="unit_price", default=ZERO)
    shipping = to_decimal(shipping, field="shipping", default=ZERO)
    if quantity == 0:
        raise PolicyViolationError("quantity must be non-zero", field="quantity")

    previous = latest_snapshot(item_id)
    qty0 = Decimal(previous.quantity_on_hand) if previous else ZERO
    mac0 = Decimal(previous.mac) if previous else ZERO

    result = compute_fold(
        qty0, mac0, quantity, unit_price, shipping,
        include_shipping=cfg["MAC_INCLUDE_SHIPPING"],
    )

    if result.quantity_on_hand < 0 and not allow_negative:
        raise PolicyViolationError(
            f"entry would make on-hand negative for item {item_id} "
            f"(on hand {qty0}, change {quantity})",
            field="quantity",
            entity_type="item",
            entity_id=item_id,
        )

    snap = MacSnapshot(
        item_id=item_id,
        snapshot_date=_next_snapshot_time(previous),
        quantity_on_hand=result.quantity_on_hand,
        mac=result.mac,
        total_value=result.total_value,
        last_updated_by=actor_id,
        note=note,
    )
    db.session.add(snap)
    db.session.flush()
    return snap


# =============================================================================
# READ CONTRACTS
# =============================================================================

def _ensure_item(item_id: str) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError(f"item {item_id} not found", field="item_id", entity_type="item", entity_id=item_id)
    return item


def current_mac(item_id: str) -> MacSnapshot:
    """
    Latest snapshot for the item by snapshot_date.

    Raises NotFoundError for an unknown item or an item with no ledger history.
    """
    _ensure_item(item_id)
    snap = latest_snapshot(item_id)
    if snap is None:
        raise NotFoundError(
            f"no valuation snapshot for item {item_id}",
            field="item_id",
            entity_type="mac_snapshot",
            entity_id=item_id,
        )
    return snap


def mac_as_of(item_id: str, as_of) -> MacSnapshot:
    """Point-in-time valuation: latest snapshot with snapshot_date <= as_of (inclusive)."""
    _ensure_item(item_id)
    as_of_dt = normalize_datetime(as_of, field="as_of")
    snap = (
        db.session.query(MacSnapshot)
        .filter(MacSnapshot.item_id == item_id, MacSnapshot.snapshot_date <= as_of_dt)
        .order_by(MacSnapshot.snapshot_date.desc())
        .first()
    )
    if snap is None:
        raise NotFoundError(
            f"no valuation snapshot for item {item_id} as of {as_of_dt.isoformat()}",
            field="as_of",
            entity_type="mac_snapshot",
            entity_id=item_id,
        )
    return snap


def snapshot_history(item_id: str, *, limit: int = 200) -> list[MacSnapshot]:
    _ensure_item(item_id)
    return (
        db.session.query(MacSnapshot)
        .filter(MacSnapshot.item_id == item_id)
        .order_by(MacSnapshot.snapshot_date.desc())
        .limit(limit)
        .all()
    )


def list_current_mac() -> list[MacSnapshot]:
    """Latest snapshot per item (distinct-latest-by-key), ordered by item_id."""
    rn = func.row_number().over(
        partition_by=MacSnapshot.item_id,
        order_by=MacSnapshot.snapshot_date.desc(),
    ).label("rn")
    ranked = db.session.query(MacSnapshot.id.label("id"), rn).subquery()
    return (
        db.session.query(MacSnapshot)
        .join(ranked, MacSnapshot.id == ranked.c.id)
        .filter(ranked.c.rn == 1)
        .order_by(MacSnapshot.item_id)
        .all()
    )


# =============================================================================
# RECONCILIATION
# =============================================================================

def ledger_quantity_on_hand(item_id: str) -> Decimal:
    """SUM(quantity) over every ledger entry for the item (reversals included)."""
    total = db.session.query(
        func.coalesce(func.sum(Transaction.quantity), 0)
    ).filter(Transaction.item_id == item_id).scalar()
    return Decimal(total or 0).quantize(QTY_PLACES, rounding=ROUND_HALF_UP)


def replay_item(item_id: str) -> FoldResult:
    """
    Recompute the item's valuation by folding its ledger in append order.

    Append order is Transaction.created_at, which the ledger stamps with the
    snapshot_date of the fold it triggered.
    """
    _ensure_item(item_id)
    include_shipping = current_app.config["MAC_INCLUDE_SHIPPING"]
    state = FoldResult(ZERO, ZERO, ZERO)
    rows = (
        db.session.query(Transaction)
        .filter(Transaction.item_id == item_id)
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        .all()
    )
    for tx in rows:
        state = compute_fold(
            state.quantity_on_hand,
            state.mac,
            Decimal(tx.quantity),
            Decimal(tx.unit_price or 0),
            Decimal(tx.shipping or 0),
            include_shipping=include_shipping,
        )
    return state


def verify_item(item_id: str) -> dict:
    """Compare the current snapshot with a full replay and with the ledger sum."""
    replayed = replay_item(item_id)
    ledger_qty = ledger_quantity_on_hand(item_id)
    snap = latest_snapshot(item_id)
    snap_qty = Decimal(snap.quantity_on_hand) if snap else ZERO
    snap_mac = Decimal(snap.mac) if snap else ZERO
    consistent = (
        snap_qty == ledger_qty
        and snap_qty == replayed.quantity_on_hand
        and snap_mac == replayed.mac
    )
    return {
        "item_id": item_id,
        "ledger_quantity": ledger_qty,
        "snapshot_quantity": snap_qty,
        "snapshot_mac": snap_mac,
        "replay_quantity": replayed.quantity_on_hand,
        "replay_mac": replayed.mac,
        "consistent": consistent,
    }
