# Overview: Pytest coverage for MAC folding, snapshot reads, and ledger replay.

"""
MAC Valuation Tests

Covers the weighted-average law, outbound invariance, zero-price and
zero-quantity behavior, the on-hand policy, point-in-time reads, and
replay reconciliation.
"""

from decimal import Decimal

import pytest

from rrfc.errors import NotFoundError, PolicyViolationError
from rrfc.models import MacSnapshot, Transaction
from rrfc.services import ledger_service, return_service, valuation_service
from rrfc.services.ledger_service import TransactionDraft
from rrfc.services.valuation_service import compute_fold


def _outbound(item_id, quantity, transaction_type="Waste", unit_price=None):
    return ledger_service.append(
        TransactionDraft(
            transaction_type=transaction_type,
            item_id=item_id,
            quantity=quantity,
            unit_price=unit_price,
        )
    )


class TestComputeFold:
    """Pure arithmetic, no database."""

    def test_weighted_average(self):
        result = compute_fold(Decimal("10"), Decimal("5"), Decimal("10"), Decimal("7"))
        assert result.quantity_on_hand == Decimal("20")
        assert result.mac == Decimal("6")
        assert result.total_value == Decimal("120")

    def test_outbound_keeps_mac(self):
        result = compute_fold(Decimal("20"), Decimal("6"), Decimal("-5"), Decimal("9"))
        assert result.quantity_on_hand == Decimal("15")
        assert result.mac == Decimal("6")
        assert result.total_value == Decimal("90")

    def test_inbound_from_zero_takes_unit_price(self):
        result = compute_fold(Decimal("0"), Decimal("5"), Decimal("4"), Decimal("8"))
        assert result.mac == Decimal("8")

    def test_inbound_from_negative_weighs_in_backorder(self):
        """(-3 * 2.00 + 5 * 4.00) / 2 = 7.00"""
        result = compute_fold(Decimal("-3"), Decimal("2"), Decimal("5"), Decimal("4"))
        assert result.quantity_on_hand == Decimal("2")
        assert result.mac == Decimal("7")

    def test_inbound_still_negative_takes_unit_price(self):
        result = compute_fold(Decimal("-5"), Decimal("2"), Decimal("3"), Decimal("4"))
        assert result.quantity_on_hand == Decimal("-2")
        assert result.mac == Decimal("4")

    def test_shipping_ignored_unless_landed_cost(self):
        plain = compute_fold(Decimal("0"), Decimal("0"), Decimal("10"), Decimal("5"), Decimal("10"))
        landed = compute_fold(
            Decimal("0"), Decimal("0"), Decimal("10"), Decimal("5"), Decimal("10"), include_shipping=True
        )
        assert plain.mac == Decimal("5")
        assert landed.mac == Decimal("6")

    def test_mac_rounds_to_six_places(self):
        result = compute_fold(Decimal("3"), Decimal("1"), Decimal("3"), Decimal("0"))
        assert result.mac == Decimal("0.5")
        result = compute_fold(Decimal("1"), Decimal("1"), Decimal("2"), Decimal("0"))
        assert result.mac == Decimal("0.333333")


class TestFoldThroughLedger:
    """Folding happens as part of every append."""

    def test_weighted_average_law(self, db_session, item, purchase):
        """qty0=10 @ 5.00 plus 10 @ 7.00 gives 20 @ 6.00, value 120.00."""
        purchase(item.item_id, 10, "5.00")
        result = purchase(item.item_id, 10, "7.00")

        snap = result.snapshot
        assert snap.quantity_on_hand == Decimal("20")
        assert snap.mac == Decimal("6.00")
        assert snap.total_value == Decimal("120.00")

    def test_outbound_invariance(self, db_session, item, purchase):
        """A Return of 5 from 20 @ 6.00 leaves 15 @ 6.00."""
        purchase(item.item_id, 10, "5.00")
        second = purchase(item.item_id, 10, "7.00")

        result = return_service.record_return(second.transaction.id, 5)

        assert result.snapshot.quantity_on_hand == Decimal("15")
        assert result.snapshot.mac == Decimal("6.00")
        assert result.snapshot.total_value == Decimal("90.00")

    def test_zero_price_drags_mac_down(self, db_session, item, purchase):
        purchase(item.item_id, 10, "6.00")
        result = purchase(item.item_id, 10, "0")

        assert result.snapshot.quantity_on_hand == Decimal("20")
        assert result.snapshot.mac == Decimal("3.00")

    def test_mac_retained_at_zero_quantity(self, db_session, item, purchase):
        purchase(item.item_id, 10, "5.00")
        emptied = _outbound(item.item_id, -10)

        assert emptied.snapshot.quantity_on_hand == Decimal("0")
        assert emptied.snapshot.mac == Decimal("5.00")
        assert emptied.snapshot.total_value == Decimal("0")

        refilled = purchase(item.item_id, 4, "8.00")
        assert refilled.snapshot.mac == Decimal("8.00")

    def test_outbound_without_price_leaves_at_mac(self, db_session, item, purchase):
        purchase(item.item_id, 10, "5.00")
        result = _outbound(item.item_id, -2, transaction_type="Damage")

        assert result.transaction.unit_price == Decimal("5.00")
        assert result.transaction.total_cost == Decimal("-10.00")

    def test_transfer_in_is_inbound(self, db_session, item, purchase):
        purchase(item.item_id, 10, "5.00")
        result = ledger_service.append(
            TransactionDraft(transaction_type="Transfer", item_id=item.item_id, quantity=10, unit_price="7.00")
        )
        assert result.snapshot.mac == Decimal("6.00")

    def test_landed_cost_config(self, app, db_session, item, purchase, monkeypatch):
        monkeypatch.setitem(app.config, "MAC_INCLUDE_SHIPPING", True)
        result = purchase(item.item_id, 10, "5.00", shipping="10.00")
        assert result.snapshot.mac == Decimal("6.00")

    def test_snapshots_are_appended_never_overwritten(self, db_session, item, purchase):
        purchase(item.item_id, 10, "5.00")
        purchase(item.item_id, 10, "7.00")
        _outbound(item.item_id, -3)

        snaps = db_session.query(MacSnapshot).filter_by(item_id=item.item_id).all()
        assert len(snaps) == 3
        dates = sorted(s.snapshot_date for s in snaps)
        assert len(set(dates)) == 3


class TestOnHandPolicy:
    """Default policy rejects negative on-hand; backorders are opt-in."""

    def test_negative_on_hand_rejected_without_writes(self, db_session, item, purchase):
        purchase(item.item_id, 5, "5.00")
        txn_count = db_session.query(Transaction).count()
        snap_count = db_session.query(MacSnapshot).count()

        with pytest.raises(PolicyViolationError) as excinfo:
            _outbound(item.item_id, -6)

        assert excinfo.value.field == "quantity"
        assert db_session.query(Transaction).count() == txn_count
        assert db_session.query(MacSnapshot).count() == snap_count
        assert valuation_service.current_mac(item.item_id).quantity_on_hand == Decimal("5")

    def test_outbound_from_empty_item_rejected(self, db_session, item):
        with pytest.raises(PolicyViolationError):
            _outbound(item.item_id, -1, transaction_type="Loss")
        assert db_session.query(MacSnapshot).count() == 0

    def test_backorders_allowed_when_configured(self, app, db_session, item, purchase, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_NEGATIVE_ON_HAND", True)

        result = _outbound(item.item_id, -3)
        assert result.snapshot.quantity_on_hand == Decimal("-3")

        # Backorder was valued at MAC 0: (-3 * 0 + 5 * 4.00) / 2
        refilled = purchase(item.item_id, 5, "4.00")
        assert refilled.snapshot.quantity_on_hand == Decimal("2")
        assert refilled.snapshot.mac == Decimal("10.00")


class TestSnapshotReads:
    """current_mac / mac_as_of / list_current_mac contracts."""

    def test_current_mac_is_idempotent(self, db_session, item, purchase):
        purchase(item.item_id, 10, "5.00")

        first = valuation_service.current_mac(item.item_id)
        second = valuation_service.current_mac(item.item_id)

        assert first.id == second.id
        assert (first.quantity_on_hand, first.mac, first.total_value) == (
            second.quantity_on_hand, second.mac, second.total_value
        )

    def test_current_mac_unknown_item(self, db_session):
        with pytest.raises(NotFoundError) as excinfo:
            valuation_service.current_mac("NOPE")
        assert excinfo.value.code == "NOT_FOUND"

    def test_current_mac_without_history(self, db_session, item):
        with pytest.raises(NotFoundError):
            valuation_service.current_mac(item.item_id)

    def test_mac_as_of_is_inclusive(self, db_session, item, purchase):
        first = purchase(item.item_id, 10, "5.00")
        first_date = first.snapshot.snapshot_date
        purchase(item.item_id, 10, "7.00")

        as_of = valuation_service.mac_as_of(item.item_id, first_date)
        assert as_of.mac == Decimal("5.00")
        assert valuation_service.current_mac(item.item_id).mac == Decimal("6.00")

    def test_mac_as_of_before_history(self, db_session, item, purchase):
        purchase(item.item_id, 10, "5.00")
        with pytest.raises(NotFoundError):
            valuation_service.mac_as_of(item.item_id, "2000-01-01T00:00:00Z")

    def test_list_current_mac_latest_per_item(self, db_session, item, other_item, purchase):
        purchase(item.item_id, 10, "5.00")
        purchase(item.item_id, 10, "7.00")
        purchase(other_item.item_id, 2, "30.00")

        rows = valuation_service.list_current_mac()
        by_item = {r.item_id: r for r in rows}

        assert len(rows) == 2
        assert by_item[item.item_id].mac == Decimal("6.00")
        assert by_item[other_item.item_id].quantity_on_hand == Decimal("2")

    def test_snapshot_history_newest_first(self, db_session, item, purchase):
        purchase(item.item_id, 10, "5.00")
        purchase(item.item_id, 10, "7.00")

        history = valuation_service.snapshot_history(item.item_id)
        assert [h.quantity_on_hand for h in history] == [Decimal("20"), Decimal("10")]


class TestReplay:
    """Replaying the ledger reproduces the latest snapshot."""

    def test_replay_matches_snapshot(self, db_session, item, purchase):
        purchase(item.item_id, 10, "5.00")
        second = purchase(item.item_id, 7, "6.25", shipping="3.00")
        _outbound(item.item_id, -4)
        return_service.record_return(second.transaction.id, 2)
        purchase(item.item_id, 3, "0")

        report = valuation_service.verify_item(item.item_id)

        assert report["consistent"] is True
        assert report["ledger_quantity"] == Decimal("14")
        assert report["replay_mac"] == report["snapshot_mac"]

    def test_replay_of_empty_item(self, db_session, item):
        result = valuation_service.replay_item(item.item_id)
        assert result.quantity_on_hand == Decimal("0")
        assert result.mac == Decimal("0")
