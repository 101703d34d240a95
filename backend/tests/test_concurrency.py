# Overview: Threaded concurrency tests for per-item valuation locking.

"""
Concurrency tests run against a file-backed SQLite database so every thread
gets its own connection, as it would in a multi-threaded server.
"""

import gc
import os
import tempfile
import threading
import unittest
from datetime import date
from decimal import Decimal

from rrfc import create_app
from rrfc.errors import ConcurrencyConflictError
from rrfc.extensions import db
from rrfc.models import MacSnapshot
from rrfc.services import batch_service, catalog_service, ledger_service, valuation_service
from rrfc.services.concurrency import ItemLockRegistry, item_locks
from rrfc.services.ledger_service import TransactionDraft
from rrfc.services.valuation_service import ZERO, compute_fold


# (quantity, unit_price) per item, appended in order by one worker each
PLANS = {
    "CONC-A": [(10, "5.00"), (10, "7.00"), (5, "3.00"), (8, "6.10"), (2, "0")],
    "CONC-B": [(4, "12.00"), (6, "9.50"), (1, "20.00"), (9, "11.00")],
    "CONC-C": [(3, "1.25"), (3, "1.75"), (3, "2.25")],
}


def _expected(plan):
    qty, mac = ZERO, ZERO
    for quantity, price in plan:
        state = compute_fold(qty, mac, Decimal(quantity), Decimal(price))
        qty, mac = state.quantity_on_hand, state.mac
    return qty, mac


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LOCK_RETRY_ATTEMPTS": 20,
            "LOCK_BACKOFF_BASE": 0.01,
            "ITEM_LOCK_TIMEOUT_SECONDS": 30.0,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            vendor = catalog_service.create_vendor(vendor_id="VEND-C", vendor_name="Concurrent Supply")
            for item_id in PLANS:
                catalog_service.create_item(item_id=item_id, item_type="Widget", name=item_id)
            self.batch_id = batch_service.open_batch(vendor.id, date(2025, 1, 1)).batch.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _purchase(self, item_id, quantity, unit_price):
        return ledger_service.append(
            TransactionDraft(
                transaction_type="Purchase",
                item_id=item_id,
                quantity=quantity,
                unit_price=unit_price,
                batch_id=self.batch_id,
            )
        )

    def test_disjoint_items_match_sequential_replay(self):
        errors = []
        lock = threading.Lock()
        start = threading.Barrier(len(PLANS))

        def worker(item_id, plan):
            with self.app.app_context():
                try:
                    start.wait()
                    for quantity, price in plan:
                        self._purchase(item_id, quantity, price)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(iid, plan)) for iid, plan in PLANS.items()]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        with self.app.app_context():
            for item_id, plan in PLANS.items():
                qty, mac = _expected(plan)
                snap = valuation_service.current_mac(item_id)
                self.assertEqual(Decimal(snap.quantity_on_hand), qty)
                self.assertEqual(Decimal(snap.mac), mac)
                self.assertTrue(valuation_service.verify_item(item_id)["consistent"])

    def test_same_item_appends_are_serialized(self):
        errors = []
        lock = threading.Lock()
        workers = 6
        start = threading.Barrier(workers)

        def worker():
            with self.app.app_context():
                try:
                    start.wait()
                    for _ in range(3):
                        self._purchase("CONC-A", 2, "4.00")
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        with self.app.app_context():
            snap = valuation_service.current_mac("CONC-A")
            self.assertEqual(Decimal(snap.quantity_on_hand), Decimal(workers * 3 * 2))
            self.assertEqual(Decimal(snap.mac), Decimal("4"))
            self.assertEqual(
                db.session.query(MacSnapshot).filter_by(item_id="CONC-A").count(), workers * 3
            )
            self.assertTrue(valuation_service.verify_item("CONC-A")["consistent"])

    def test_lock_timeout_is_concurrency_conflict(self):
        held = item_locks.acquire("CONC-B", timeout=1.0, backoff_base=0.01)
        try:
            with self.app.app_context():
                with self.assertRaises(ConcurrencyConflictError) as ctx:
                    ledger_service.append(
                        TransactionDraft(
                            transaction_type="Purchase",
                            item_id="CONC-B",
                            quantity=1,
                            unit_price="1.00",
                            batch_id=self.batch_id,
                        ),
                        timeout=0.1,
                    )
                self.assertTrue(ctx.exception.retryable)
                self.assertEqual(ctx.exception.entity_id, "CONC-B")
                self.assertEqual(db.session.query(MacSnapshot).filter_by(item_id="CONC-B").count(), 0)
        finally:
            held.release()

    def test_other_items_proceed_while_one_is_locked(self):
        held = item_locks.acquire("CONC-B", timeout=1.0, backoff_base=0.01)
        try:
            with self.app.app_context():
                result = self._purchase("CONC-C", 1, "2.00")
                self.assertEqual(Decimal(result.snapshot.quantity_on_hand), Decimal("1"))
        finally:
            held.release()


class ItemLockRegistryTests(unittest.TestCase):
    def test_released_locks_are_dropped(self):
        registry = ItemLockRegistry()
        for n in range(50):
            lock = registry.acquire(f"TEMP-{n}", timeout=0.1, backoff_base=0.01)
            lock.release()
        del lock
        gc.collect()
        self.assertEqual(len(registry._locks), 0)

    def test_held_lock_is_shared(self):
        registry = ItemLockRegistry()
        held = registry.acquire("TEMP", timeout=0.1, backoff_base=0.01)
        try:
            gc.collect()
            self.assertIn("TEMP", registry._locks)
            with self.assertRaises(ConcurrencyConflictError):
                registry.acquire("TEMP", timeout=0.05, backoff_base=0.01)
        finally:
            held.release()


if __name__ == "__main__":
    unittest.main()
