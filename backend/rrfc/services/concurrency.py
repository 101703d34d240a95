# Overview: Locking and retry primitives shared by every mutating engine call.

from __future__ import annotations

import threading
import time
import weakref
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConcurrencyConflictError, PersistenceFailureError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


class ItemLockRegistry:
    """
    In-process exclusive locks keyed by item id.

    Serializes the read-compute-write fold for one item across threads of
    this process. Different items get different locks and never wait on
    each other. Row locks (lock_for_update) cover other processes.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # Entries drop out once no holder or waiter references the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, item_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(item_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[item_id] = lock
            return lock

    def acquire(self, item_id: str, *, timeout: float, backoff_base: float) -> threading.Lock:
        """
        Acquire the item's lock, waiting in growing slices until `timeout` expires.

        Raises ConcurrencyConflictError when the deadline passes.
        """
        lock = self._lock_for(item_id)
        deadline = time.monotonic() + max(timeout, 0.0)
        wait = max(backoff_base, 0.001)
        while True:
            remaining = deadline - time.monotonic()
            if lock.acquire(timeout=max(min(wait, remaining), 0.0)):
                return lock
            if time.monotonic() >= deadline:
                raise ConcurrencyConflictError(
                    f"timed out after {timeout:.2f}s waiting for valuation lock on item {item_id}",
                    field="item_id",
                    entity_type="item",
                    entity_id=item_id,
                )
            wait *= 2


item_locks = ItemLockRegistry()


@contextmanager
def item_valuation_lock(item_id: str, timeout: float | None = None):
    """Hold the exclusive valuation lock for `item_id` for the duration of the block."""
    cfg = current_app.config
    if timeout is None:
        timeout = cfg["ITEM_LOCK_TIMEOUT_SECONDS"]
    lock = item_locks.acquire(item_id, timeout=timeout, backoff_base=cfg["LOCK_BACKOFF_BASE"])
    try:
        yield
    finally:
        lock.release()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts); exhausting the attempts surfaces a
    ConcurrencyConflictError. Any other SQLAlchemy error becomes a
    PersistenceFailureError. The session is rolled back on every failure,
    so a failed unit never leaves partial writes behind.
    """
    cfg = current_app.config
    if attempts is None:
        attempts = cfg["LOCK_RETRY_ATTEMPTS"]
    if backoff_base is None:
        backoff_base = cfg["LOCK_BACKOFF_BASE"]

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflictError(
                    f"database contention persisted after {attempts} attempts: {exc}"
                ) from exc
            current_app.logger.info(
                "retrying after database contention (attempt %s/%s): %s",
                attempt + 1, attempts, exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceFailureError(f"storage error: {exc}") from exc
        except Exception:
            db.session.rollback()
            raise
    raise ConcurrencyConflictError("no attempts were made")
