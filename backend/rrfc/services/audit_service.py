# Overview: Service-layer operations for the audit log; best-effort, never fails the caller.

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import SystemLog
"""
Audit Log Invariants (authoritative)

- Append-only: one row per mutating engine call, never updated or deleted.
- Written inside the caller's DB transaction, under a SAVEPOINT, so a
  committed ledger write and its audit row become visible together.
- Audit persistence failure rolls back only the savepoint. The primary
  operation still commits and reports a degraded-success warning; ledger
  correctness never depends on audit success.
"""


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _persist_entry(entry: SystemLog) -> None:
    db.session.add(entry)
    db.session.flush()


def log(
    actor: uuid.UUID | None,
    action: str,
    entity_type: str | None,
    entity_id,
    details: dict | None = None,
) -> SystemLog | None:
    """
    Append one audit row.

    Returns the SystemLog on success, or None when persistence failed (the
    failure is logged as a warning and the caller's transaction is intact).
    """
    entry = SystemLog(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=_jsonable(details or {}),
    )
    try:
        with db.session.begin_nested():
            _persist_entry(entry)
    except SQLAlchemyError as exc:
        if entry in db.session:
            db.session.expunge(entry)
        current_app.logger.warning(
            "audit log write failed for %s %s:%s: %s", action, entity_type, entity_id, exc
        )
        return None
    return entry


def degraded_warning(action: str, entity_id) -> str:
    return f"{action} for {entity_id} committed but its audit row could not be written"


def list_logs(*, entity_type: str | None = None, entity_id=None, limit: int = 200) -> list[SystemLog]:
    q = db.session.query(SystemLog)
    if entity_type is not None:
        q = q.filter(SystemLog.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(SystemLog.entity_id == str(entity_id))
    return q.order_by(SystemLog.created_at.desc()).limit(limit).all()
