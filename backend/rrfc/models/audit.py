from __future__ import annotations

import uuid

from ..extensions import db
from rrfc.time_utils import to_utc_z


class SystemLog(db.Model):
    """
    Append-only audit row, one per mutating engine call.

    details holds a small JSON payload (ids, quantities, resulting MAC).
    """
    __tablename__ = "system_logs"
    __table_args__ = (
        db.Index("idx_logs_actor_time", "actor", "created_at"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    actor = db.Column(db.Uuid, db.ForeignKey("app_users.id"), nullable=True)
    action = db.Column(db.Text, nullable=False)
    entity_type = db.Column(db.Text, nullable=True)
    entity_id = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "actor": str(self.actor) if self.actor else None,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }
