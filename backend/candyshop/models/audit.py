from __future__ import annotations

from ..extensions import db
from candyshop.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only before/after snapshots for every mutating order operation.

    Written in the same DB transaction as the mutation it records, so a
    rolled-back operation leaves no audit trail and vice versa.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    actor_id = db.Column(db.String(64), nullable=True, index=True)
    actor_role = db.Column(db.String(16), nullable=False)

    action = db.Column(db.String(64), nullable=False, index=True)  # e.g. order.created, order.cancelled
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor": {"id": self.actor_id, "role": self.actor_role},
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "timestamp": to_utc_z(self.occurred_at),
        }
