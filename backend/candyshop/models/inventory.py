from __future__ import annotations

from ..extensions import db
from candyshop.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only record of every change to a variant's stock counter.

    MOVEMENT TYPES:
    - sale:         reservation at order creation (negative)
    - cancellation: restore on order cancellation (positive)
    - edit:         staff edited an order's lines (either sign)
    - adjustment:   manual staff correction (either sign)
    - restock:      incoming goods (positive)

    IMMUTABLE: rows are never updated or deleted. For orders created then
    cancelled without edits, sale + cancellation rows net to zero.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_variant_created", "variant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)  # signed delta
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    actor_id = db.Column(db.String(64), nullable=True)

    reason = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variant = db.relationship("ProductVariant", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "order_id": self.order_id,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
