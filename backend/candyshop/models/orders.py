from __future__ import annotations

import enum

from ..extensions import db
from candyshop.time_utils import to_utc_z


class OrderStatus(str, enum.Enum):
    """
    Canonical order lifecycle values.

    Presentation (labels, colors) belongs to the UI; only the values live
    here; TERMINAL_STATUSES names the end states.
    """
    PENDING_WHATSAPP = "pending_whatsapp"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ORDER_STATUSES = tuple(s.value for s in OrderStatus)
TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value})

DELIVERY_METHODS = ("delivery", "pickup")
PAYMENT_METHODS = ("cash-on-delivery", "transfer", "card")


class Order(db.Model):
    """
    Customer order (the persisted aggregate).

    Totals are always server-computed:
        subtotal = sum(line.line_total)
        total    = subtotal + shipping_cost

    `status` is only changed through lifecycle_service, which enforces the
    state machine and writes an audit entry for every transition.
    `version_id` is the optimistic-lock marker; a concurrent writer that
    read an older version fails its flush with StaleDataError.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_created_by_status", "created_by", "status"),
        db.CheckConstraint("shipping_cost >= 0", name="ck_orders_shipping_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "QUE-20261019-007")
    order_number = db.Column(db.String(32), nullable=False)

    # Customer snapshot (copied at checkout, never re-read from accounts)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False, index=True)
    customer_phone = db.Column(db.String(32), nullable=False)
    # {street, number, city, neighborhood?, reference?} or None for pickup
    shipping_address = db.Column(db.JSON, nullable=True)

    delivery_method = db.Column(db.String(16), nullable=False, index=True)  # delivery, pickup
    payment_method = db.Column(db.String(32), nullable=False, index=True)  # cash-on-delivery, transfer, card
    payment_proof = db.Column(db.String(500), nullable=True)

    # Amounts (integer currency units)
    subtotal = db.Column(db.Integer, nullable=False, default=0)
    total_discount = db.Column(db.Integer, nullable=False, default=0)
    shipping_cost = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False, default=0)

    # Lifecycle
    status = db.Column(db.String(32), nullable=False, default=OrderStatus.PENDING_WHATSAPP.value, index=True)
    cancellation_reason = db.Column(db.String(500), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)

    # Free text
    admin_notes = db.Column(db.String(500), nullable=True)
    delivery_notes = db.Column(db.String(500), nullable=True)
    customer_notes = db.Column(db.String(500), nullable=True)

    # Notification side channel (delivery is external)
    whatsapp_sent = db.Column(db.Boolean, nullable=False, default=False)
    whatsapp_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    whatsapp_message_id = db.Column(db.String(128), nullable=True)

    # Customer session id, None for guest checkout
    created_by = db.Column(db.String(64), nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    preparing_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def recompute_totals(self) -> None:
        self.subtotal = sum(line.line_total for line in self.lines)
        self.total_discount = sum(line.discount * line.quantity for line in self.lines)
        self.total = self.subtotal + (self.shipping_cost or 0)

    def reservation_lines(self) -> list[dict]:
        return [{"variant_id": line.variant_id, "quantity": line.quantity} for line in self.lines]

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer": {
                "name": self.customer_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
                "address": self.shipping_address,
            },
            "delivery_method": self.delivery_method,
            "payment_method": self.payment_method,
            "payment_proof": self.payment_proof,
            "subtotal": self.subtotal,
            "total_discount": self.total_discount,
            "shipping_cost": self.shipping_cost,
            "total": self.total,
            "status": self.status,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "admin_notes": self.admin_notes,
            "delivery_notes": self.delivery_notes,
            "customer_notes": self.customer_notes,
            "whatsapp_sent": self.whatsapp_sent,
            "whatsapp_sent_at": to_utc_z(self.whatsapp_sent_at),
            "whatsapp_message_id": self.whatsapp_message_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "preparing_at": to_utc_z(self.preparing_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    Priced line on an order.

    Variant name/attributes/price are snapshotted at purchase so later
    catalog edits never alter historical orders.
    line_total = (unit_price - discount) * quantity
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "position", name="uq_order_lines_order_position"),
        db.CheckConstraint("quantity >= 1 AND quantity <= 999", name="ck_order_lines_quantity_range"),
        db.CheckConstraint("discount >= 0", name="ck_order_lines_discount_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    # Snapshot
    sku = db.Column(db.String(64), nullable=False)
    variant_name = db.Column(db.String(255), nullable=False)
    attributes = db.Column(db.JSON, nullable=False, default=dict)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)  # base price at purchase (pre-discount)
    discount = db.Column(db.Integer, nullable=False, default=0)  # per unit, actually applied
    line_total = db.Column(db.Integer, nullable=False)

    # Which mechanism produced `discount` (at most one is set)
    applied_tier = db.Column(db.JSON, nullable=True)
    applied_fixed_discount = db.Column(db.JSON, nullable=True)
    promotional = db.Column(db.Boolean, nullable=False, default=False)

    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "position": self.position,
            "sku": self.sku,
            "variant_name": self.variant_name,
            "attributes": dict(self.attributes or {}),
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "discount": self.discount,
            "line_total": self.line_total,
            "applied_tier": self.applied_tier,
            "applied_fixed_discount": self.applied_fixed_discount,
            "promotional": self.promotional,
        }
