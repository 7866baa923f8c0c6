from __future__ import annotations

from ..extensions import db
from candyshop.time_utils import to_utc_z


class ProductParent(db.Model):
    """
    Catalog product grouping purchasable variants (e.g. "Gomitas Ositos").

    Only the flags the pricing engine consumes live here; taxonomy
    (categories, brands) and images are managed elsewhere.
    """
    __tablename__ = "product_parents"
    __table_args__ = (
        db.Index("ix_product_parents_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Pricing flags handed to the discount engine
    discounts_enabled = db.Column(db.Boolean, nullable=False, default=True)
    promotional = db.Column(db.Boolean, nullable=False, default=False)

    active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def pricing_flags(self) -> dict:
        return {
            "discounts_enabled": bool(self.discounts_enabled),
            "promotional": bool(self.promotional),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "discounts_enabled": self.discounts_enabled,
            "promotional": self.promotional,
            "active": self.active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """
    Purchasable SKU under a parent product.

    STOCK: `stock` is only mutated by stock_service through atomic
    conditional UPDATE statements. Never assign it through the ORM in
    request code; use stock_service.adjust() instead.

    DISCOUNTS (JSON, validated by discount_service on write):
    - fixed_discount:  {enabled, type: percentage|amount, value, startDate?, endDate?, badge?}
    - tiered_discount: {active, startDate?, endDate?, badge?,
                        tiers: [{minQuantity, maxQuantity?, type, value}]}
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_product_variants_sku"),
        db.Index("ix_product_variants_parent_active", "parent_id", "active"),
        db.Index("ix_product_variants_stock", "stock"),
        db.CheckConstraint("price >= 0", name="ck_product_variants_price_nonneg"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_product_variants_threshold_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("product_parents.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # e.g. {"size": "1kg", "flavor": "frutilla"}; keys are unique by construction
    attributes = db.Column(db.JSON, nullable=False, default=dict)

    # Integer currency units (no fractional part)
    price = db.Column(db.Integer, nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    allow_backorder = db.Column(db.Boolean, nullable=False, default=False)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    fixed_discount = db.Column(db.JSON, nullable=True)
    tiered_discount = db.Column(db.JSON, nullable=True)

    active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    parent = db.relationship("ProductParent", backref=db.backref("variants", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.track_stock and 0 < self.stock <= self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.track_stock and self.stock <= 0 and not self.allow_backorder

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "sku": self.sku,
            "name": self.name,
            "attributes": dict(self.attributes or {}),
            "price": self.price,
            "stock": self.stock,
            "track_stock": self.track_stock,
            "allow_backorder": self.allow_backorder,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "is_out_of_stock": self.is_out_of_stock,
            "fixed_discount": self.fixed_discount,
            "tiered_discount": self.tiered_discount,
            "active": self.active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
