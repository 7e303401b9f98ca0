from __future__ import annotations

from ..extensions import db
from saleflow.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data and its running stock counter.

    STOCK DESIGN DECISION:
    current_stock is a mutable counter guarded by version_id. Every change goes
    through inventory_service.apply_stock_delta, which performs an optimistic
    compare-and-adjust on version_id and appends a StockMovement row, so the
    counter always equals the sum of its movement history.

    PRICING:
    - price_cents is the list price.
    - sale_price_cents, when set, is the active pricing rule and wins.
    - tax_rate_bps is optional; NULL falls back to DEFAULT_TAX_RATE_BPS.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_price_cents = db.Column(db.Integer, nullable=True)
    tax_rate_bps = db.Column(db.Integer, nullable=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)
    allow_backorder = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def effective_price_cents(self) -> int:
        if self.sale_price_cents is not None:
            return self.sale_price_cents
        return self.price_cents or 0

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "sale_price_cents": self.sale_price_cents,
            "effective_price_cents": self.effective_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "current_stock": self.current_stock,
            "track_inventory": self.track_inventory,
            "allow_backorder": self.allow_backorder,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only history of stock deltas.

    REASONS:
    - sale: units left with a sale (negative)
    - void: units returned by voiding a sale (positive)
    - refund: units returned by a refund (positive)
    - reconcile: late application of a sale's pending delta
    - adjustment: manual correction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    # Receipt number or other correlation id
    reference = db.Column(db.String(64), nullable=True, index=True)

    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "reference": self.reference,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
