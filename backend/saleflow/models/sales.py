from __future__ import annotations

from ..extensions import db
from saleflow.time_utils import to_utc_z


class Sale(db.Model):
    """
    Sale aggregate: immutable line snapshots plus payment, void and refund state.

    WHY: A sale is a ledger entry. Prices, names and tax rates are copied onto
    the lines at creation so later catalog edits never rewrite history.

    TOTALS are derived from the lines by the workflow and never taken from
    input. Refunds are tracked in total_refunded_cents; the original totals
    stay untouched so that total == subtotal - discount + tax always holds.
    """
    __tablename__ = "sales"
    __table_args__ = (
        # Reporting scans by status and date
        db.Index("ix_sales_status_created", "status", "created_at"),
        db.Index("ix_sales_payment_status", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable receipt number (e.g., "RCP-000123")
    receipt_number = db.Column(db.String(64), nullable=False, unique=True)

    # Lifecycle status (see services/sale_state.py)
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    # Attribution (immutable after creation)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Weak reference: deleting a customer never deletes the sale
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)

    # Payment tracking (all amounts in cents)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    payment_status = db.Column(db.String(16), nullable=False, default="pending")  # pending, partial, paid
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    # Totals (sum of line values)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_refunded_cents = db.Column(db.Integer, nullable=False, default=0)

    # Void audit trail
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    # Metadata
    source = db.Column(db.String(32), nullable=False, default="pos")
    device = db.Column(db.String(255), nullable=True)

    # synced, or pending when stock effects still need reconciliation
    inventory_status = db.Column(db.String(16), nullable=False, default="synced", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True, passive_deletes=True))
    seller = db.relationship("User", foreign_keys=[seller_id])
    items = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.line_number",
        cascade="all, delete-orphan",
        lazy=True,
    )
    payment_details = db.relationship(
        "SalePayment",
        back_populates="sale",
        order_by="SalePayment.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    refunds = db.relationship(
        "SaleRefund",
        back_populates="sale",
        order_by="SaleRefund.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def collected_cents(self) -> int:
        """Money actually kept by the store: paid minus change handed back."""
        return (self.total_paid_cents or 0) - (self.change_cents or 0)

    @property
    def net_total_cents(self) -> int:
        return (self.total_cents or 0) - (self.total_refunded_cents or 0)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "status": self.status,
            "seller_id": self.seller_id,
            "customer_id": self.customer_id,
            "items": [line.to_dict() for line in self.items],
            "payment": {
                "method": self.payment_method,
                "status": self.payment_status,
                "total_paid_cents": self.total_paid_cents,
                "change_cents": self.change_cents,
                "details": [p.to_dict() for p in self.payment_details],
            },
            "totals": {
                "subtotal_cents": self.subtotal_cents,
                "discount_cents": self.discount_cents,
                "tax_cents": self.tax_cents,
                "total_cents": self.total_cents,
                "total_refunded_cents": self.total_refunded_cents,
                "net_total_cents": self.net_total_cents,
            },
            "void_info": {
                "voided_by_user_id": self.voided_by_user_id,
                "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
                "reason": self.void_reason,
            } if self.voided_at else None,
            "refund_info": {
                "total_refunded_cents": self.total_refunded_cents,
                "refunds": [r.to_dict() for r in self.refunds],
            } if self.refunds else None,
            "metadata": {
                "source": self.source,
                "device": self.device,
            },
            "inventory_status": self.inventory_status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class SaleLine(db.Model):
    """Snapshot of one product line at the moment of sale."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # Weak reference: the snapshot below survives product deletion
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    # Requested discounts (fixed amount and/or percentage)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)

    # Computed values
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Refund bookkeeping
    refunded_quantity = db.Column(db.Integer, nullable=False, default=0)
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)

    # Inventory bookkeeping
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)
    inventory_applied = db.Column(db.Boolean, nullable=False, default=False)

    sale = db.relationship("Sale", back_populates="items")

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - (self.refunded_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "discount_bps": self.discount_bps,
            "discount_total_cents": self.discount_total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "refunded_quantity": self.refunded_quantity,
            "refunded_cents": self.refunded_cents,
            "track_inventory": self.track_inventory,
            "inventory_applied": self.inventory_applied,
        }


class SalePayment(db.Model):
    """
    One tender applied to a sale.

    DESIGN: Payments are rows rather than a single column so that split and
    partial payments keep their order and references (card auth code, transfer id).
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="payment_details")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
            "recorded_by_user_id": self.recorded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SaleRefund(db.Model):
    """
    One refund event against a sale.

    IMMUTABLE: Refunds are never edited; a second refund is a new row.
    """
    __tablename__ = "sale_refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    refunded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="refunds")
    lines = db.relationship("SaleRefundLine", back_populates="refund", cascade="all, delete-orphan", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "refunded_by_user_id": self.refunded_by_user_id,
            "refunded_at": to_utc_z(self.refunded_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class SaleRefundLine(db.Model):
    """Quantity and amount refunded from one sale line within a refund."""
    __tablename__ = "sale_refund_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("sale_refunds.id", ondelete="CASCADE"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    refund = db.relationship("SaleRefund", back_populates="lines")
    sale_line = db.relationship("SaleLine")

    def to_dict(self) -> dict:
        return {
            "sale_line_id": self.sale_line_id,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
        }
