from __future__ import annotations

from ..extensions import db
from saleflow.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data with denormalized purchase statistics.

    WHY: Enables lifetime value tracking and repeat purchase analysis without
    aggregating the sale ledger on every read.

    STATISTICS are mutated only by the sale workflow after a sale, void or
    refund commits (see customer_service). total_orders counts orders placed;
    refunds reduce total_spent but never total_orders.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Denormalized aggregates (updated by the sale workflow)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    average_order_value_cents = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Outstanding balance charged to the customer's store-credit account
    credit_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def statistics_dict(self) -> dict:
        return {
            "total_spent_cents": self.total_spent_cents,
            "total_orders": self.total_orders,
            "average_order_value_cents": self.average_order_value_cents,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "favorite_products": [
                fav.to_dict()
                for fav in sorted(self.favorite_products, key=lambda f: (-f.count, f.product_id))
            ],
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "statistics": self.statistics_dict(),
            "credit_balance_cents": self.credit_balance_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerFavoriteProduct(db.Model):
    """Cumulative units bought per product, used to rank a customer's favorites."""
    __tablename__ = "customer_favorite_products"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "product_id", name="uq_customer_favorite_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    # Weak reference: deleting a product keeps the customer's history row
    product_id = db.Column(db.Integer, nullable=False, index=True)
    count = db.Column(db.Integer, nullable=False, default=0)

    customer = db.relationship("Customer", backref=db.backref("favorite_products", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "count": self.count,
        }


class CustomerCreditTransaction(db.Model):
    """
    Append-only ledger of store-credit account events.

    TRANSACTION TYPES:
    - payment: a sale was paid with store credit (balance increases)
    - settlement: the customer paid down the balance (balance decreases)
    - adjustment: manual correction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "customer_credit_transactions"
    __table_args__ = (
        db.Index("ix_credit_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(64), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("credit_transactions", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "reference": self.reference,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
