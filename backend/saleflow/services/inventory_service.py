# Overview: Service-layer operations for the inventory ledger; product lookup and stock deltas.

"""
SaleFlow Inventory Invariants (authoritative)

Stock model:
- Product.current_stock is a running counter; StockMovement rows are its history.
- Every change goes through apply_stock_delta, which appends exactly one
  StockMovement per successful delta, so
      current_stock == initial stock + SUM(quantity_delta).

Concurrency:
- apply_stock_delta is an optimistic compare-and-adjust on Product.version_id:
      UPDATE products SET current_stock = current_stock + :delta,
                          version_id = version_id + 1
      WHERE id = :id AND version_id = :seen
  A zero rowcount means another writer got there first; the row is re-read
  and the policy re-checked, up to STOCK_UPDATE_ATTEMPTS times.
- It never commits. Callers own the transaction, so a sale and its stock
  decrements land together or not at all.

Backorder policy:
- A negative delta on a tracked product without allow_backorder may not take
  stock below zero.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.orm.util import identity_key

from ..extensions import db
from ..models import Product, StockMovement
from .concurrency import begin_write, run_with_retry


MOVEMENT_REASONS = ("sale", "void", "refund", "reconcile", "adjustment")


class InventoryError(Exception):
    """Raised for inventory ledger errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFoundError(InventoryError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found", details={"product_id": product_id})
        self.product_id = product_id


class ProductInactiveError(InventoryError):
    def __init__(self, product: Product):
        super().__init__(
            f"Product {product.name} is inactive",
            details={"product_id": product.id, "product_name": product.name},
        )
        self.product_id = product.id


class InsufficientStockError(InventoryError):
    def __init__(self, *, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def ensure_sellable(product: Product, quantity: int) -> None:
    """Inactive products and tracked products short on stock (without backorder) cannot be sold."""
    if not product.is_active:
        raise ProductInactiveError(product)
    if product.track_inventory and not product.allow_backorder and product.current_stock < quantity:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=product.current_stock,
            requested=quantity,
        )


def _expire_cached_product(product_id: int) -> None:
    # The Core UPDATE bypasses the ORM; drop any stale in-session copy.
    cached = db.session.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached)


def apply_stock_delta(
    product_id: int,
    quantity_delta: int,
    *,
    reason: str,
    reference: str | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
    enforce_policy: bool = True,
) -> int:
    """
    Atomically apply a signed stock delta and record the movement.

    Returns the stock level after the delta. Raises ProductNotFoundError when
    the product is gone and InsufficientStockError when the backorder policy
    refuses the delta or the version race cannot be won within
    STOCK_UPDATE_ATTEMPTS re-reads. enforce_policy=False books goods that
    already left the store (reconciliation) even when stock goes negative.
    """
    if reason not in MOVEMENT_REASONS:
        raise InventoryError(f"Invalid movement reason: {reason}", details={"reason": reason})

    attempts = current_app.config.get("STOCK_UPDATE_ATTEMPTS", 5)
    row = None
    for _ in range(attempts):
        row = db.session.execute(
            select(
                Product.name,
                Product.current_stock,
                Product.version_id,
                Product.track_inventory,
                Product.allow_backorder,
            ).where(Product.id == product_id)
        ).first()
        if row is None:
            raise ProductNotFoundError(product_id)

        stock_before = row.current_stock
        stock_after = stock_before + quantity_delta
        if (
            enforce_policy
            and quantity_delta < 0
            and row.track_inventory
            and not row.allow_backorder
            and stock_after < 0
        ):
            raise InsufficientStockError(
                product_id=product_id,
                product_name=row.name,
                available=stock_before,
                requested=-quantity_delta,
            )

        result = db.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.version_id == row.version_id)
            .values(
                current_stock=Product.current_stock + quantity_delta,
                version_id=Product.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            _expire_cached_product(product_id)
            db.session.add(StockMovement(
                product_id=product_id,
                quantity_delta=quantity_delta,
                reason=reason,
                reference=reference,
                stock_before=stock_before,
                stock_after=stock_after,
                actor_user_id=actor_user_id,
                note=note,
            ))
            db.session.flush()
            return stock_after

        current_app.logger.info(
            "Stock version conflict on product %s; re-reading", product_id
        )

    raise InsufficientStockError(
        product_id=product_id,
        product_name=row.name if row else str(product_id),
        available=row.current_stock if row else 0,
        requested=abs(quantity_delta),
    )


def adjust_stock(
    product_id: int,
    quantity_delta: int,
    *,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """Manual stock correction. Commits."""
    if quantity_delta == 0:
        raise InventoryError("quantity_delta must be non-zero")

    def _op() -> StockMovement:
        begin_write()
        get_product(product_id)
        apply_stock_delta(
            product_id,
            quantity_delta,
            reason="adjustment",
            actor_user_id=actor_user_id,
            note=note,
        )
        movement = (
            db.session.query(StockMovement)
            .filter_by(product_id=product_id)
            .order_by(StockMovement.id.desc())
            .first()
        )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Stock adjusted for product %s by %+d (now %s)",
        product_id, quantity_delta, movement.stock_after,
    )
    return movement


def get_stock_movements(product_id: int, limit: int = 100) -> list[StockMovement]:
    get_product(product_id)
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def create_product(
    *,
    sku: str,
    name: str,
    price_cents: int,
    sale_price_cents: int | None = None,
    tax_rate_bps: int | None = None,
    initial_stock: int = 0,
    track_inventory: bool = True,
    allow_backorder: bool = False,
    actor_user_id: int | None = None,
) -> Product:
    """Create a product; opening stock is booked as an adjustment movement. Commits."""
    if db.session.query(Product.id).filter_by(sku=sku).first():
        raise InventoryError(f"SKU {sku} already exists", details={"sku": sku})

    product = Product(
        sku=sku,
        name=name,
        price_cents=price_cents,
        sale_price_cents=sale_price_cents,
        tax_rate_bps=tax_rate_bps,
        current_stock=0,
        track_inventory=track_inventory,
        allow_backorder=allow_backorder,
    )
    db.session.add(product)
    db.session.flush()
    if initial_stock:
        apply_stock_delta(
            product.id,
            initial_stock,
            reason="adjustment",
            actor_user_id=actor_user_id,
            note="opening stock",
        )
    db.session.commit()
    return product
