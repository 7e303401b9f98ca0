# Overview: Service-layer operations for customer statistics; purchase aggregates and store-credit ledger.

"""
Customer Statistics Aggregator

WHY: Sales need lifetime value, order counts and favorite products per
customer without re-aggregating the sale ledger on every lookup.

DESIGN PRINCIPLES:
- Read-modify-write under SELECT ... FOR UPDATE; the Customer.version_id
  column is the backstop where the database ignores row locks.
- Nothing here commits. The sale workflow calls these inside its own
  transaction so statistics move together with the sale.
- average_order_value is always recomputed from the post-update totals.
"""

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..models import Customer, CustomerFavoriteProduct, CustomerCreditTransaction
from saleflow.money import average
from saleflow.time_utils import utcnow
from .concurrency import lock_for_update


CREDIT_PAYMENT = "payment"
CREDIT_SETTLEMENT = "settlement"
CREDIT_ADJUSTMENT = "adjustment"

CREDIT_TRANSACTION_TYPES = (CREDIT_PAYMENT, CREDIT_SETTLEMENT, CREDIT_ADJUSTMENT)


class CustomerError(Exception):
    """Raised for customer operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CustomerNotFoundError(CustomerError):
    def __init__(self, customer_id):
        super().__init__(f"Customer {customer_id} not found", details={"customer_id": customer_id})
        self.customer_id = customer_id


def get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise CustomerNotFoundError(customer_id)
    return customer


def create_customer(*, name: str, phone: str | None = None, email: str | None = None) -> Customer:
    """Create a customer with zeroed statistics. Commits."""
    customer = Customer(name=name, phone=phone, email=email)
    db.session.add(customer)
    db.session.commit()
    return customer


def _favorite_row(customer_id: int, product_id: int) -> CustomerFavoriteProduct | None:
    return lock_for_update(
        db.session.query(CustomerFavoriteProduct).filter_by(customer_id=customer_id, product_id=product_id)
    ).first()


def _bump_favorites(customer_id: int, items: Iterable[tuple[int | None, int]], sign: int) -> None:
    for product_id, quantity in items:
        if product_id is None or quantity <= 0:
            continue
        fav = _favorite_row(customer_id, product_id)
        if fav is None:
            if sign < 0:
                continue
            db.session.add(CustomerFavoriteProduct(customer_id=customer_id, product_id=product_id, count=quantity))
            # Flush so a repeated product in the same call finds the new row
            db.session.flush()
        else:
            fav.count = max(0, fav.count + sign * quantity)


def record_order(
    customer_id: int,
    amount_cents: int,
    items: Iterable[tuple[int | None, int]],
    *,
    purchased_at=None,
) -> Customer:
    """
    Count one order for the customer.

    items are (product_id, quantity) pairs; each increments the customer's
    favorite counter for that product.
    """
    customer = get_customer(customer_id, lock=True)
    customer.total_orders = (customer.total_orders or 0) + 1
    customer.total_spent_cents = (customer.total_spent_cents or 0) + amount_cents
    customer.average_order_value_cents = average(customer.total_spent_cents, customer.total_orders)
    customer.last_purchase_at = purchased_at or utcnow()
    _bump_favorites(customer_id, items, +1)
    db.session.flush()
    return customer


def adjust_spend(customer_id: int, delta_cents: int) -> Customer:
    """Move total spend without touching the order count (refunds)."""
    customer = get_customer(customer_id, lock=True)
    customer.total_spent_cents = (customer.total_spent_cents or 0) + delta_cents
    customer.average_order_value_cents = average(customer.total_spent_cents, customer.total_orders)
    db.session.flush()
    return customer


def reverse_order(customer_id: int, amount_cents: int, items: Iterable[tuple[int | None, int]]) -> Customer:
    """Undo record_order for a voided sale. Counters never go below zero."""
    customer = get_customer(customer_id, lock=True)
    customer.total_orders = max(0, (customer.total_orders or 0) - 1)
    customer.total_spent_cents = max(0, (customer.total_spent_cents or 0) - amount_cents)
    customer.average_order_value_cents = average(customer.total_spent_cents, customer.total_orders)
    _bump_favorites(customer_id, items, -1)
    db.session.flush()
    return customer


def record_credit_transaction(
    customer_id: int,
    transaction_type: str,
    amount_cents: int,
    *,
    reference: str | None = None,
    user_id: int | None = None,
) -> CustomerCreditTransaction:
    """
    Append a store-credit ledger entry and move the customer's balance.

    payment raises the balance (the customer owes more), settlement lowers
    it, adjustment applies the signed amount as given.
    """
    if transaction_type not in CREDIT_TRANSACTION_TYPES:
        raise CustomerError(
            f"Invalid credit transaction type: {transaction_type}",
            details={"transaction_type": transaction_type},
        )
    if transaction_type != CREDIT_ADJUSTMENT and amount_cents <= 0:
        raise CustomerError("Credit amount must be positive", details={"amount_cents": amount_cents})

    customer = get_customer(customer_id, lock=True)
    if transaction_type == CREDIT_PAYMENT:
        delta = amount_cents
    elif transaction_type == CREDIT_SETTLEMENT:
        delta = -amount_cents
    else:
        delta = amount_cents

    customer.credit_balance_cents = (customer.credit_balance_cents or 0) + delta
    txn = CustomerCreditTransaction(
        customer_id=customer_id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        balance_after_cents=customer.credit_balance_cents,
        reference=reference,
        user_id=user_id,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def get_favorite_products(customer_id: int, limit: int = 5) -> list[CustomerFavoriteProduct]:
    get_customer(customer_id)
    return (
        db.session.query(CustomerFavoriteProduct)
        .filter(CustomerFavoriteProduct.customer_id == customer_id, CustomerFavoriteProduct.count > 0)
        .order_by(CustomerFavoriteProduct.count.desc(), CustomerFavoriteProduct.product_id)
        .limit(limit)
        .all()
    )
