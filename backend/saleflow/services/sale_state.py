# Overview: Sale status state machine and sale domain errors; no database access.

"""
Sale lifecycle rules.

STATE MACHINE:
    completed -> voided
    completed -> partial_refund -> ... -> refunded
    completed -> refunded

    voided and refunded are terminal. Void and refund are mutually exclusive
    paths: once any refund has been recorded the sale can no longer be voided.

PAYMENT STATE (independent of sale status):
    pending  -> nothing collected
    partial  -> 0 < total_paid < total
    paid     -> total_paid >= total
"""

from __future__ import annotations

from enum import Enum


class SaleStatus(str, Enum):
    COMPLETED = "completed"
    VOIDED = "voided"
    PARTIAL_REFUND = "partial_refund"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class InventoryStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"


METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_TRANSFER = "transfer"
METHOD_CREDIT = "credit"
METHOD_MIXED = "mixed"

PAYMENT_METHODS = frozenset({
    METHOD_CASH,
    METHOD_CARD,
    METHOD_TRANSFER,
    METHOD_CREDIT,
    METHOD_MIXED,
})

# Tender types that draw on the customer's store-credit account
STORE_CREDIT_METHODS = frozenset({METHOD_CREDIT})

# Statuses whose revenue counts in reports
REVENUE_STATUSES = (SaleStatus.COMPLETED.value, SaleStatus.PARTIAL_REFUND.value)

SALE_TRANSITIONS: dict[SaleStatus, frozenset[SaleStatus]] = {
    SaleStatus.COMPLETED: frozenset({
        SaleStatus.VOIDED,
        SaleStatus.PARTIAL_REFUND,
        SaleStatus.REFUNDED,
    }),
    SaleStatus.PARTIAL_REFUND: frozenset({
        SaleStatus.PARTIAL_REFUND,
        SaleStatus.REFUNDED,
    }),
    SaleStatus.VOIDED: frozenset(),
    SaleStatus.REFUNDED: frozenset(),
}


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFoundError(SaleError):
    def __init__(self, sale_id):
        super().__init__("Sale not found", details={"sale_id": sale_id})
        self.sale_id = sale_id


class SaleStateError(SaleError):
    """The sale's current state does not allow the requested operation."""


def can_transition(from_status: str, to_status: str) -> bool:
    try:
        source = SaleStatus(from_status)
        target = SaleStatus(to_status)
    except ValueError:
        return False
    return target in SALE_TRANSITIONS[source]


def ensure_transition(sale, to_status: SaleStatus) -> None:
    if not can_transition(sale.status, to_status):
        raise SaleStateError(
            f"Cannot move sale {sale.receipt_number} from {sale.status} to {SaleStatus(to_status).value}",
            details={"status": sale.status, "requested_status": SaleStatus(to_status).value},
        )


def payment_status_for(total_paid_cents: int, total_cents: int) -> PaymentStatus:
    if total_paid_cents >= total_cents:
        return PaymentStatus.PAID
    if total_paid_cents > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PENDING
