# Overview: Service-layer operations for payment; recording tenders against existing sales.

"""
Payment Recording

WHY: Sales may be completed on account and paid later, in one or several
tenders (deposits, layaway, mixed cash/card).

DESIGN PRINCIPLES:
- Each tender is a SalePayment row; total_paid_cents is their running sum.
- payment_status follows total_paid vs. total (see sale_state.payment_status_for).
- Change is only ever the excess of the last tender over the amount due.
- Store-credit tenders also land on the customer's credit ledger.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Sale, SalePayment
from saleflow.money import format_cents
from saleflow.validation import ValidationError
from . import audit_service, customer_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .sale_state import (
    SaleNotFoundError,
    SaleStateError,
    SaleStatus,
    PaymentStatus,
    METHOD_MIXED,
    STORE_CREDIT_METHODS,
    payment_status_for,
)


def record_payment(
    sale_id: int,
    user_id: int,
    method: str,
    amount_cents: int,
    reference: str | None = None,
) -> Sale:
    """
    Record one tender against a sale.

    Raises:
        SaleNotFoundError: unknown sale
        SaleStateError: sale voided or already fully paid
        ValidationError: non-positive amount or a "mixed" tender
    """
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("Payment amount must be positive")
    if method == METHOD_MIXED:
        raise ValidationError("A single payment cannot use the mixed method")

    def _op() -> Sale:
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFoundError(sale_id)

        if sale.status == SaleStatus.VOIDED.value:
            raise SaleStateError("Cannot record payment on a voided sale", details={"sale_id": sale.id})
        if sale.payment_status == PaymentStatus.PAID.value:
            raise SaleStateError("Sale is already fully paid", details={"sale_id": sale.id})

        had_payments = bool(sale.payment_details)
        sale.payment_details.append(SalePayment(
            method=method,
            amount_cents=amount_cents,
            reference=reference,
            recorded_by_user_id=user_id,
        ))
        if not had_payments:
            sale.payment_method = method
        elif sale.payment_method != method:
            sale.payment_method = METHOD_MIXED

        sale.total_paid_cents = (sale.total_paid_cents or 0) + amount_cents
        status = payment_status_for(sale.total_paid_cents, sale.total_cents)
        sale.payment_status = status.value
        if status == PaymentStatus.PAID:
            sale.change_cents = sale.total_paid_cents - sale.total_cents

        if method in STORE_CREDIT_METHODS and sale.customer_id is not None:
            customer_service.record_credit_transaction(
                sale.customer_id,
                customer_service.CREDIT_PAYMENT,
                amount_cents,
                reference=sale.receipt_number,
                user_id=user_id,
            )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    current_app.logger.info(
        "Payment of %s (%s) recorded on sale %s; status %s",
        format_cents(amount_cents), method, sale.receipt_number, sale.payment_status,
    )
    audit_service.record(
        actor_user_id=user_id,
        action="sale.payment_recorded",
        entity_type="sale",
        entity_id=sale.id,
        entity_name=sale.receipt_number,
        details={
            "amount_cents": amount_cents,
            "method": method,
            "payment_status": sale.payment_status,
            "total_paid_cents": sale.total_paid_cents,
        },
    )
    return sale


def get_pending_payments(limit: int = 200) -> tuple[list[Sale], dict]:
    """Sales still waiting for money (pending or partial), voids excluded."""
    open_filter = (
        Sale.payment_status.in_((PaymentStatus.PENDING.value, PaymentStatus.PARTIAL.value)),
        Sale.status != SaleStatus.VOIDED.value,
    )
    sales = (
        db.session.query(Sale)
        .filter(*open_filter)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )
    count, outstanding = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents - Sale.total_paid_cents), 0),
    ).filter(*open_filter).one()

    summary = {
        "count": int(count or 0),
        "total_pending_cents": int(outstanding or 0),
    }
    return sales, summary
