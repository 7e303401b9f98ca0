# Overview: Service-layer operations for refunds; line-level partial and full refunds of completed sales.

"""
Refund Processing

WHY: Customers return part or all of a purchase. The refund must give back
exactly what the line charged, never more than the store collected, and
return the goods to stock.

PRORATION:
    A line's refundable money is its total (discount and tax included).
    Refunding k more units of a line with q units and r already refunded pays
        prorate(total, r + k, q) - prorate(total, r, q)
    so any sequence of partial refunds of a line sums exactly to its total.

INVARIANTS:
- refunded_quantity <= quantity per line
- total_refunded <= total_paid - change (collected money)
- Sale totals never change; total_refunded_cents carries the refunds.
- Voided sales cannot be refunded and refunded sales cannot be voided.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleRefund, SaleRefundLine
from saleflow.money import prorate
from saleflow.validation import ValidationError, RefundItemInput
from . import audit_service, customer_service, inventory_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .customer_service import CustomerNotFoundError
from .inventory_service import ProductNotFoundError
from .sale_state import (
    SaleNotFoundError,
    SaleStateError,
    SaleStatus,
    ensure_transition,
)


def refund_sale(
    sale_id: int,
    user_id: int,
    items: list[RefundItemInput],
    reason: str | None = None,
) -> Sale:
    """
    Refund quantities of specific sale lines.

    Raises:
        SaleNotFoundError: unknown sale
        ValidationError: empty request, a repeated line, or a line that is not on this sale
        SaleStateError: voided/fully refunded sale, quantity above what remains
            refundable, or cumulative refunds above the collected amount
    """
    if not items:
        raise ValidationError("Refund must include at least one item")

    def _op() -> tuple[Sale, SaleRefund]:
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFoundError(sale_id)

        if sale.status == SaleStatus.VOIDED.value:
            raise SaleStateError("Cannot refund a voided sale", details={"sale_id": sale.id})
        if sale.status == SaleStatus.REFUNDED.value:
            raise SaleStateError("Sale is already fully refunded", details={"sale_id": sale.id})

        lines_by_id = {line.id: line for line in sale.items}

        # Plan the whole refund before touching stock or money
        plan = []
        refund_total = 0
        planned_lines = set()
        for request in items:
            if request.sale_line_id in planned_lines:
                raise ValidationError(
                    f"Sale line {request.sale_line_id} appears more than once in the refund",
                    details={"sale_line_id": request.sale_line_id},
                )
            planned_lines.add(request.sale_line_id)

            line = lines_by_id.get(request.sale_line_id)
            if line is None:
                raise ValidationError(
                    f"Sale line {request.sale_line_id} is not part of sale {sale.receipt_number}",
                    details={"sale_line_id": request.sale_line_id},
                )
            if request.quantity > line.refundable_quantity:
                raise SaleStateError(
                    f"Cannot refund {request.quantity} of {line.product_name}; "
                    f"{line.refundable_quantity} refundable",
                    details={
                        "sale_line_id": line.id,
                        "requested": request.quantity,
                        "refundable": line.refundable_quantity,
                    },
                )
            before = line.refunded_quantity or 0
            after = before + request.quantity
            amount = prorate(line.total_cents, after, line.quantity) - prorate(line.total_cents, before, line.quantity)
            plan.append((line, request.quantity, amount))
            refund_total += amount

        collected = sale.collected_cents
        if (sale.total_refunded_cents or 0) + refund_total > collected:
            raise SaleStateError(
                "Refund amount exceeds amount paid",
                details={
                    "refund_cents": refund_total,
                    "already_refunded_cents": sale.total_refunded_cents or 0,
                    "collected_cents": collected,
                },
            )

        refund = SaleRefund(amount_cents=refund_total, reason=reason, refunded_by_user_id=user_id)
        for line, quantity, amount in plan:
            line.refunded_quantity = (line.refunded_quantity or 0) + quantity
            line.refunded_cents = (line.refunded_cents or 0) + amount
            refund.lines.append(SaleRefundLine(sale_line_id=line.id, quantity=quantity, amount_cents=amount))

            if line.track_inventory and line.inventory_applied and line.product_id is not None:
                try:
                    inventory_service.apply_stock_delta(
                        line.product_id,
                        quantity,
                        reason="refund",
                        reference=sale.receipt_number,
                        actor_user_id=user_id,
                    )
                except ProductNotFoundError:
                    current_app.logger.warning(
                        "Product %s no longer exists; refund on %s skips its restock",
                        line.product_id, sale.receipt_number,
                    )

        sale.refunds.append(refund)
        sale.total_refunded_cents = (sale.total_refunded_cents or 0) + refund_total

        if all(line.refundable_quantity == 0 for line in sale.items):
            new_status = SaleStatus.REFUNDED
        else:
            new_status = SaleStatus.PARTIAL_REFUND
        ensure_transition(sale, new_status)
        sale.status = new_status.value

        if sale.customer_id is not None and refund_total:
            try:
                customer_service.adjust_spend(sale.customer_id, -refund_total)
            except CustomerNotFoundError:
                current_app.logger.warning(
                    "Customer %s no longer exists; refund on %s skips its statistics",
                    sale.customer_id, sale.receipt_number,
                )

        db.session.commit()
        return sale, refund

    sale, refund = run_with_retry(_op)

    current_app.logger.info(
        "Refund of %s cents on sale %s by user %s; status %s",
        refund.amount_cents, sale.receipt_number, user_id, sale.status,
    )
    audit_service.record(
        actor_user_id=user_id,
        action="sale.refunded",
        entity_type="sale",
        entity_id=sale.id,
        entity_name=sale.receipt_number,
        severity="warning",
        details={
            "refund_amount_cents": refund.amount_cents,
            "items": [{"sale_line_id": i.sale_line_id, "quantity": i.quantity} for i in items],
            "reason": reason,
            "status": sale.status,
        },
    )
    return sale
