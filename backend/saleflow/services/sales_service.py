# Overview: Service-layer operations for sales; creation, void and inventory reconciliation.

"""
Sale Workflow Engine

WHY: A sale touches three ledgers at once (the sale itself, product stock and
customer statistics). They must agree, so every sale-affecting operation is
one database transaction.

TRANSACTION SHAPE (create_sale):
    BEGIN IMMEDIATE (SQLite) / row locks elsewhere
      resolve products, check stock
      compute line values and totals
      allocate receipt number, insert sale + lines + payments
      compare-and-adjust stock per tracked line
      update customer statistics
    COMMIT
    audit (best effort, own commit)

FAILURE POLICY:
- InsufficientStockError at any point aborts everything: no sale, no stock
  change, no customer change.
- Any other inventory failure while applying a line's delta is downgraded:
  the sale is kept, the line keeps inventory_applied=False and the sale is
  flagged inventory_status=pending for reconcile_inventory.
- Audit failures never reach the caller.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleLine, SalePayment, Product
from saleflow.money import apply_bps
from saleflow.time_utils import utcnow
from saleflow.validation import (
    ValidationError,
    SaleItemInput,
    PaymentInput,
    PaymentDetailInput,
)
from . import audit_service, customer_service, inventory_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_receipt_number
from .customer_service import CustomerNotFoundError
from .inventory_service import InventoryError, InsufficientStockError, ProductNotFoundError
from .sale_state import (
    SaleError,
    SaleNotFoundError,
    SaleStateError,
    SaleStatus,
    InventoryStatus,
    METHOD_CASH,
    METHOD_CREDIT,
    ensure_transition,
    payment_status_for,
)

__all__ = [
    "SaleError",
    "SaleNotFoundError",
    "SaleStateError",
    "LineAmounts",
    "compute_line_amounts",
    "create_sale",
    "quick_sale",
    "get_sale",
    "void_sale",
    "reconcile_inventory",
    "list_pending_inventory_sales",
]


SOURCE_POS = "pos"
SOURCE_QUICK_SALE = "quick-sale"
SOURCE_API = "api"


@dataclass(frozen=True)
class LineAmounts:
    subtotal_cents: int
    discount_total_cents: int
    tax_cents: int
    total_cents: int


def compute_line_amounts(
    quantity: int,
    unit_price_cents: int,
    *,
    discount_cents: int = 0,
    discount_bps: int = 0,
    tax_rate_bps: int = 0,
) -> LineAmounts:
    """
    Line arithmetic in integer cents.

        subtotal = quantity * unit_price
        discount = fixed discount + half-up(subtotal * discount_bps)
        tax      = half-up((subtotal - discount) * tax_rate_bps)
        total    = subtotal - discount + tax
    """
    subtotal = quantity * unit_price_cents
    discount = discount_cents + apply_bps(subtotal, discount_bps)
    if discount > subtotal:
        raise ValidationError(
            "Discount exceeds line subtotal",
            details={"subtotal_cents": subtotal, "discount_cents": discount},
        )
    tax = apply_bps(subtotal - discount, tax_rate_bps)
    return LineAmounts(
        subtotal_cents=subtotal,
        discount_total_cents=discount,
        tax_cents=tax,
        total_cents=subtotal - discount + tax,
    )


def _resolve_products(items: list[SaleItemInput]) -> dict[int, Product]:
    """Load every product once and check it can be sold in the summed quantity."""
    if not items:
        raise ValidationError("Sale must have at least one item")

    requested: dict[int, int] = defaultdict(int)
    for item in items:
        requested[item.product_id] += item.quantity

    products = {}
    for product_id, quantity in requested.items():
        product = inventory_service.get_product(product_id)
        inventory_service.ensure_sellable(product, quantity)
        products[product_id] = product
    return products


def _build_lines(items: list[SaleItemInput], products: dict[int, Product]) -> list[SaleLine]:
    default_tax = current_app.config.get("DEFAULT_TAX_RATE_BPS", 0)
    lines = []
    for number, item in enumerate(items, start=1):
        product = products[item.product_id]
        unit_price = item.unit_price_cents if item.unit_price_cents is not None else product.effective_price_cents
        tax_rate = product.tax_rate_bps if product.tax_rate_bps is not None else default_tax
        amounts = compute_line_amounts(
            item.quantity,
            unit_price,
            discount_cents=item.discount_cents,
            discount_bps=item.discount_bps,
            tax_rate_bps=tax_rate,
        )
        lines.append(SaleLine(
            line_number=number,
            product_id=product.id,
            product_name=product.name,
            quantity=item.quantity,
            unit_price_cents=unit_price,
            discount_cents=item.discount_cents,
            discount_bps=item.discount_bps,
            discount_total_cents=amounts.discount_total_cents,
            tax_rate_bps=tax_rate,
            tax_cents=amounts.tax_cents,
            subtotal_cents=amounts.subtotal_cents,
            total_cents=amounts.total_cents,
            refunded_quantity=0,
            refunded_cents=0,
            track_inventory=bool(product.track_inventory),
            inventory_applied=False,
        ))
    return lines


def _apply_totals(sale: Sale, lines: list[SaleLine]) -> None:
    sale.subtotal_cents = sum(line.subtotal_cents for line in lines)
    sale.discount_cents = sum(line.discount_total_cents for line in lines)
    sale.tax_cents = sum(line.tax_cents for line in lines)
    sale.total_cents = sum(line.total_cents for line in lines)


def _apply_payment(sale: Sale, payment: PaymentInput, user_id: int) -> None:
    sale.payment_method = payment.method
    for detail in payment.details:
        sale.payment_details.append(SalePayment(
            method=detail.method,
            amount_cents=detail.amount_cents,
            reference=detail.reference,
            recorded_by_user_id=user_id,
        ))
    sale.total_paid_cents = payment.amount_cents
    status = payment_status_for(sale.total_paid_cents, sale.total_cents)
    sale.payment_status = status.value
    sale.change_cents = max(0, sale.total_paid_cents - sale.total_cents)


def _apply_line_inventory(sale: Sale, line: SaleLine, actor_user_id: int, *, reason: str) -> bool:
    """
    Decrement stock for one tracked line.

    Returns False (and flags the sale) when the ledger could not take the
    delta for a reason other than insufficient stock.
    """
    try:
        inventory_service.apply_stock_delta(
            line.product_id,
            -line.quantity,
            reason=reason,
            reference=sale.receipt_number,
            actor_user_id=actor_user_id,
        )
    except InsufficientStockError:
        raise
    except InventoryError as exc:
        current_app.logger.warning(
            "Inventory sync deferred for sale %s line %s (product %s): %s",
            sale.receipt_number, line.line_number, line.product_id, exc,
        )
        sale.inventory_status = InventoryStatus.PENDING.value
        return False
    line.inventory_applied = True
    return True


def _persist_sale(
    *,
    seller_id: int,
    items: list[SaleItemInput],
    payment: PaymentInput,
    customer_id: int | None,
    source: str,
    device: str | None,
    minimum_payment: bool = False,
) -> Sale:
    def _op() -> Sale:
        begin_write()

        if customer_id is not None:
            customer_service.get_customer(customer_id)

        products = _resolve_products(items)
        lines = _build_lines(items, products)

        sale = Sale(
            seller_id=seller_id,
            customer_id=customer_id,
            status=SaleStatus.COMPLETED.value,
            source=source,
            device=device,
            inventory_status=InventoryStatus.SYNCED.value,
            total_refunded_cents=0,
            created_at=utcnow(),
        )
        _apply_totals(sale, lines)

        if minimum_payment and payment.amount_cents < sale.total_cents:
            raise ValidationError(
                "Payment amount is less than sale total",
                details={"total_cents": sale.total_cents, "payment_cents": payment.amount_cents},
            )

        sale.receipt_number = next_receipt_number()
        for line in lines:
            sale.items.append(line)
        _apply_payment(sale, payment, seller_id)
        db.session.add(sale)
        db.session.flush()

        for line in sale.items:
            if line.track_inventory:
                _apply_line_inventory(sale, line, seller_id, reason="sale")

        if customer_id is not None:
            customer_service.record_order(
                customer_id,
                sale.total_cents,
                [(line.product_id, line.quantity) for line in sale.items],
                purchased_at=sale.created_at,
            )
            for detail in payment.details:
                if detail.method == METHOD_CREDIT:
                    customer_service.record_credit_transaction(
                        customer_id,
                        customer_service.CREDIT_PAYMENT,
                        detail.amount_cents,
                        reference=sale.receipt_number,
                        user_id=seller_id,
                    )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    current_app.logger.info(
        "Sale %s created by user %s: total=%s items=%d payment=%s inventory=%s",
        sale.receipt_number, seller_id, sale.total_cents, len(sale.items),
        sale.payment_status, sale.inventory_status,
    )
    audit_service.record(
        actor_user_id=seller_id,
        action="sale.created",
        entity_type="sale",
        entity_id=sale.id,
        entity_name=sale.receipt_number,
        details={
            "total_cents": sale.total_cents,
            "items": len(sale.items),
            "payment_method": sale.payment_method,
            "source": sale.source,
        },
    )
    return sale


def create_sale(
    seller_id: int,
    items: list[SaleItemInput],
    payment: PaymentInput | None = None,
    *,
    customer_id: int | None = None,
    source: str = SOURCE_POS,
    device: str | None = None,
) -> Sale:
    """
    Create a completed sale with its stock and customer effects.

    Raises:
        ProductNotFoundError / ProductInactiveError / InsufficientStockError
        CustomerNotFoundError: customer_id given but unknown
        ValidationError: malformed items or discounts
    """
    if not seller_id:
        raise ValidationError("seller_id is required")
    return _persist_sale(
        seller_id=seller_id,
        items=list(items),
        payment=payment or PaymentInput(),
        customer_id=customer_id,
        source=source,
        device=device,
    )


def quick_sale(
    seller_id: int,
    items: list[SaleItemInput],
    payment_amount_cents: int,
    *,
    device: str | None = None,
) -> Sale:
    """Counter sale paid in cash on the spot; catalog prices only, no customer."""
    if not seller_id:
        raise ValidationError("seller_id is required")
    if payment_amount_cents is None or payment_amount_cents <= 0:
        raise ValidationError("payment_amount_cents must be positive")

    plain_items = [SaleItemInput(product_id=i.product_id, quantity=i.quantity) for i in items]
    payment = PaymentInput(
        method=METHOD_CASH,
        details=(PaymentDetailInput(method=METHOD_CASH, amount_cents=payment_amount_cents),),
    )
    return _persist_sale(
        seller_id=seller_id,
        items=plain_items,
        payment=payment,
        customer_id=None,
        source=SOURCE_QUICK_SALE,
        device=device,
        minimum_payment=True,
    )


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFoundError(sale_id)
    return sale


def _get_sale_for_update(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise SaleNotFoundError(sale_id)
    return sale


def void_sale(sale_id: int, user_id: int, reason: str | None = None) -> Sale:
    """
    Void a completed sale.

    A sale with any refund activity cannot be voided. When
    VOID_REVERSES_EFFECTS is on, applied stock is returned and the customer's
    order is taken back out of their statistics.
    """
    reverse_effects = current_app.config.get("VOID_REVERSES_EFFECTS", True)

    def _op() -> Sale:
        begin_write()
        sale = _get_sale_for_update(sale_id)

        if sale.status == SaleStatus.VOIDED.value:
            raise SaleStateError("Sale is already voided", details={"sale_id": sale.id})
        if sale.refunds or sale.total_refunded_cents:
            raise SaleStateError(
                "Cannot void a sale that has refunds",
                details={"sale_id": sale.id, "total_refunded_cents": sale.total_refunded_cents},
            )
        ensure_transition(sale, SaleStatus.VOIDED)

        sale.status = SaleStatus.VOIDED.value
        sale.voided_by_user_id = user_id
        sale.voided_at = utcnow()
        sale.void_reason = reason

        if reverse_effects:
            for line in sale.items:
                if not (line.track_inventory and line.inventory_applied) or line.product_id is None:
                    continue
                try:
                    inventory_service.apply_stock_delta(
                        line.product_id,
                        line.quantity,
                        reason="void",
                        reference=sale.receipt_number,
                        actor_user_id=user_id,
                    )
                except ProductNotFoundError:
                    current_app.logger.warning(
                        "Product %s no longer exists; void of %s skips its restock",
                        line.product_id, sale.receipt_number,
                    )
            # Nothing is owed to the stock ledger once the sale is undone
            sale.inventory_status = InventoryStatus.SYNCED.value

            if sale.customer_id is not None:
                try:
                    customer_service.reverse_order(
                        sale.customer_id,
                        sale.total_cents,
                        [(line.product_id, line.quantity) for line in sale.items],
                    )
                except CustomerNotFoundError:
                    current_app.logger.warning(
                        "Customer %s no longer exists; void of %s skips its statistics",
                        sale.customer_id, sale.receipt_number,
                    )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    current_app.logger.info("Sale %s voided by user %s", sale.receipt_number, user_id)
    audit_service.record(
        actor_user_id=user_id,
        action="sale.voided",
        entity_type="sale",
        entity_id=sale.id,
        entity_name=sale.receipt_number,
        severity="warning",
        details={
            "reason": reason,
            "total_cents": sale.total_cents,
            "effects_reversed": bool(reverse_effects),
        },
    )
    return sale


def reconcile_inventory(sale_id: int, user_id: int) -> Sale:
    """
    Apply the stock deltas a sale still owes.

    Only lines that are tracked and not yet applied are booked, net of any
    quantity already refunded. The goods have left the store, so the
    backorder policy is not enforced here.
    """
    def _op() -> tuple[Sale, int]:
        begin_write()
        sale = _get_sale_for_update(sale_id)
        if sale.status == SaleStatus.VOIDED.value:
            raise SaleStateError("Cannot reconcile a voided sale", details={"sale_id": sale.id})

        applied = 0
        for line in sale.items:
            if not line.track_inventory or line.inventory_applied:
                continue
            owed = line.quantity - (line.refunded_quantity or 0)
            if line.product_id is None:
                current_app.logger.warning(
                    "Sale %s line %s has no product; cannot reconcile",
                    sale.receipt_number, line.line_number,
                )
                continue
            if owed > 0:
                inventory_service.apply_stock_delta(
                    line.product_id,
                    -owed,
                    reason="reconcile",
                    reference=sale.receipt_number,
                    actor_user_id=user_id,
                    enforce_policy=False,
                )
            line.inventory_applied = True
            applied += 1

        if all(line.inventory_applied for line in sale.items if line.track_inventory):
            sale.inventory_status = InventoryStatus.SYNCED.value

        db.session.commit()
        return sale, applied

    sale, applied = run_with_retry(_op)

    current_app.logger.info(
        "Reconciled %d line(s) for sale %s; inventory status %s",
        applied, sale.receipt_number, sale.inventory_status,
    )
    if applied:
        audit_service.record(
            actor_user_id=user_id,
            action="sale.inventory_reconciled",
            entity_type="sale",
            entity_id=sale.id,
            entity_name=sale.receipt_number,
            details={"lines_applied": applied, "inventory_status": sale.inventory_status},
        )
    return sale


def list_pending_inventory_sales(limit: int = 100) -> list[Sale]:
    return (
        db.session.query(Sale)
        .filter(
            Sale.inventory_status == InventoryStatus.PENDING.value,
            Sale.status != SaleStatus.VOIDED.value,
        )
        .order_by(Sale.created_at.asc(), Sale.id.asc())
        .limit(limit)
        .all()
    )
