"""Line-level refunds: proration, limits, status and side effects."""

import pytest

from saleflow.extensions import db
from saleflow.models import Product, StockMovement
from saleflow.services import audit_service, customer_service, payment_service, refund_service, sales_service
from saleflow.services.sale_state import SaleNotFoundError, SaleStateError
from saleflow.validation import ValidationError

from factories import items, paid, refund_lines


def assert_totals_identity(sale):
    assert sale.total_cents == sale.subtotal_cents - sale.discount_cents + sale.tax_cents
    for line in sale.items:
        assert line.total_cents == line.subtotal_cents - line.discount_total_cents + line.tax_cents


@pytest.fixture
def paid_sale(db_session, make_product, seller, customer):
    """3 x 3.33 + 16% tax on one line, 2 x 5.00 on another; fully paid, linked to a customer."""
    odd = make_product(name="Odd", price_cents=333, tax_rate_bps=1600, stock=10)
    even = make_product(name="Even", price_cents=500, stock=10)
    sale = sales_service.create_sale(seller.id, items((odd.id, 3), (even.id, 2)), customer_id=customer.id)
    return payment_service.record_payment(sale.id, seller.id, "cash", sale.total_cents)


class TestRefundAmounts:
    def test_partial_refunds_sum_to_line_total(self, db_session, paid_sale, manager):
        odd_line = paid_sale.items[0]
        line_total = odd_line.total_cents

        amounts = []
        for _ in range(3):
            before = paid_sale.total_refunded_cents
            sale = refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((odd_line.id, 1)))
            amounts.append(sale.total_refunded_cents - before)
            assert_totals_identity(sale)

        assert sum(amounts) == line_total
        assert odd_line.refunded_cents == line_total
        assert odd_line.refunded_quantity == 3

    def test_status_moves_to_refunded_when_every_line_is_back(self, db_session, paid_sale, manager):
        odd_line, even_line = paid_sale.items

        sale = refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((odd_line.id, 3)))
        assert sale.status == "partial_refund"

        sale = refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((even_line.id, 2)), "closing down")
        assert sale.status == "refunded"
        assert sale.total_refunded_cents == sale.total_cents
        assert len(sale.refunds) == 2
        assert sale.refunds[1].reason == "closing down"

    def test_totals_untouched(self, db_session, paid_sale, manager):
        total = paid_sale.total_cents
        sale = refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((paid_sale.items[1].id, 1)))
        assert sale.total_cents == total
        assert sale.total_refunded_cents == 500
        assert_totals_identity(sale)


class TestRefundLimits:
    def test_over_refund_quantity(self, db_session, paid_sale, manager):
        even_line = paid_sale.items[1]
        refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((even_line.id, 1)))

        with pytest.raises(SaleStateError):
            refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((even_line.id, 2)))

        assert sales_service.get_sale(paid_sale.id).items[1].refunded_quantity == 1

    def test_refund_cannot_exceed_collected(self, db_session, make_product, seller):
        product = make_product(price_cents=1000)
        sale = sales_service.create_sale(seller.id, items((product.id, 2)), paid(("cash", 1000)))

        refund_service.refund_sale(sale.id, seller.id, refund_lines((sale.items[0].id, 1)))
        with pytest.raises(SaleStateError, match="exceeds amount paid"):
            refund_service.refund_sale(sale.id, seller.id, refund_lines((sale.items[0].id, 1)))

    def test_change_is_not_refundable(self, db_session, make_product, seller):
        product = make_product(price_cents=450)
        sale = sales_service.create_sale(seller.id, items((product.id, 1)), paid(("cash", 5000)))

        sale = refund_service.refund_sale(sale.id, seller.id, refund_lines((sale.items[0].id, 1)))
        assert sale.total_refunded_cents == 450

    def test_unknown_line(self, db_session, paid_sale, manager):
        with pytest.raises(ValidationError):
            refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((999999, 1)))

    def test_voided_sale(self, db_session, paid_sale, manager):
        sales_service.void_sale(paid_sale.id, manager.id, "wrong customer")
        with pytest.raises(SaleStateError):
            refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((paid_sale.items[0].id, 1)))

    def test_fully_refunded_sale(self, db_session, paid_sale, manager):
        refund_service.refund_sale(
            paid_sale.id, manager.id, refund_lines((paid_sale.items[0].id, 3), (paid_sale.items[1].id, 2))
        )
        with pytest.raises(SaleStateError):
            refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((paid_sale.items[0].id, 1)))

    def test_missing_sale(self, db_session, manager):
        with pytest.raises(SaleNotFoundError):
            refund_service.refund_sale(5150, manager.id, refund_lines((1, 1)))


class TestRefundEffects:
    def test_restocks_refunded_units(self, db_session, paid_sale, manager):
        even_line = paid_sale.items[1]
        refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((even_line.id, 2)))

        assert db.session.get(Product, even_line.product_id).current_stock == 10
        movement = db_session.query(StockMovement).filter_by(reason="refund").one()
        assert movement.quantity_delta == 2
        assert movement.reference == paid_sale.receipt_number

    def test_customer_spend_restored_orders_kept(self, db_session, paid_sale, manager, customer):
        before = customer_service.get_customer(customer.id)
        assert before.total_orders == 1
        assert before.total_spent_cents == paid_sale.total_cents

        refund_service.refund_sale(
            paid_sale.id, manager.id, refund_lines((paid_sale.items[0].id, 3), (paid_sale.items[1].id, 2))
        )

        after = customer_service.get_customer(customer.id)
        assert after.total_spent_cents == 0
        assert after.total_orders == 1

    def test_audit_entry_is_a_warning(self, db_session, paid_sale, manager):
        refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((paid_sale.items[1].id, 1)))

        entry = audit_service.list_activity(entity_type="sale", entity_id=paid_sale.id, action="sale.refunded")[0]
        assert entry.severity == "warning"
        assert entry.details["refund_amount_cents"] == 500
        assert entry.actor_user_id == manager.id


class TestRefundRequestShape:
    def test_repeated_line_is_rejected_without_side_effects(self, db_session, make_product, seller, manager):
        cheap = make_product(name="Pencil", price_cents=100, stock=10)
        dear = make_product(name="Fountain Pen", price_cents=10000, stock=10)
        sale = sales_service.create_sale(
            seller.id, items((cheap.id, 3), (dear.id, 1)), paid(("cash", 10300))
        )
        pencil_line = sale.items[0]

        with pytest.raises(ValidationError, match="more than once"):
            refund_service.refund_sale(sale.id, manager.id, refund_lines((pencil_line.id, 2), (pencil_line.id, 2)))

        sale = sales_service.get_sale(sale.id)
        assert sale.status == "completed"
        assert sale.total_refunded_cents == 0
        assert sale.items[0].refunded_quantity == 0
        assert sale.items[0].refunded_cents == 0
        assert db.session.get(Product, cheap.id).current_stock == 7
        assert db_session.query(StockMovement).filter_by(reason="refund").count() == 0


class TestDeletedCustomer:
    def test_deleting_customer_detaches_sale_and_refund_still_works(self, db_session, paid_sale, manager, customer):
        db_session.delete(customer_service.get_customer(customer.id))
        db_session.commit()

        assert sales_service.get_sale(paid_sale.id).customer_id is None

        sale = refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((paid_sale.items[1].id, 1)))
        assert sale.status == "partial_refund"
        assert sale.total_refunded_cents == 500

    def test_missing_customer_row_skips_statistics(self, db_session, paid_sale, manager, monkeypatch):
        def gone(customer_id, delta_cents):
            raise customer_service.CustomerNotFoundError(customer_id)

        monkeypatch.setattr(customer_service, "adjust_spend", gone)

        sale = refund_service.refund_sale(paid_sale.id, manager.id, refund_lines((paid_sale.items[1].id, 2)))

        assert sale.total_refunded_cents == 1000
        assert sale.items[1].refunded_quantity == 2
