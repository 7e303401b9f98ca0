"""Recording payments against existing sales."""

import pytest

from saleflow.models import CustomerCreditTransaction
from saleflow.services import audit_service, customer_service, payment_service, sales_service
from saleflow.services.sale_state import SaleNotFoundError, SaleStateError
from saleflow.validation import ValidationError

from factories import items, paid


@pytest.fixture
def open_sale(db_session, make_product, seller):
    """A 1.00 sale with nothing paid yet."""
    product = make_product(price_cents=100)
    return sales_service.create_sale(seller.id, items((product.id, 1)))


class TestRecordPayment:
    def test_two_tenders_settle_the_sale(self, db_session, open_sale, seller):
        sale = payment_service.record_payment(open_sale.id, seller.id, "cash", 30)
        assert sale.payment_status == "partial"
        assert sale.total_paid_cents == 30

        sale = payment_service.record_payment(open_sale.id, seller.id, "cash", 70)
        assert sale.payment_status == "paid"
        assert sale.total_paid_cents == 100
        assert sale.change_cents == 0
        assert [p.amount_cents for p in sale.payment_details] == [30, 70]

    def test_over_tender_gives_change(self, db_session, open_sale, seller):
        payment_service.record_payment(open_sale.id, seller.id, "cash", 30)
        sale = payment_service.record_payment(open_sale.id, seller.id, "cash", 100)
        assert sale.payment_status == "paid"
        assert sale.change_cents == 30

    def test_different_methods_become_mixed(self, db_session, open_sale, seller):
        sale = payment_service.record_payment(open_sale.id, seller.id, "card", 40, reference="AUTH-77")
        assert sale.payment_method == "card"
        sale = payment_service.record_payment(open_sale.id, seller.id, "transfer", 60)
        assert sale.payment_method == "mixed"
        assert sale.payment_details[0].reference == "AUTH-77"

    def test_already_paid(self, db_session, make_product, seller):
        product = make_product(price_cents=100)
        sale = sales_service.create_sale(seller.id, items((product.id, 1)), paid(("cash", 100)))

        with pytest.raises(SaleStateError, match="Sale is already fully paid"):
            payment_service.record_payment(sale.id, seller.id, "cash", 10)

    def test_voided_sale(self, db_session, open_sale, seller):
        sales_service.void_sale(open_sale.id, seller.id, "entered twice")
        with pytest.raises(SaleStateError):
            payment_service.record_payment(open_sale.id, seller.id, "cash", 10)

    def test_missing_sale(self, db_session, seller):
        with pytest.raises(SaleNotFoundError):
            payment_service.record_payment(31337, seller.id, "cash", 10)

    def test_rejects_bad_amount_and_mixed(self, db_session, open_sale, seller):
        with pytest.raises(ValidationError):
            payment_service.record_payment(open_sale.id, seller.id, "cash", 0)
        with pytest.raises(ValidationError):
            payment_service.record_payment(open_sale.id, seller.id, "mixed", 10)

    def test_credit_payment_charges_customer_account(self, db_session, make_product, seller, customer):
        product = make_product(price_cents=900)
        sale = sales_service.create_sale(seller.id, items((product.id, 1)), customer_id=customer.id)

        payment_service.record_payment(sale.id, seller.id, "credit", 900)

        assert customer_service.get_customer(customer.id).credit_balance_cents == 900
        txn = db_session.query(CustomerCreditTransaction).one()
        assert txn.transaction_type == "payment"
        assert txn.reference == sale.receipt_number

    def test_audit_entry(self, db_session, open_sale, seller):
        payment_service.record_payment(open_sale.id, seller.id, "cash", 100)
        actions = [e.action for e in audit_service.list_activity(entity_type="sale", entity_id=open_sale.id)]
        assert "sale.payment_recorded" in actions


def test_pending_payments_summary(db_session, make_product, seller):
    product = make_product(price_cents=100)
    unpaid = sales_service.create_sale(seller.id, items((product.id, 2)))
    partial = sales_service.create_sale(seller.id, items((product.id, 1)), paid(("cash", 40)))
    sales_service.create_sale(seller.id, items((product.id, 1)), paid(("cash", 100)))
    voided = sales_service.create_sale(seller.id, items((product.id, 1)))
    sales_service.void_sale(voided.id, seller.id, "mistake")

    sales, summary = payment_service.get_pending_payments()

    assert {s.id for s in sales} == {unpaid.id, partial.id}
    assert summary == {"count": 2, "total_pending_cents": 200 + 60}
