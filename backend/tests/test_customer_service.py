"""Customer statistics aggregation and store-credit ledger."""

import pytest

from saleflow.models import CustomerCreditTransaction
from saleflow.services import customer_service
from saleflow.services.customer_service import CustomerError, CustomerNotFoundError


class TestRecordOrder:
    def test_updates_totals_and_average(self, db_session, customer):
        customer_service.record_order(customer.id, 1000, [(1, 2)])
        customer_service.record_order(customer.id, 2001, [(1, 1), (2, 4)])
        db_session.commit()

        refreshed = customer_service.get_customer(customer.id)
        assert refreshed.total_orders == 2
        assert refreshed.total_spent_cents == 3001
        # 3001 / 2 = 1500.5 -> half-up
        assert refreshed.average_order_value_cents == 1501
        assert refreshed.last_purchase_at is not None

    def test_counts_favorites_by_quantity(self, db_session, customer):
        customer_service.record_order(customer.id, 500, [(7, 1), (8, 5), (7, 2)])
        db_session.commit()

        favorites = customer_service.get_favorite_products(customer.id)
        assert [(f.product_id, f.count) for f in favorites] == [(8, 5), (7, 3)]

    def test_unknown_customer(self, db_session):
        with pytest.raises(CustomerNotFoundError):
            customer_service.record_order(404, 100, [])


def test_adjust_spend_keeps_order_count(db_session, customer):
    customer_service.record_order(customer.id, 1000, [])
    customer_service.adjust_spend(customer.id, -400)
    db_session.commit()

    refreshed = customer_service.get_customer(customer.id)
    assert refreshed.total_orders == 1
    assert refreshed.total_spent_cents == 600
    assert refreshed.average_order_value_cents == 600


def test_reverse_order_floors_at_zero(db_session, customer):
    customer_service.record_order(customer.id, 300, [(1, 2)])
    customer_service.reverse_order(customer.id, 500, [(1, 5)])
    db_session.commit()

    refreshed = customer_service.get_customer(customer.id)
    assert refreshed.total_orders == 0
    assert refreshed.total_spent_cents == 0
    assert refreshed.average_order_value_cents == 0
    assert customer_service.get_favorite_products(customer.id) == []


class TestCreditLedger:
    def test_payment_and_settlement_move_balance(self, db_session, customer, seller):
        customer_service.record_credit_transaction(
            customer.id, "payment", 2500, reference="RCP-000009", user_id=seller.id
        )
        txn = customer_service.record_credit_transaction(customer.id, "settlement", 1000)
        db_session.commit()

        assert txn.balance_after_cents == 1500
        assert customer_service.get_customer(customer.id).credit_balance_cents == 1500
        assert db_session.query(CustomerCreditTransaction).filter_by(customer_id=customer.id).count() == 2

    def test_rejects_unknown_type_and_non_positive_amount(self, db_session, customer):
        with pytest.raises(CustomerError):
            customer_service.record_credit_transaction(customer.id, "gift", 100)
        with pytest.raises(CustomerError):
            customer_service.record_credit_transaction(customer.id, "payment", 0)
