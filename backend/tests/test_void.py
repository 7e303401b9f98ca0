"""Voiding sales and reversing their effects."""

import pytest

from saleflow.extensions import db
from saleflow.models import Product, StockMovement
from saleflow.services import audit_service, customer_service, refund_service, sales_service
from saleflow.services.sale_state import SaleNotFoundError, SaleStateError

from factories import items, paid, refund_lines


@pytest.fixture
def customer_sale(db_session, make_product, seller, customer):
    product = make_product(name="Lamp", price_cents=2500, stock=5)
    return sales_service.create_sale(
        seller.id, items((product.id, 2)), paid(("card", 5000)), customer_id=customer.id
    )


def test_void_restocks_and_reverses_customer(db_session, customer_sale, manager, customer):
    product_id = customer_sale.items[0].product_id
    assert db.session.get(Product, product_id).current_stock == 3

    sale = sales_service.void_sale(customer_sale.id, manager.id, "customer changed mind")

    assert sale.status == "voided"
    assert sale.voided_by_user_id == manager.id
    assert sale.void_reason == "customer changed mind"
    assert sale.voided_at is not None
    assert sale.to_dict()["void_info"]["reason"] == "customer changed mind"

    assert db.session.get(Product, product_id).current_stock == 5
    movement = db_session.query(StockMovement).filter_by(reason="void").one()
    assert movement.quantity_delta == 2
    assert movement.actor_user_id == manager.id

    stats = customer_service.get_customer(customer.id)
    assert stats.total_orders == 0
    assert stats.total_spent_cents == 0
    assert customer_service.get_favorite_products(customer.id) == []


def test_void_keeps_totals(db_session, customer_sale, manager):
    sale = sales_service.void_sale(customer_sale.id, manager.id, "duplicate")
    assert sale.total_cents == 5000
    assert sale.total_paid_cents == 5000


def test_double_void(db_session, customer_sale, manager):
    sales_service.void_sale(customer_sale.id, manager.id, "duplicate")
    with pytest.raises(SaleStateError, match="already voided"):
        sales_service.void_sale(customer_sale.id, manager.id, "duplicate")

    assert db_session.query(StockMovement).filter_by(reason="void").count() == 1


def test_void_after_refund(db_session, customer_sale, manager):
    refund_service.refund_sale(customer_sale.id, manager.id, refund_lines((customer_sale.items[0].id, 1)))
    with pytest.raises(SaleStateError, match="has refunds"):
        sales_service.void_sale(customer_sale.id, manager.id, "too late")


def test_void_missing_sale(db_session, manager):
    with pytest.raises(SaleNotFoundError):
        sales_service.void_sale(424242, manager.id, "nope")


def test_void_without_reversal(app, db_session, customer_sale, manager, customer, monkeypatch):
    monkeypatch.setitem(app.config, "VOID_REVERSES_EFFECTS", False)
    product_id = customer_sale.items[0].product_id

    sale = sales_service.void_sale(customer_sale.id, manager.id, "bookkeeping only")

    assert sale.status == "voided"
    assert db.session.get(Product, product_id).current_stock == 3
    assert db_session.query(StockMovement).filter_by(reason="void").count() == 0
    assert customer_service.get_customer(customer.id).total_orders == 1


def test_void_skips_lines_never_applied(db_session, make_product, seller, manager, monkeypatch):
    from saleflow.services import inventory_service

    product = make_product(stock=4)

    def broken(*args, **kwargs):
        raise inventory_service.InventoryError("stock ledger unavailable")

    monkeypatch.setattr(inventory_service, "apply_stock_delta", broken)
    sale = sales_service.create_sale(seller.id, items((product.id, 1)))
    monkeypatch.undo()
    assert sale.inventory_status == "pending"

    sale = sales_service.void_sale(sale.id, manager.id, "never left the shelf")

    assert sale.inventory_status == "synced"
    assert db.session.get(Product, product.id).current_stock == 4


def test_void_is_audited_as_warning(db_session, customer_sale, manager):
    sales_service.void_sale(customer_sale.id, manager.id, "duplicate")

    entry = audit_service.list_activity(entity_type="sale", entity_id=customer_sale.id, action="sale.voided")[0]
    assert entry.severity == "warning"
    assert entry.details["reason"] == "duplicate"
    assert entry.details["effects_reversed"] is True


def test_void_after_customer_deleted(db_session, customer_sale, manager, customer):
    db_session.delete(customer_service.get_customer(customer.id))
    db_session.commit()

    sale = sales_service.void_sale(customer_sale.id, manager.id, "customer closed account")

    assert sale.status == "voided"
    assert sale.customer_id is None
    assert db.session.get(Product, sale.items[0].product_id).current_stock == 5


def test_void_with_missing_customer_row_still_restocks(db_session, customer_sale, manager, monkeypatch):
    def gone(customer_id, amount_cents, items):
        raise customer_service.CustomerNotFoundError(customer_id)

    monkeypatch.setattr(customer_service, "reverse_order", gone)

    sale = sales_service.void_sale(customer_sale.id, manager.id, "customer closed account")

    assert sale.status == "voided"
    assert db.session.get(Product, sale.items[0].product_id).current_stock == 5
