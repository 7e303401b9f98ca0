"""Quick sale: catalog price, cash on the spot, change computed."""

import pytest

from saleflow.extensions import db
from saleflow.models import Product, Sale
from saleflow.services import sales_service
from saleflow.validation import SaleItemInput, ValidationError

from factories import items


def test_quick_sale_gives_change(db_session, make_product, seller):
    product = make_product(name="Sandwich", price_cents=4550, stock=3)

    sale = sales_service.quick_sale(seller.id, items((product.id, 1)), 5000, device="register-2")

    assert sale.total_cents == 4550
    assert sale.change_cents == 450
    assert sale.payment_status == "paid"
    assert sale.payment_method == "cash"
    assert sale.source == "quick-sale"
    assert sale.device == "register-2"
    assert sale.customer_id is None
    assert db.session.get(Product, product.id).current_stock == 2


def test_quick_sale_ignores_price_overrides(db_session, make_product, seller):
    product = make_product(price_cents=1200)
    overridden = [SaleItemInput(product_id=product.id, quantity=1, unit_price_cents=1, discount_bps=5000)]

    sale = sales_service.quick_sale(seller.id, overridden, 1200)

    assert sale.items[0].unit_price_cents == 1200
    assert sale.items[0].discount_total_cents == 0
    assert sale.change_cents == 0


def test_quick_sale_underpaid_persists_nothing(db_session, make_product, seller):
    product = make_product(price_cents=4550, stock=3)

    with pytest.raises(ValidationError, match="less than sale total"):
        sales_service.quick_sale(seller.id, items((product.id, 1)), 4000)

    assert db_session.query(Sale).count() == 0
    assert db.session.get(Product, product.id).current_stock == 3


def test_quick_sale_requires_positive_payment(db_session, make_product, seller):
    product = make_product()
    with pytest.raises(ValidationError):
        sales_service.quick_sale(seller.id, items((product.id, 1)), 0)
