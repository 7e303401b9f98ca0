"""Request payload parsing."""

import pytest

from saleflow.validation import (
    ValidationError,
    parse_int,
    parse_cents,
    parse_sale_items,
    parse_payment,
    parse_refund_items,
    require_text,
)


class TestParseInt:
    @pytest.mark.parametrize("value", [1.5, "1.5", "1e3", True, None, "", "abc"])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValidationError):
            parse_int(value, "amount")

    def test_accepts_int_and_digit_string(self):
        assert parse_int(5, "amount") == 5
        assert parse_int(" 42 ", "amount") == 42


def test_parse_cents_rejects_negative():
    with pytest.raises(ValidationError, match="non-negative"):
        parse_cents(-1, "price")
    with pytest.raises(ValidationError, match="positive"):
        parse_cents(0, "price", allow_zero=False)


class TestParseSaleItems:
    def test_requires_non_empty_list(self):
        with pytest.raises(ValidationError):
            parse_sale_items([])
        with pytest.raises(ValidationError):
            parse_sale_items({"product_id": 1})

    def test_parses_overrides(self):
        parsed = parse_sale_items([
            {"product_id": 3, "quantity": 2, "unit_price_cents": 500, "discount_bps": 1000},
            {"product": "4", "quantity": "1"},
        ])
        assert parsed[0].product_id == 3
        assert parsed[0].unit_price_cents == 500
        assert parsed[0].discount_bps == 1000
        assert parsed[1].product_id == 4
        assert parsed[1].unit_price_cents is None

    def test_ignores_overrides_when_disallowed(self):
        parsed = parse_sale_items(
            [{"product_id": 3, "quantity": 1, "unit_price_cents": 1, "discount_cents": 5}],
            allow_overrides=False,
        )
        assert parsed[0].unit_price_cents is None
        assert parsed[0].discount_cents == 0

    def test_rejects_zero_quantity_and_bad_bps(self):
        with pytest.raises(ValidationError):
            parse_sale_items([{"product_id": 1, "quantity": 0}])
        with pytest.raises(ValidationError):
            parse_sale_items([{"product_id": 1, "quantity": 1, "discount_bps": 10001}])


class TestParsePayment:
    def test_missing_block_means_unpaid(self):
        payment = parse_payment(None)
        assert payment.method == "cash"
        assert payment.amount_cents == 0

    def test_amount_paid_shorthand(self):
        payment = parse_payment({"method": "card", "amount_paid_cents": 1200, "reference": "AUTH1"})
        assert payment.method == "card"
        assert payment.amount_cents == 1200
        assert payment.details[0].reference == "AUTH1"

    def test_multiple_methods_become_mixed(self):
        payment = parse_payment({"details": [
            {"method": "cash", "amount_cents": 500},
            {"method": "card", "amount_cents": 700},
        ]})
        assert payment.method == "mixed"
        assert payment.amount_cents == 1200

    def test_rejects_unknown_method(self):
        with pytest.raises(ValidationError):
            parse_payment({"method": "barter", "amount_paid_cents": 100})


def test_parse_refund_items_rejects_duplicates():
    with pytest.raises(ValidationError, match="repeats"):
        parse_refund_items([{"sale_line_id": 1, "quantity": 1}, {"line_id": 1, "quantity": 1}])


def test_require_text():
    assert require_text("  damaged  ", "reason") == "damaged"
    with pytest.raises(ValidationError):
        require_text("   ", "reason")
