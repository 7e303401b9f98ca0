# Overview: Request payload parsing into typed sale, payment and refund commands.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .services.sale_state import PAYMENT_METHODS, METHOD_CASH, METHOD_MIXED
from .money import BPS_SCALE


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999
MAX_QUANTITY = 100_000


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class SaleItemInput:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    discount_cents: int = 0
    discount_bps: int = 0


@dataclass(frozen=True)
class PaymentDetailInput:
    method: str
    amount_cents: int
    reference: str | None = None


@dataclass(frozen=True)
class PaymentInput:
    method: str = METHOD_CASH
    details: tuple[PaymentDetailInput, ...] = field(default_factory=tuple)

    @property
    def amount_cents(self) -> int:
        return sum(d.amount_cents for d in self.details)


@dataclass(frozen=True)
class RefundItemInput:
    sale_line_id: int
    quantity: int


def parse_int(value: Any, field_name: str) -> int:
    """
    Strict integer coercion.

    Rejects bools, floats, decimal strings and scientific notation so that a
    client can never smuggle fractional cents or quantities into the ledger.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field_name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field_name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field_name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field_name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field_name} must be an integer, not a decimal")
    raise ValidationError(f"{field_name} must be an integer")


def parse_positive_int(value: Any, field_name: str, *, maximum: int | None = None) -> int:
    number = parse_int(value, field_name)
    if number <= 0:
        raise ValidationError(f"{field_name} must be positive")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field_name} must be at most {maximum}")
    return number


def parse_cents(value: Any, field_name: str, *, allow_zero: bool = True) -> int:
    cents = parse_int(value, field_name)
    if cents < 0 or (cents == 0 and not allow_zero):
        raise ValidationError(f"{field_name} must be {'non-negative' if allow_zero else 'positive'}")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field_name} cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def parse_method(value: Any, field_name: str = "method") -> str:
    if not isinstance(value, str) or value.strip().lower() not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid {field_name}: {value!r}. Must be one of {sorted(PAYMENT_METHODS)}"
        )
    return value.strip().lower()


def parse_sale_items(raw: Any, *, allow_overrides: bool = True) -> list[SaleItemInput]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")

    items = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = entry.get("product_id", entry.get("product"))
        if product_id is None:
            raise ValidationError(f"items[{index}].product_id required")

        unit_price = None
        discount_cents = 0
        discount_bps = 0
        if allow_overrides:
            if entry.get("unit_price_cents") is not None:
                unit_price = parse_cents(entry["unit_price_cents"], f"items[{index}].unit_price_cents")
            if entry.get("discount_cents") is not None:
                discount_cents = parse_cents(entry["discount_cents"], f"items[{index}].discount_cents")
            if entry.get("discount_bps") is not None:
                discount_bps = parse_int(entry["discount_bps"], f"items[{index}].discount_bps")
                if not 0 <= discount_bps <= BPS_SCALE:
                    raise ValidationError(f"items[{index}].discount_bps must be between 0 and {BPS_SCALE}")

        items.append(SaleItemInput(
            product_id=parse_positive_int(product_id, f"items[{index}].product_id"),
            quantity=parse_positive_int(entry.get("quantity"), f"items[{index}].quantity", maximum=MAX_QUANTITY),
            unit_price_cents=unit_price,
            discount_cents=discount_cents,
            discount_bps=discount_bps,
        ))
    return items


def parse_payment_detail(raw: Any, prefix: str = "payment") -> PaymentDetailInput:
    if not isinstance(raw, dict):
        raise ValidationError(f"{prefix} must be an object")
    reference = raw.get("reference")
    if reference is not None and not isinstance(reference, str):
        raise ValidationError(f"{prefix}.reference must be a string")
    return PaymentDetailInput(
        method=parse_method(raw.get("method"), f"{prefix}.method"),
        amount_cents=parse_cents(raw.get("amount_cents"), f"{prefix}.amount_cents", allow_zero=False),
        reference=reference,
    )


def parse_payment(raw: Any) -> PaymentInput:
    """
    Payment block of a sale creation request.

    Accepts either explicit details or a single amount_paid_cents tendered
    with the top-level method. A missing block means nothing was paid yet.
    """
    if raw is None:
        return PaymentInput()
    if not isinstance(raw, dict):
        raise ValidationError("payment must be an object")

    method = parse_method(raw.get("method", METHOD_CASH), "payment.method")
    raw_details = raw.get("details") or []
    if not isinstance(raw_details, list):
        raise ValidationError("payment.details must be a list")

    details = [
        parse_payment_detail(entry, f"payment.details[{i}]")
        for i, entry in enumerate(raw_details)
    ]
    if not details and raw.get("amount_paid_cents") is not None:
        amount = parse_cents(raw["amount_paid_cents"], "payment.amount_paid_cents")
        if amount:
            if method == METHOD_MIXED:
                raise ValidationError("mixed payments require payment.details")
            details.append(PaymentDetailInput(method=method, amount_cents=amount, reference=raw.get("reference")))

    methods = {d.method for d in details}
    if len(methods) > 1:
        method = METHOD_MIXED
    elif len(methods) == 1 and method != METHOD_MIXED:
        method = next(iter(methods))

    return PaymentInput(method=method, details=tuple(details))


def parse_refund_items(raw: Any) -> list[RefundItemInput]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")

    items = []
    seen = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{index}] must be an object")
        line_id = parse_positive_int(entry.get("sale_line_id", entry.get("line_id")), f"items[{index}].sale_line_id")
        if line_id in seen:
            raise ValidationError(f"items[{index}] repeats sale line {line_id}")
        seen.add(line_id)
        items.append(RefundItemInput(
            sale_line_id=line_id,
            quantity=parse_positive_int(entry.get("quantity"), f"items[{index}].quantity", maximum=MAX_QUANTITY),
        ))
    return items


def require_text(value: Any, field_name: str, *, max_length: int = 255) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} required")
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f"{field_name} must be at most {max_length} characters")
    return text
