# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/saleflow/routes/sales.py
"""Sales API routes: the request boundary of the sale workflow."""

from datetime import timedelta

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..services import sales_service, payment_service, refund_service, reporting_service
from ..services.customer_service import CustomerError, CustomerNotFoundError
from ..services.inventory_service import InventoryError, ProductNotFoundError
from ..services.reporting_service import ReportError, SellerNotFoundError
from ..services.sales_service import SaleError, SaleNotFoundError
from ..time_utils import parse_iso_datetime, parse_iso_date, utcnow
from ..validation import (
    ValidationError,
    parse_sale_items,
    parse_payment,
    parse_positive_int,
    parse_cents,
    parse_method,
    parse_refund_items,
    require_text,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

NOT_FOUND_ERRORS = (ProductNotFoundError, CustomerNotFoundError, SaleNotFoundError, SellerNotFoundError)
DOMAIN_ERRORS = (ValidationError, InventoryError, CustomerError, SaleError, ReportError)


def _error_response(e):
    status = 404 if isinstance(e, NOT_FOUND_ERRORS) else 400
    return jsonify({"error": str(e), "details": getattr(e, "details", {})}), status


def _device() -> str | None:
    agent = request.headers.get("User-Agent")
    return agent[:255] if agent else None


def _parse_range():
    """start/end query args; a bare end date includes that whole day."""
    start_raw = request.args.get("start")
    end_raw = request.args.get("end")
    try:
        start = parse_iso_datetime(start_raw)
        end = parse_iso_datetime(end_raw)
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 dates")
    if end is not None and end_raw and len(end_raw.strip()) == 10:
        end = end + timedelta(days=1)
    if start and end and start >= end:
        raise ValidationError("start must be before end")
    return start, end


@sales_bp.post("/")
@require_actor
def create_sale_route():
    """Create a completed sale from items and an optional payment block."""
    try:
        data = request.get_json(silent=True) or {}
        items = parse_sale_items(data.get("items"))
        payment = parse_payment(data.get("payment"))
        customer_id = data.get("customer_id", data.get("customer"))
        if customer_id is not None:
            customer_id = parse_positive_int(customer_id, "customer_id")

        source = data.get("source") or sales_service.SOURCE_POS
        if source not in (sales_service.SOURCE_POS, sales_service.SOURCE_API):
            raise ValidationError(f"Invalid source: {source!r}")

        sale = sales_service.create_sale(
            g.current_user.id,
            items,
            payment,
            customer_id=customer_id,
            source=source,
            device=_device(),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/quick-sale")
@require_actor
def quick_sale_route():
    """Cash counter sale at catalog prices."""
    try:
        data = request.get_json(silent=True) or {}
        items = parse_sale_items(data.get("items"), allow_overrides=False)
        amount = parse_cents(data.get("payment_amount_cents"), "payment_amount_cents", allow_zero=False)

        sale = sales_service.quick_sale(g.current_user.id, items, amount, device=_device())
        return jsonify({
            "receipt_number": sale.receipt_number,
            "total_cents": sale.total_cents,
            "change_cents": sale.change_cents,
            "item_count": sale.item_count,
            "sale": sale.to_dict(),
        }), 201

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create quick sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except SaleError as e:
        return _error_response(e)


@sales_bp.post("/<int:sale_id>/payment")
@require_actor
def record_payment_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        method = parse_method(data.get("method"))
        amount = parse_cents(data.get("amount_cents"), "amount_cents", allow_zero=False)
        reference = data.get("reference")
        if reference is not None and not isinstance(reference, str):
            raise ValidationError("reference must be a string")

        sale = payment_service.record_payment(sale_id, g.current_user.id, method, amount, reference)
        return jsonify({"sale": sale.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/void")
@require_actor
def void_sale_route(sale_id: int):
    """Void a completed sale; rejected once any refund exists."""
    try:
        data = request.get_json(silent=True) or {}
        reason = require_text(data.get("reason"), "reason")

        sale = sales_service.void_sale(sale_id, g.current_user.id, reason)
        return jsonify({"sale": sale.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/refund")
@require_actor
def refund_sale_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        items = parse_refund_items(data.get("items"))
        reason = data.get("reason")
        if reason is not None:
            reason = require_text(reason, "reason")

        sale = refund_service.refund_sale(sale_id, g.current_user.id, items, reason)
        return jsonify({"sale": sale.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/reconcile-inventory")
@require_actor
def reconcile_inventory_route(sale_id: int):
    try:
        sale = sales_service.reconcile_inventory(sale_id, g.current_user.id)
        return jsonify({"sale": sale.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile sale inventory")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/pending-payments")
@require_actor
def pending_payments_route():
    sales, summary = payment_service.get_pending_payments()
    return jsonify({
        "sales": [sale.to_dict() for sale in sales],
        "summary": summary,
    }), 200


@sales_bp.get("/pending-inventory")
@require_actor
def pending_inventory_route():
    sales = sales_service.list_pending_inventory_sales()
    return jsonify({"sales": [sale.to_dict() for sale in sales], "count": len(sales)}), 200


@sales_bp.get("/daily-summary")
@require_actor
def daily_summary_route():
    try:
        raw = request.args.get("date")
        try:
            day = parse_iso_date(raw) if raw else utcnow().date()
        except ValueError:
            raise ValidationError("date must be YYYY-MM-DD")

        return jsonify(reporting_service.daily_summary(day)), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)


@sales_bp.get("/report")
@require_actor
def sales_report_route():
    try:
        start, end = _parse_range()
        group_by = request.args.get("group_by", "day")
        return jsonify(reporting_service.sales_report(start, end, group_by)), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build sales report")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/by-product/<int:product_id>")
@require_actor
def sales_by_product_route(product_id: int):
    try:
        start, end = _parse_range()
        return jsonify(reporting_service.sales_by_product(product_id, start, end)), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)


@sales_bp.get("/sellers/<int:seller_id>/performance")
@require_actor
def seller_performance_route(seller_id: int):
    try:
        start, end = _parse_range()
        return jsonify(reporting_service.seller_performance(seller_id, start, end)), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
