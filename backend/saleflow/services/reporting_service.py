# Overview: Service-layer operations for reporting; read-side aggregations over the sale ledger.

"""
Sales reporting.

Revenue rules:
- Only sales whose status is completed or partial_refund carry revenue.
- A sale's revenue is total_cents - total_refunded_cents.
- Quantities are net of refunded units.

All ranges are [start, end): start inclusive, end exclusive, UTC-naive.
"""

from __future__ import annotations

from datetime import date, datetime
from itertools import groupby
from typing import Iterator

from sqlalchemy import func

from ..extensions import db
from ..models import Sale, SaleLine, User
from saleflow.money import average
from saleflow.time_utils import PERIOD_FORMATS, day_bounds, period_key, to_utc_z
from .sale_state import REVENUE_STATUSES, SaleStatus


class ReportError(Exception):
    """Raised when report generation fails."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SellerNotFoundError(ReportError):
    def __init__(self, seller_id):
        super().__init__(f"Seller {seller_id} not found", details={"seller_id": seller_id})


def _range_filters(start: datetime | None, end: datetime | None) -> list:
    filters = [Sale.status.in_(REVENUE_STATUSES)]
    if start is not None:
        filters.append(Sale.created_at >= start)
    if end is not None:
        filters.append(Sale.created_at < end)
    return filters


def _net_items_subquery():
    return (
        db.session.query(
            SaleLine.sale_id.label("sale_id"),
            func.sum(SaleLine.quantity - SaleLine.refunded_quantity).label("item_count"),
        )
        .group_by(SaleLine.sale_id)
        .subquery()
    )


class SalesAggregation:
    """
    Per-period sales totals.

    Iterating runs one ordered query and folds consecutive rows into periods,
    so memory stays flat however long the range is. The object can be
    iterated any number of times; each pass re-reads the ledger.

    Each item: {period, sales, revenue_cents, discount_cents, tax_cents,
    items, average_sale_cents}
    """

    def __init__(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        group_by: str = "day",
        *,
        seller_id: int | None = None,
        batch_size: int = 500,
    ):
        if group_by not in PERIOD_FORMATS:
            raise ReportError(
                f"group_by must be one of {', '.join(PERIOD_FORMATS)}",
                details={"group_by": group_by},
            )
        self.start = start
        self.end = end
        self.group_by = group_by
        self.seller_id = seller_id
        self.batch_size = batch_size

    def _rows(self):
        items_sq = _net_items_subquery()
        query = (
            db.session.query(
                Sale.created_at,
                Sale.total_cents,
                Sale.total_refunded_cents,
                Sale.discount_cents,
                Sale.tax_cents,
                func.coalesce(items_sq.c.item_count, 0).label("item_count"),
            )
            .outerjoin(items_sq, items_sq.c.sale_id == Sale.id)
            .filter(*_range_filters(self.start, self.end))
        )
        if self.seller_id is not None:
            query = query.filter(Sale.seller_id == self.seller_id)
        return query.order_by(Sale.created_at.asc(), Sale.id.asc()).yield_per(self.batch_size)

    def __iter__(self) -> Iterator[dict]:
        for period, rows in groupby(self._rows(), key=lambda row: period_key(row.created_at, self.group_by)):
            sales = revenue = discount = tax = items = 0
            for row in rows:
                sales += 1
                revenue += (row.total_cents or 0) - (row.total_refunded_cents or 0)
                discount += row.discount_cents or 0
                tax += row.tax_cents or 0
                items += int(row.item_count or 0)
            yield {
                "period": period,
                "sales": sales,
                "revenue_cents": revenue,
                "discount_cents": discount,
                "tax_cents": tax,
                "items": items,
                "average_sale_cents": average(revenue, sales),
            }


def _summarize(periods: list[dict]) -> dict:
    sales = sum(p["sales"] for p in periods)
    revenue = sum(p["revenue_cents"] for p in periods)
    return {
        "sales": sales,
        "revenue_cents": revenue,
        "discount_cents": sum(p["discount_cents"] for p in periods),
        "tax_cents": sum(p["tax_cents"] for p in periods),
        "items": sum(p["items"] for p in periods),
        "average_sale_cents": average(revenue, sales),
    }


def daily_summary(day: date) -> dict:
    """Totals for one UTC day plus a per-payment-method breakdown."""
    start, end = day_bounds(day)
    periods = list(SalesAggregation(start, end, "day"))
    summary = _summarize(periods)

    by_method = (
        db.session.query(
            Sale.payment_method,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents - Sale.total_refunded_cents), 0),
        )
        .filter(*_range_filters(start, end))
        .group_by(Sale.payment_method)
        .order_by(Sale.payment_method)
        .all()
    )
    voided = (
        db.session.query(func.count(Sale.id))
        .filter(Sale.status == SaleStatus.VOIDED.value, Sale.created_at >= start, Sale.created_at < end)
        .scalar()
    )

    return {
        "date": day.isoformat(),
        "summary": summary,
        "by_payment_method": {
            method: {"count": int(count), "revenue_cents": int(total)}
            for method, count, total in by_method
        },
        "voided_sales": int(voided or 0),
    }


def top_products(start: datetime | None = None, end: datetime | None = None, limit: int = 10) -> list[dict]:
    quantity = func.sum(SaleLine.quantity - SaleLine.refunded_quantity)
    revenue = func.sum(SaleLine.total_cents - SaleLine.refunded_cents)
    rows = (
        db.session.query(
            SaleLine.product_id,
            SaleLine.product_name,
            quantity.label("quantity"),
            revenue.label("revenue_cents"),
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .filter(*_range_filters(start, end))
        .group_by(SaleLine.product_id, SaleLine.product_name)
        .order_by(revenue.desc(), SaleLine.product_id)
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "product_name": row.product_name,
            "quantity": int(row.quantity or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]


def sales_by_seller(start: datetime | None = None, end: datetime | None = None) -> list[dict]:
    revenue = func.sum(Sale.total_cents - Sale.total_refunded_cents)
    rows = (
        db.session.query(
            Sale.seller_id,
            User.name,
            func.count(Sale.id).label("sales"),
            revenue.label("revenue_cents"),
        )
        .outerjoin(User, User.id == Sale.seller_id)
        .filter(*_range_filters(start, end))
        .group_by(Sale.seller_id, User.name)
        .order_by(revenue.desc(), Sale.seller_id)
        .all()
    )
    return [
        {
            "seller_id": row.seller_id,
            "seller_name": row.name,
            "sales": int(row.sales or 0),
            "revenue_cents": int(row.revenue_cents or 0),
            "average_sale_cents": average(int(row.revenue_cents or 0), int(row.sales or 0)),
        }
        for row in rows
    ]


def sales_report(start: datetime | None = None, end: datetime | None = None, group_by: str = "day") -> dict:
    timeline = list(SalesAggregation(start, end, group_by))
    return {
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end) if end else None,
        "group_by": group_by,
        "summary": _summarize(timeline),
        "timeline": timeline,
        "top_products": top_products(start, end),
        "by_seller": sales_by_seller(start, end),
    }


def sales_by_product(product_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    rows = (
        db.session.query(
            Sale.id,
            Sale.receipt_number,
            Sale.created_at,
            SaleLine.product_name,
            SaleLine.quantity,
            SaleLine.refunded_quantity,
            SaleLine.total_cents,
            SaleLine.refunded_cents,
        )
        .join(SaleLine, SaleLine.sale_id == Sale.id)
        .filter(SaleLine.product_id == product_id, *_range_filters(start, end))
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )
    sales = [
        {
            "sale_id": row.id,
            "receipt_number": row.receipt_number,
            "created_at": to_utc_z(row.created_at),
            "quantity": row.quantity - (row.refunded_quantity or 0),
            "revenue_cents": row.total_cents - (row.refunded_cents or 0),
        }
        for row in rows
    ]
    return {
        "product_id": product_id,
        "product_name": rows[0].product_name if rows else None,
        "sales": sales,
        "summary": {
            "sales": len({s["sale_id"] for s in sales}),
            "quantity": sum(s["quantity"] for s in sales),
            "revenue_cents": sum(s["revenue_cents"] for s in sales),
        },
    }


def seller_performance(seller_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    seller = db.session.get(User, seller_id)
    if seller is None:
        raise SellerNotFoundError(seller_id)

    daily = list(SalesAggregation(start, end, "day", seller_id=seller_id))
    return {
        "seller": seller.to_dict(),
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end) if end else None,
        "summary": _summarize(daily),
        "daily": daily,
    }
