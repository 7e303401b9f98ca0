# backend/saleflow/routes/system.py
"""
System health endpoint.

Reports database connectivity and how many sales are still waiting for
inventory reconciliation.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Sale, User
from ..services.sale_state import InventoryStatus, SaleStatus
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        sale_count = db.session.query(Sale).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "sales": sale_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_inventory_sync_health() -> dict:
    """Degraded while any live sale still owes stock movements."""
    start_time = time.time()
    try:
        pending = db.session.query(Sale).filter(
            Sale.inventory_status == InventoryStatus.PENDING.value,
            Sale.status != SaleStatus.VOIDED.value,
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "degraded" if pending else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"sales_pending_reconciliation": pending},
        }
        if pending:
            result["warning"] = f"{pending} sale(s) awaiting inventory reconciliation"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Inventory sync health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Inventory sync check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    inventory_health = check_inventory_sync_health()

    all_checks = [database_health, inventory_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "inventory_sync": inventory_health,
        }
    }
    return response, http_status
