# backend/hwpos/routes/system.py
"""
System health and integrity endpoints.

/health checks database connectivity and the inventory retry backlog.
/integrity replays AR ledgers and shift totals and pairs sales with their
AR charges; it reports problems and never fixes them.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import CustomerAccount, Shift, PendingInventoryRequest
from ..services import reconciliation_service
from hwpos.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        customer_count = db.session.query(CustomerAccount).count()
        active_shifts = db.session.query(Shift).filter_by(status="ACTIVE").count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "customer_accounts": customer_count,
                "active_shifts": active_shifts,
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


def check_inventory_queue_health() -> dict:
    """Pending inventory requests mean stock is behind sales; degraded, not down."""
    start_time = time.time()
    try:
        pending = db.session.query(PendingInventoryRequest).filter_by(status="PENDING").count()
        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "healthy" if pending == 0 else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"pending_requests": pending},
        }
        if pending:
            result["warning"] = f"{pending} inventory request(s) awaiting retry"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Inventory queue health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Inventory queue error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Healthy or degraded
    - 503: One or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    inventory_health = check_inventory_queue_health()

    all_checks = [database_health, inventory_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "inventory_queue": inventory_health,
        }
    }

    return response, http_status


@system_bp.get("/integrity")
def integrity():
    """
    Full integrity report.

    Returns:
    - 200: Every check clean
    - 500: At least one mismatch (details in the body)
    """
    try:
        report = reconciliation_service.run_integrity_check()
    except Exception:
        current_app.logger.exception("Integrity check failed")
        return {"error": "Internal server error"}, 500
    return report, 200 if report["ok"] else 500
