# backend/stockledger/routes/system.py
"""
System health endpoint.

Reports database reachability and the ledger's own consistency so a
deployment check catches both an unreachable store and cache drift.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, CashSession
from ..models.cash import SLOT_ACTIVE
from ..services import inventory_service
from stockledger.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        open_sessions = db.session.query(CashSession).filter_by(drawer_slot=SLOT_ACTIVE).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "open_cash_sessions": open_sessions,
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


def check_ledger_health() -> dict:
    """Cached stock must equal initial_stock + SUM(quantity_delta) everywhere."""
    start_time = time.time()
    try:
        drift = inventory_service.verify_stock_ledger()
        elapsed_ms = (time.time() - start_time) * 1000

        if drift:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{len(drift)} product(s) drifted from the movement ledger",
                "details": {"drift": drift},
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger check error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (drift is reported, the engine still works)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = check_ledger_health()

    all_checks = [database_health, ledger_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "ledger": ledger_health,
        }
    }

    return response, http_status
