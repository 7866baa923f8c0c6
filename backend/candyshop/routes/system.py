# backend/candyshop/routes/system.py
"""
System health endpoint.

Reports database reachability plus the stock figures staff glance at first.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import TERMINAL_STATUSES, Order, ProductVariant
from candyshop.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        variant_count = db.session.query(func.count(ProductVariant.id)).scalar()
        open_orders = (
            db.session.query(func.count(Order.id))
            .filter(Order.status.notin_(TERMINAL_STATUSES))
            .scalar()
        )

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "variants": variant_count,
                "open_orders": open_orders,
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


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
        }
    }

    return response, http_status
