# backend/pharmapos/routes/system.py
"""
System health endpoint.

Checks database connectivity for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Branch, Product
from pharmapos.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        product_count = db.session.query(Product).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "products": product_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status = 200 if database["status"] == "healthy" else 503
    return {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, status
