# backend/tillpoint/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports register occupancy so a
deployment probe can tell an idle system from a broken one.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import CashRegister, CashSession
from tillpoint.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        register_count = db.session.query(CashRegister).count()
        open_sessions = db.session.query(CashSession).filter_by(status="OPEN").count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "registers": register_count,
                "open_sessions": open_sessions,
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
    Returns:
    - 200: database reachable
    - 503: database check failed
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "tax_rate_bps": current_app.config["POS_TAX_RATE_BPS"],
        "checks": {
            "database": database_health,
        }
    }

    return response, http_status
