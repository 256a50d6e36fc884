# backend/billing/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports the effective tax configuration
for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..services.company_service import get_tax_config
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"dialect": db.session.get_bind().dialect.name},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_tax_config_health() -> dict:
    try:
        tax = get_tax_config()
    except Exception:
        current_app.logger.exception("Tax configuration check failed")
        return {"status": "unhealthy", "error": "Tax configuration error"}

    if tax.enable_tax and not tax.seller_state:
        return {
            "status": "degraded",
            "warning": "Seller state not configured; every sale is billed intra-state",
            "details": tax.to_dict(),
        }
    return {"status": "healthy", "details": tax.to_dict()}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    if database_health["status"] == "unhealthy":
        tax_health = {"status": "unknown"}
    else:
        tax_health = check_tax_config_health()

    all_checks = [database_health, tax_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "tax_config": tax_health,
        },
    }
    return response, http_status
