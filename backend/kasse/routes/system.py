# backend/kasse/routes/system.py
"""
System health and version endpoints.

Health checks the database and the fiscal signing device state so a
health monitor can tell "API up but TSE disconnected" apart from "API down".
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Invoice, Role, SessionToken, TseDevice, active
from kasse.time_utils import utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    start_time = time.time()
    try:
        invoice_count = active(Invoice).count()
        role_count = db.session.query(Role).count()
        session_count = db.session.query(SessionToken).filter_by(is_revoked=False).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "invoices": invoice_count,
                "roles": role_count,
                "open_sessions": session_count,
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


def check_tse_health() -> dict:
    """A missing or disconnected TSE degrades the system; the API still answers."""
    try:
        connected = active(TseDevice).filter(TseDevice.is_connected.is_(True)).count()
        if connected == 0:
            return {"status": "degraded", "warning": "No TSE device connected"}
        return {"status": "healthy", "details": {"connected_devices": connected}}
    except Exception:
        current_app.logger.exception("TSE health check failed")
        return {"status": "unhealthy", "error": "TSE status unavailable"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    tse_health = check_tse_health()

    all_checks = [database_health, tse_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "tse": tse_health,
        }
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "fiscal_device": current_app.config.get("FISCAL_DEVICE"),
        "server_time": utcnow().isoformat() + "Z",
    }
