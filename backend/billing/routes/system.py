# backend/billing/routes/system.py
"""System health endpoint."""

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "ok", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {"status": "unavailable", "error": "Database error"}


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "ok"
    body = {
        "status": "ok" if healthy else "degraded",
        "database": database["status"],
        "latency_ms": database.get("latency_ms"),
    }
    return jsonify(body), 200 if healthy else 503
