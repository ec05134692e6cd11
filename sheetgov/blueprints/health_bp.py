"""
Health probes. Unauthenticated and exempt from rate limits.

    GET /api/v1/health/ready   process is up
    GET /api/v1/health/live    database round-trip, lock table size, jobs
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from sheetgov.models import db
from sheetgov.models.lock import RowLock

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Report dependency state; 503 when the database is unreachable."""
    checks = {}
    healthy = True

    started = time.perf_counter()
    try:
        held_locks = db.session.execute(select(func.count()).select_from(RowLock)).scalar_one()
        checks["database"] = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
            "row_locks": held_locks,
        }
    except SQLAlchemyError as exc:
        db.session.rollback()
        healthy = False
        checks["database"] = {"status": "error", "detail": exc.__class__.__name__}
        logger.error("Liveness probe: database unreachable: %s", exc)

    scheduler = current_app.extensions.get("scheduler")
    checks["scheduler"] = {
        "enabled": bool(current_app.config.get("SCHEDULER_ENABLED")),
        "running": bool(scheduler is not None and scheduler.is_running()),
        "jobs": scheduler.list_jobs() if scheduler is not None else [],
    }

    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
