"""
Health endpoints.

    GET /api/health        — database round trip plus tenant-config presence
    GET /api/health/ready  — 200 as soon as the app is serving
"""

import logging
import time

from flask import Blueprint, jsonify

from portfolio.models import db
from portfolio.services.metadata_service import get_metadata

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("", methods=["GET"])
def live():
    checks = {}
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}
        return jsonify({"status": "degraded", "checks": checks}), 503

    checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}
    # a missing row is fine: every config section falls back to its defaults
    checks["tenant_config"] = {"status": "ok", "stored": get_metadata() is not None}
    return jsonify({"status": "ok", "checks": checks}), 200
