"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  - simple 200 for load balancers
    GET /api/v1/health/live   - detailed health (DB, HMRC gateway config)
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from app.core.exceptions import ConfigurationError
from app.models import db
from app.services.envelope_builder import GatewayMode
from app.utils.crypto import ENV_KEY_NAME, MIN_SECRET_LENGTH

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe - always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check - database failed: %s", exc)

    # ── HMRC gateway configuration ───────────────────────────────────
    try:
        mode = GatewayMode.parse(current_app.config.get("HMRC_GATEWAY_MODE"))
        checks["hmrc_gateway"] = {"status": "ok", "mode": mode.value}
    except ConfigurationError as exc:
        checks["hmrc_gateway"] = {"status": "error", "detail": str(exc)}
        overall = False

    # ── Credential encryption secret (never reveal the value) ────────
    secret = os.getenv(ENV_KEY_NAME) or ""
    if len(secret) >= MIN_SECRET_LENGTH:
        checks["credential_vault"] = {"status": "ok"}
    else:
        checks["credential_vault"] = {"status": "error", "detail": f"{ENV_KEY_NAME} missing or too short"}
        overall = False

    checks["app"] = {
        "name": "Gift Aid Claims Service",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
