"""
AI Use-Case Portfolio Service
Portfolio Blueprint — TOM configuration and read-only aggregates.

Endpoints:
    GET  /api/tom/config                       — Effective TOM config (?engagement_id=)
    PUT  /api/tom/config                       — Update the tenant TOM config
    GET  /api/tom/phase-summary                — Use-case count per phase
    GET  /api/capability/portfolio-summary     — Independence / staffing / KT totals
    GET  /api/capability/staffing-projection   — Summed staffing at +0/+6/+12/+18 months
    GET  /api/value/portfolio-summary          — Investment, value and ROI totals
"""

import logging

from flask import Blueprint, jsonify, request

from portfolio.blueprints import json_body
from portfolio.services import portfolio_service
from portfolio.utils.errors import E, api_error
from portfolio.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

portfolio_bp = Blueprint("portfolio", __name__, url_prefix="/api")


def _engagement_id():
    return request.args.get("engagement_id", type=int)


# ═════════════════════════════════════════════════════════════════════════════
# TOM
# ═════════════════════════════════════════════════════════════════════════════

@portfolio_bp.route("/tom/config", methods=["GET"])
def get_tom_config():
    return jsonify(portfolio_service.get_tom_config(_engagement_id())), 200


@portfolio_bp.route("/tom/config", methods=["PUT"])
def update_tom_config():
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "TOM config body is required")
    cfg = portfolio_service.update_tom_config(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(cfg), 200


@portfolio_bp.route("/tom/phase-summary", methods=["GET"])
def phase_summary():
    return jsonify(portfolio_service.phase_summary(_engagement_id())), 200


# ═════════════════════════════════════════════════════════════════════════════
# AGGREGATES
# ═════════════════════════════════════════════════════════════════════════════

@portfolio_bp.route("/capability/portfolio-summary", methods=["GET"])
def capability_summary():
    return jsonify(portfolio_service.capability_summary(_engagement_id())), 200


@portfolio_bp.route("/capability/staffing-projection", methods=["GET"])
def staffing_projection():
    points = portfolio_service.staffing_projection(_engagement_id())
    return jsonify({"items": points, "total": len(points)}), 200


@portfolio_bp.route("/value/portfolio-summary", methods=["GET"])
def value_summary():
    return jsonify(portfolio_service.value_summary(_engagement_id())), 200
