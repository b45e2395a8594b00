"""
AI Use-Case Portfolio Service
Bulk derivation Blueprint — portfolio-wide recompute.

Every route here walks the whole portfolio, so the blueprint carries the
BULK_DERIVE_RATE_LIMIT (see middleware/rate_limiter.py).

Endpoints:
    POST /api/derive/all              — Phase + value + capability for every use case
    POST /api/capability/derive-all   — Capability objects only
    POST /api/value/derive-all        — Value estimates only (existing ones skipped)

Body / query flags:
    overwrite_value, overwrite_capability (derive/all), overwrite_existing,
    engagement_id
"""

import logging

from flask import Blueprint, jsonify, request

from portfolio.blueprints import json_body
from portfolio.services import portfolio_service
from portfolio.utils.helpers import db_commit_or_error, parse_bool

logger = logging.getLogger(__name__)

derivation_bp = Blueprint("derivation", __name__, url_prefix="/api")


def _flag(data: dict, name: str) -> bool:
    return parse_bool(request.args.get(name, data.get(name)))


def _engagement_id(data: dict) -> int | None:
    value = request.args.get("engagement_id", data.get("engagement_id"))
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


@derivation_bp.route("/derive/all", methods=["POST"])
def derive_all():
    data = json_body()
    result = portfolio_service.derive_all(
        overwrite_value=_flag(data, "overwrite_value"),
        overwrite_capability=_flag(data, "overwrite_capability"),
        engagement_id=_engagement_id(data),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict()), 200


@derivation_bp.route("/capability/derive-all", methods=["POST"])
def derive_capability_all():
    data = json_body()
    counts = portfolio_service.derive_capability_all(_flag(data, "overwrite_existing"), _engagement_id(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(counts), 200


@derivation_bp.route("/value/derive-all", methods=["POST"])
def derive_value_all():
    data = json_body()
    counts = portfolio_service.derive_value_all(_flag(data, "overwrite_existing"), _engagement_id(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(counts), 200
