"""
AI Use-Case Portfolio Service
Metadata Blueprint — tenant configuration.

Endpoints:
    GET  /api/metadata              — Effective config (defaults filled in)
    PUT  /api/metadata              — Update sections; rescored portfolio counts returned
    POST /api/recalculate-scores    — Rescore every use case with current weights
"""

import logging

from flask import Blueprint, jsonify

from portfolio.blueprints import json_body
from portfolio.services import metadata_service
from portfolio.utils.errors import E, api_error
from portfolio.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

metadata_bp = Blueprint("metadata", __name__, url_prefix="/api")


@metadata_bp.route("/metadata", methods=["GET"])
def get_metadata():
    return jsonify(metadata_service.effective_metadata(metadata_service.get_metadata())), 200


@metadata_bp.route("/metadata", methods=["PUT"])
def update_metadata():
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Metadata body is required")
    row, rescored = metadata_service.update_metadata(data)
    err = db_commit_or_error()
    if err:
        return err
    body = metadata_service.effective_metadata(row)
    body["rescored"] = rescored
    return jsonify(body), 200


@metadata_bp.route("/recalculate-scores", methods=["POST"])
def recalculate_scores():
    counts = metadata_service.recalculate_scores()
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(counts), 200
