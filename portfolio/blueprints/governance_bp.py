"""
AI Use-Case Portfolio Service
Governance Blueprint — the three sequential gates.

Endpoints:
    PATCH  /api/governance/<id>/operating-model   — Operating model decision
    PATCH  /api/governance/<id>/intake            — Intake decision (+ priority_rank)
    PATCH  /api/governance/<id>/rai               — Responsible AI decision (+ risk_level)
    GET    /api/governance/<id>/status            — Gate evaluation for one use case
    GET    /api/governance/queue                  — Use cases waiting on a gate (?gate=)
    GET    /api/governance/summary                — Portfolio gate counts

A decision taken before its predecessor gate passed returns 409
GATE_SEQUENCE_ERROR and writes nothing.
"""

import logging

from flask import Blueprint, jsonify, request

from portfolio.blueprints import json_body
from portfolio.models.use_case import UseCase
from portfolio.services import gate_service, governance
from portfolio.services.metadata_service import resolve_config_for
from portfolio.utils.errors import E, api_error
from portfolio.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

governance_bp = Blueprint("governance", __name__, url_prefix="/api/governance")

_GATE_ROUTES = {
    "operating-model": "operating_model",
    "intake": "intake",
    "rai": "rai",
}


@governance_bp.route("/<uc_id>/<gate_slug>", methods=["PATCH"])
def record_decision(uc_id, gate_slug):
    """Record a gate decision. Body: ``decision``, ``actor``, ``notes`` plus gate extras."""
    gate = _GATE_ROUTES.get(gate_slug)
    if gate is None:
        return api_error(E.NOT_FOUND, f"Unknown governance gate: {gate_slug}")
    use_case, err = get_or_404(UseCase, uc_id, label="Use case")
    if err:
        return err

    result = gate_service.record_gate_decision(use_case, gate, json_body(), resolve_config_for(use_case))
    err = db_commit_or_error()
    if err:
        return err

    body = {
        "use_case": use_case.to_dict(include_derived=False),
        "governance": governance.evaluate_gates(use_case.snapshot()).to_dict(),
    }
    if result["regression"].regressed_gate:
        body["regression"] = result["regression"].to_dict()
    return jsonify(body), 200


@governance_bp.route("/<uc_id>/status", methods=["GET"])
def gate_status(uc_id):
    use_case, err = get_or_404(UseCase, uc_id, label="Use case")
    if err:
        return err
    status = governance.evaluate_gates(use_case.snapshot()).to_dict()
    status["next_gate"] = governance.next_gate(use_case.snapshot())
    return jsonify(status), 200


@governance_bp.route("/queue", methods=["GET"])
def queue():
    gate = request.args.get("gate")
    if gate and gate not in governance.GATES:
        return api_error(E.VALIDATION_INVALID, f"gate must be one of: {', '.join(governance.GATES)}")
    items = gate_service.governance_queue(gate, request.args.get("engagement_id", type=int))
    return jsonify({"items": items, "total": len(items)}), 200


@governance_bp.route("/summary", methods=["GET"])
def summary():
    return jsonify(gate_service.portfolio_governance_summary(request.args.get("engagement_id", type=int))), 200
