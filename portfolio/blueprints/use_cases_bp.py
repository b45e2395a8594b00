"""
AI Use-Case Portfolio Service
Use-case Blueprint — CRUD, audit trail and the derived sub-objects.

Endpoints:
    Use cases:
        GET    /api/use-cases                          — List (filters + pagination)
        POST   /api/use-cases                          — Create (scored + derived)
        GET    /api/use-cases/<id>                     — Detail
        PUT    /api/use-cases/<id>                     — Update (governed)
        DELETE /api/use-cases/<id>                     — Delete

    Governance trail:
        GET    /api/use-cases/<id>/audit-log           — Audit entries, oldest first
        GET    /api/use-cases/<id>/phase               — Phase + gate progress

    Capability transition:
        GET    /api/use-cases/<id>/capability          — Capability object
        PUT    /api/use-cases/<id>/capability          — Manual edit (marks user-edited)
        POST   /api/use-cases/<id>/capability/derive   — Regenerate (?overwrite=true)

    Value realization:
        GET    /api/use-cases/<id>/value               — Value object + investment metrics
        PUT    /api/use-cases/<id>/value               — Manual edit
        POST   /api/use-cases/<id>/derive-value        — Regenerate (?overwrite=true)
"""

import logging

from flask import Blueprint, jsonify, request

from portfolio.blueprints import activation_blocked_response, json_body, paginate_query
from portfolio.core.exceptions import ActivationBlocked
from portfolio.models import db
from portfolio.models.audit import list_audit_entries
from portfolio.models.use_case import UseCase
from portfolio.services import use_case_service
from portfolio.utils.helpers import db_commit_or_error, get_or_404, parse_bool

logger = logging.getLogger(__name__)

use_cases_bp = Blueprint("use_cases", __name__, url_prefix="/api")

_LIST_FILTERS = ("scope", "quadrant", "use_case_status", "library_source", "library_tier", "tom_phase", "q")


def _get_use_case_or_404(uc_id):
    return get_or_404(UseCase, uc_id, label="Use case")


# ═════════════════════════════════════════════════════════════════════════════
# USE CASES
# ═════════════════════════════════════════════════════════════════════════════

@use_cases_bp.route("/use-cases", methods=["GET"])
def list_use_cases():
    """Return use cases, newest first."""
    filters = {name: request.args.get(name) for name in _LIST_FILTERS}
    filters["engagement_id"] = request.args.get("engagement_id", type=int)
    include_derived = parse_bool(request.args.get("include_derived"), default=True)

    query = use_case_service.build_use_case_query(filters)
    items, total = paginate_query(query)
    return jsonify({
        "items": [uc.to_dict(include_derived=include_derived) for uc in items],
        "total": total,
    }), 200


@use_cases_bp.route("/use-cases", methods=["POST"])
def create_use_case():
    """Create a use case. Scores and derived fields are computed server-side."""
    data = json_body()
    use_case = use_case_service.create_use_case(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(use_case.to_dict()), 201


@use_cases_bp.route("/use-cases/<uc_id>", methods=["GET"])
def get_use_case(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    return jsonify(use_case.to_dict()), 200


@use_cases_bp.route("/use-cases/<uc_id>", methods=["PUT"])
def update_use_case(uc_id):
    """
    Update a use case.

    403 when a status change would activate it with incomplete gates (the
    refusal itself is audited), 400 when a forward phase move needs a
    ``phase_transition_reason``.
    """
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    data = json_body()

    try:
        use_case_service.update_use_case(use_case, data)
    except ActivationBlocked as exc:
        db.session.rollback()
        use_case_service.record_activation_blocked(use_case, exc, actor=data.get("actor"))
        err = db_commit_or_error()
        if err:
            return err
        return activation_blocked_response(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(use_case.to_dict()), 200


@use_cases_bp.route("/use-cases/<uc_id>", methods=["DELETE"])
def delete_use_case(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    use_case_service.delete_use_case(use_case)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Use case deleted", "id": uc_id}), 200


# ═════════════════════════════════════════════════════════════════════════════
# GOVERNANCE TRAIL
# ═════════════════════════════════════════════════════════════════════════════

@use_cases_bp.route("/use-cases/<uc_id>/audit-log", methods=["GET"])
def get_audit_log(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    entries = list_audit_entries(use_case.id)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)}), 200


@use_cases_bp.route("/use-cases/<uc_id>/phase", methods=["GET"])
def get_phase(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    return jsonify(use_case_service.phase_info(use_case)), 200


# ═════════════════════════════════════════════════════════════════════════════
# CAPABILITY TRANSITION
# ═════════════════════════════════════════════════════════════════════════════

@use_cases_bp.route("/use-cases/<uc_id>/capability", methods=["GET"])
def get_capability(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    return jsonify(use_case_service.get_capability(use_case)), 200


@use_cases_bp.route("/use-cases/<uc_id>/capability", methods=["PUT"])
def update_capability(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    use_case_service.update_capability(use_case, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(use_case_service.get_capability(use_case)), 200


@use_cases_bp.route("/use-cases/<uc_id>/capability/derive", methods=["POST"])
def derive_capability(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    overwrite = parse_bool(request.args.get("overwrite", json_body().get("overwrite")))
    use_case_service.derive_capability(use_case, overwrite=overwrite)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(use_case_service.get_capability(use_case)), 200


# ═════════════════════════════════════════════════════════════════════════════
# VALUE REALIZATION
# ═════════════════════════════════════════════════════════════════════════════

@use_cases_bp.route("/use-cases/<uc_id>/value", methods=["GET"])
def get_value(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    return jsonify(use_case_service.get_value(use_case)), 200


@use_cases_bp.route("/use-cases/<uc_id>/value", methods=["PUT"])
def update_value(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    use_case_service.update_value(use_case, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(use_case_service.get_value(use_case)), 200


@use_cases_bp.route("/use-cases/<uc_id>/derive-value", methods=["POST"])
def derive_value(uc_id):
    use_case, err = _get_use_case_or_404(uc_id)
    if err:
        return err
    overwrite = parse_bool(request.args.get("overwrite", json_body().get("overwrite")))
    use_case_service.derive_value(use_case, overwrite=overwrite)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(use_case_service.get_value(use_case)), 200
