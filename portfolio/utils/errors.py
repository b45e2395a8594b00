"""JSON error envelope shared by every blueprint and error handler.

Body shape::

    {"error": "<message>", "code": "<E.*>", "issues": [...], "details": {...}}

``issues`` and ``details`` are only present when non-empty. Governance
responses put the gate evaluation or pending phase requirements in
``details`` so the UI can render the checklist without a second request.

    return api_error(E.NOT_FOUND, "Use case not found")
    return api_error(E.GOVERNANCE_INCOMPLETE, "Gates incomplete", details=check.to_dict())
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. ``ERR_*`` are generic; the rest come from the governance engine."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    GATE_SEQUENCE = "GATE_SEQUENCE_ERROR"
    GOVERNANCE_INCOMPLETE = "GOVERNANCE_INCOMPLETE"
    PHASE_TRANSITION_REQUIRES_JUSTIFICATION = "PHASE_TRANSITION_REQUIRES_JUSTIFICATION"


_STATUS_BY_CODE: dict[str, int] = {
    **dict.fromkeys((E.VALIDATION_REQUIRED, E.VALIDATION_INVALID,
                     E.PHASE_TRANSITION_REQUIRES_JUSTIFICATION), 400),
    E.GOVERNANCE_INCOMPLETE: 403,
    E.NOT_FOUND: 404,
    **dict.fromkeys((E.CONFLICT_DUPLICATE, E.CONFLICT_STATE, E.GATE_SEQUENCE), 409),
    **dict.fromkeys((E.DATABASE, E.INTERNAL), 500),
}


def status_for(code: str) -> int:
    return _STATUS_BY_CODE.get(code, 400)


def error_body(code: str, message: str, details: dict | None = None,
               issues: list[str] | None = None) -> dict:
    body: dict = {"error": message, "code": code}
    if issues:
        body["issues"] = issues
    if details:
        body["details"] = details
    return body


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    issues: list[str] | None = None,
):
    """``(response, status)`` tuple ready to return from a view.

    The HTTP status comes from the code unless ``status`` overrides it.
    """
    return jsonify(error_body(code, message, details, issues)), status or status_for(code)
