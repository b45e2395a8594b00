"""
AI Use-Case Portfolio Service
Blueprint registry.
"""

from flask import request

from portfolio.utils.errors import E, api_error


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body() -> dict:
    """Request JSON as a dict; anything else becomes an empty payload."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def activation_blocked_response(exc):
    """403 body for a refused activation: which gates failed and what is missing."""
    check = exc.check
    return api_error(
        E.GOVERNANCE_INCOMPLETE,
        str(exc),
        issues=check.reasons,
        details={
            "gates": check.gates,
            "missing_fields": check.missing,
            "overall_progress": check.overall_progress,
            "target_status": exc.target_status,
        },
    )
