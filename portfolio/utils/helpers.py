"""Small helpers shared by the blueprints.

Views look rows up with ``get_or_404`` and finish every write with
``db_commit_or_error``; services only flush.
"""
import logging

from flask import jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from portfolio.models import db
from portfolio.utils.errors import E, error_body

logger = logging.getLogger(__name__)

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def get_or_404(model, pk, label=None):
    """``(obj, None)`` when found, ``(None, error_response)`` otherwise.

        use_case, err = get_or_404(UseCase, uc_id, label="Use case")
        if err:
            return err
    """
    obj = db.session.get(model, pk)
    if obj is None:
        message = f"{label or model.__name__} not found"
        return None, (jsonify(error_body(E.NOT_FOUND, message)), 404)
    return obj, None


def parse_bool(value, default=False):
    """Flag coercion for query args and JSON bodies (``"true"``, ``1``, ``True``...)."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def db_commit_or_error():
    """Commit the session. Returns ``None``, or an error response after rolling back.

    A constraint violation maps to 409; anything else the database raises
    maps to 500.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Commit rejected by a constraint: %s", exc.orig)
        return jsonify(error_body(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")), 409
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Commit failed")
        return jsonify(error_body(E.DATABASE, "Database error")), 500
    return None
