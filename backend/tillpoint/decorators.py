# Overview: Request decorators for the POS API routes.

from functools import wraps

from flask import current_app, jsonify, request

from .extensions import db
from .services.catalog_service import CatalogError
from .validation import (
    ConflictError,
    InsufficientStockError,
    PosError,
    UnderPaymentError,
    ValidationError,
)


# Error taxonomy -> HTTP status
STATUS_BY_ERROR = (
    (UnderPaymentError, 402),
    (InsufficientStockError, 409),
    (ConflictError, 409),
    (ValidationError, 400),
)


def status_for(error: PosError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 400


def json_body() -> dict:
    """Request JSON as a dict; a missing or non-object body is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def pos_errors(action: str):
    """
    Translate service errors into JSON responses.

    Known POS errors become {"error", "type", "details"} with their mapped
    status; anything else is logged with a traceback and answered with 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except PosError as e:
                return jsonify({
                    "error": e.message,
                    "type": type(e).__name__,
                    "details": e.details,
                }), status_for(e)
            except CatalogError as e:
                return jsonify({"error": str(e)}), 404
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500
        return decorated_function
    return decorator
