# Overview: Request decorators for API routes: actor extraction and domain error translation.

from functools import wraps
from flask import request, jsonify, current_app

from .validation import ValidationError, NotFoundError, ConflictError
from .services.inventory_service import InsufficientStockError
from .services.lifecycle_service import LifecycleError
from .services.invoice_service import ReversalError
from .services.reconciliation_service import ConsistencyError


def current_actor() -> str | None:
    """
    Who is acting. Authentication lives in front of this service; it
    forwards the operator's name in the X-Actor header.
    """
    actor = request.headers.get("X-Actor")
    if actor is None:
        return None
    return actor.strip()[:128] or None


def handle_domain_errors(action: str):
    """
    Translate domain exceptions into JSON error responses.

    400 ValidationError, 404 NotFoundError, 409 InsufficientStockError /
    LifecycleError / ConflictError, 500 ConsistencyError, 503 ReversalError
    (retryable). Anything else is logged and returned as a generic 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                return jsonify({"error": str(e)}), 400
            except NotFoundError as e:
                return jsonify({"error": str(e)}), 404
            except InsufficientStockError as e:
                return jsonify({"error": str(e), "details": e.details}), 409
            except (LifecycleError, ConflictError) as e:
                return jsonify({"error": str(e)}), 409
            except ReversalError as e:
                return jsonify({
                    "error": str(e),
                    "details": e.details,
                    "retryable": e.retryable,
                }), 503
            except ConsistencyError as e:
                # Already logged where detected; needs manual reconciliation
                return jsonify({
                    "error": "Ledger consistency check failed",
                    "details": e.details,
                }), 500
            except Exception:
                current_app.logger.exception(f"Failed to {action}")
                return jsonify({"error": "Internal server error"}), 500
        return decorated_function
    return decorator
