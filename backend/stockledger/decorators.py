# Overview: Route decorators that translate ledger errors into JSON responses.

from functools import wraps
from flask import jsonify, current_app

from .errors import ConflictError, LedgerError, NotFoundError, ValidationError


def _error_body(exc: LedgerError) -> dict:
    body = {"error": str(exc)}
    if exc.details:
        body["details"] = exc.details
    return body


def handles_ledger_errors(action: str):
    """
    Map service exceptions to HTTP responses.

    - ValidationError -> 400
    - NotFoundError   -> 404
    - ConflictError   -> 409 (after any retries the route performed)
    - anything else   -> logged with traceback, 500

    `action` names the operation in the log line ("create order", ...).
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as exc:
                return jsonify(_error_body(exc)), 400
            except NotFoundError as exc:
                return jsonify(_error_body(exc)), 404
            except ConflictError as exc:
                current_app.logger.warning("Conflict during %s: %s", action, exc)
                return jsonify(_error_body(exc)), 409
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": f"Failed to {action}"}), 500

        return decorated_function

    return decorator
