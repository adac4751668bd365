# Overview: Request decorators and the shared error response for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import AuthorizationError, HwposError, LedgerIntegrityError


ACTOR_HEADER = "X-User-Id"
APPROVER_HEADER = "X-Approver-Id"


def require_actor(f):
    """
    Require the acting user id and put it on g.actor_id.

    Authentication happens upstream; the trusted gateway forwards the
    authenticated user's id in the X-User-Id header.

    Returns 401 if the header is missing and 400 if it is not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER)
        if not raw:
            return jsonify({"error": f"{ACTOR_HEADER} header required"}), 401
        try:
            actor_id = int(raw)
        except ValueError:
            return jsonify({"error": f"{ACTOR_HEADER} must be an integer"}), 400
        if actor_id <= 0:
            return jsonify({"error": f"{ACTOR_HEADER} must be positive"}), 400

        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function


def over_limit_override(requested) -> bool:
    """
    Decide whether a request may charge AR past the customer's limit.

    The body flag alone is not enough: the approving supervisor (X-Approver-Id,
    forwarded by the gateway like X-User-Id; defaults to the actor) must be in
    AR_OVER_LIMIT_APPROVER_IDS.

    Raises:
        AuthorizationError: Override requested by someone who may not approve it
    """
    if requested is not True:
        return False

    raw = request.headers.get(APPROVER_HEADER)
    try:
        approver_id = int(raw) if raw else g.actor_id
    except ValueError:
        raise AuthorizationError(f"{APPROVER_HEADER} must be an integer")

    if approver_id not in current_app.config.get("AR_OVER_LIMIT_APPROVER_IDS", frozenset()):
        raise AuthorizationError(
            f"User {approver_id} may not approve over-limit AR charges",
            code="OVER_LIMIT_NOT_AUTHORIZED",
        )
    current_app.logger.info("Over-limit AR charge approved by user %s for actor %s", approver_id, g.actor_id)
    return True


def error_response(exc: HwposError):
    """
    Translate a domain error into a JSON response.

    4xx for validation, 409 for duplicate sales, 5xx for integrity and
    unresolved concurrency problems. 5xx responses never claim success.
    """
    if isinstance(exc, LedgerIntegrityError) and exc.http_status >= 500:
        current_app.logger.error("Integrity error: %s %s", exc.message, exc.details)
    elif exc.http_status >= 500:
        current_app.logger.warning("%s: %s", exc.code, exc.message)
    return jsonify(exc.to_dict()), exc.http_status
