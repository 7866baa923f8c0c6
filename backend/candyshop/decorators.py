# Overview: Request and capability decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import Forbidden
from .permissions import Actor, GUEST, ROLES, can


ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"


def _actor_from_headers() -> Actor | None:
    actor_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip() or None
    role = (request.headers.get(ACTOR_ROLE_HEADER) or "").strip().lower() or None

    if role is None:
        # No identity forwarded: guest checkout
        return Actor(id=None, role=GUEST) if actor_id is None else None
    if role not in ROLES or role == GUEST:
        return None
    if actor_id is None:
        return None
    return Actor(id=actor_id, role=role)


def require_actor(f):
    """
    Establish the acting identity forwarded by the gateway.

    Authentication happens upstream; this only reads:
    - X-Actor-Id:   opaque actor id
    - X-Actor-Role: admin | operator | customer

    Sets g.actor. Missing headers mean a guest. Returns 401 when the
    headers are inconsistent (role without id, id without role, unknown role).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = _actor_from_headers()
        if actor is None:
            return jsonify({
                "error": "Invalid actor headers",
                "code": "Unauthorized",
                "details": {"headers": [ACTOR_ID_HEADER, ACTOR_ROLE_HEADER]},
            }), 401
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_capability(action: str):
    """
    Require a (role, action) capability before the route body runs.

    Finer rules (ownership, status-dependent customer rights) stay in the
    services, which re-check the same table.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return jsonify({"error": "Authentication required", "code": "Unauthorized", "details": {}}), 401

            if not can(actor.role, action):
                err = Forbidden(
                    "Permission denied",
                    details={"role": actor.role, "required_capability": action},
                )
                return jsonify(err.to_dict()), err.http_status

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_capability(*actions):
    """Require at least one of the given capabilities."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return jsonify({"error": "Authentication required", "code": "Unauthorized", "details": {}}), 401

            if not any(can(actor.role, action) for action in actions):
                err = Forbidden(
                    "Permission denied",
                    details={"role": actor.role, "required_capabilities": list(actions)},
                )
                return jsonify(err.to_dict()), err.http_status

            return f(*args, **kwargs)

        return decorated_function
    return decorator
