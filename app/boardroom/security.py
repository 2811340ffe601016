import secrets
from flask import session, Request

MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")

# Login is the only way to obtain a token.
CSRF_EXEMPT_ENDPOINTS = frozenset({"auth.login_post"})


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def rotate_csrf_token() -> str:
    """Issue a fresh token, e.g. when the session changes hands at login."""
    session["csrf_token"] = secrets.token_urlsafe(32)
    return session["csrf_token"]


def _submitted_token(req: Request) -> str | None:
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get("csrf_token")
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header, form, or JSON body."""
    token = _submitted_token(req)
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def csrf_required(req: Request, user) -> bool:
    """
    Only authenticated mutations need a token; anonymous ones fail auth with 401.
    """
    if req.method not in MUTATING_METHODS:
        return False
    if req.endpoint in CSRF_EXEMPT_ENDPOINTS:
        return False
    return user is not None
