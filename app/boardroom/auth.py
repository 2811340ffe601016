from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.boardroom.audit import client_ip, record_event
from app.boardroom.db import db_session
from app.boardroom.errors import GovernanceError, Unauthorized
from app.boardroom.models import User
from app.boardroom.rbac import user_permissions
from app.boardroom.security import ensure_csrf_token, rotate_csrf_token

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)


class TooManyAttempts(GovernanceError):
    status_code = 429
    kind = "rate_limited"

    @classmethod
    def default_message(cls) -> str:
        return "Too many login attempts. Please wait a few minutes."


def _check_rate_limit(ip: str) -> bool:
    """True when `ip` has used up its failed-login budget for the current window."""
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=current_app.config["LOGIN_RATE_WINDOW"])
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= current_app.config["LOGIN_RATE_LIMIT"]


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "organization_id": user.organization_id,
        "roles": sorted({r.key for r in (user.roles or [])}),
        "permissions": sorted(user_permissions(user)),
    }


@bp.post("/login")
def login_post():
    body = request.get_json(silent=True) if request.is_json else None
    data = body if isinstance(body, dict) else request.form
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    ip = client_ip()

    if _check_rate_limit(ip):
        raise TooManyAttempts()

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            raise Unauthorized("Invalid credentials")

        session["user_id"] = user.id
        token = rotate_csrf_token()
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        current_app.logger.info("Login ok: user=%s request_id=%s", user.id, getattr(g, "request_id", None))
        return jsonify({"user": _user_dict(user), "csrf_token": token})
    except GovernanceError:
        raise
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return jsonify({"success": True})


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        raise Unauthorized()
    return jsonify({"user": _user_dict(user), "csrf_token": ensure_csrf_token()})
