from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.boardroom.errors import Forbidden, Unauthorized
from app.boardroom.models import User


def user_permissions(user: User | None) -> set[str]:
    """Every permission key granted through the user's roles."""
    if not user or not user.is_active:
        return set()
    return {perm.key for role in (user.roles or []) for perm in (role.permissions or [])}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return permission_key in user_permissions(user)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Guard an API view. No session -> 401 Unauthorized, missing key -> 403 Forbidden
    naming the key.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                raise Unauthorized()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise Forbidden(missing_permission=permission_key)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
