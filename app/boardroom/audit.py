import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.boardroom.models import AuditEvent, User


def client_ip() -> str:
    """
    Network origin of the current request: first X-Forwarded-For hop, then
    X-Real-IP, then the socket peer. "unknown" outside a request.
    """
    if not has_request_context():
        return "unknown"
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (request.headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip
    return request.remote_addr or "unknown"


def client_user_agent() -> str:
    if not has_request_context():
        return "unknown"
    return (request.headers.get("User-Agent") or "").strip() or "unknown"


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    rid = request_id or (getattr(g, "request_id", None) if has_request_context() else None)
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=client_ip() if has_request_context() else None,
    )
    s.add(ev)
    return ev
