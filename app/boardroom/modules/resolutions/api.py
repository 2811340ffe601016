from __future__ import annotations

from typing import Any

from flask import Blueprint, g, jsonify, request

from app.boardroom.audit import client_ip, client_user_agent
from app.boardroom.db import db_session
from app.boardroom.errors import Unauthorized, ValidationFailed
from app.boardroom.models import User
from app.boardroom.modules.resolutions import service
from app.boardroom.modules.resolutions.models import Resolution, Signature, Vote
from app.boardroom.modules.resolutions.tally import VoteSummary
from app.boardroom.rbac import require_permission

bp = Blueprint("resolutions", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        # RBAC decorator should prevent this.
        raise Unauthorized()
    return u


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationFailed({"_": ["Request body must be a JSON object"]})
    return body


def _dt(value) -> str | None:
    return value.isoformat() if value else None


def _member_dict(m) -> dict[str, Any] | None:
    if m is None:
        return None
    return {"id": m.id, "full_name": m.full_name, "position": m.position}


def resolution_to_dict(r: Resolution) -> dict[str, Any]:
    return {
        "id": r.id,
        "organization_id": r.organization_id,
        "meeting_id": r.meeting_id,
        "title": r.title,
        "description": r.description,
        "voting_type": r.voting_type,
        "quorum_required": r.quorum_required,
        "status": r.status,
        "created_by_user_id": r.created_by_user_id,
        "created_at": _dt(r.created_at),
        "updated_at": _dt(r.updated_at),
        "opened_at": _dt(r.opened_at),
        "closed_at": _dt(r.closed_at),
    }


def vote_to_dict(v: Vote) -> dict[str, Any]:
    return {
        "id": v.id,
        "resolution_id": v.resolution_id,
        "board_member_id": v.board_member_id,
        "vote": v.vote,
        "comment": v.comment,
        "voted_at": _dt(v.voted_at),
        "board_member": _member_dict(v.board_member),
    }


def signature_to_dict(sig: Signature) -> dict[str, Any]:
    return {
        "id": sig.id,
        "resolution_id": sig.resolution_id,
        "board_member_id": sig.board_member_id,
        "signature_data": sig.signature_data,
        "signature_type": sig.signature_type,
        "typed_name": sig.typed_name,
        "ip_address": sig.ip_address,
        "user_agent": sig.user_agent,
        "signed_by_user_id": sig.signed_by_user_id,
        "signed_at": _dt(sig.signed_at),
        "board_member": _member_dict(sig.board_member),
    }


def _with_summary(r: Resolution, votes: list[Vote], summary: VoteSummary, *, include_votes: bool) -> dict[str, Any]:
    d = resolution_to_dict(r)
    d["vote_summary"] = summary.as_dict()
    if include_votes:
        d["votes"] = [vote_to_dict(v) for v in votes]
    return d


@bp.get("")
@require_permission("resolutions.view")
def list_resolutions():
    s = db_session()
    u = _current_user()

    errors: dict[str, list[str]] = {}
    meeting_id = service.parse_id(request.args.get("meeting_id"), "meeting_id", errors)
    if errors:
        raise ValidationFailed(errors)

    out = []
    for r in service.list_meeting_resolutions(s, meeting_id, u):
        votes = service.list_votes(s, r)
        out.append(_with_summary(r, votes, service.vote_summary(r, votes), include_votes=False))
    return jsonify({"resolutions": out})


@bp.post("")
@require_permission("resolutions.create")
def create_resolution():
    s = db_session()
    u = _current_user()
    r = service.create_resolution(s, _json_body(), u)
    s.commit()
    return jsonify({"resolution": resolution_to_dict(r)}), 201


@bp.get("/<int:resolution_id>")
@require_permission("resolutions.view")
def resolution_detail(resolution_id: int):
    s = db_session()
    u = _current_user()
    r = service.get_resolution(s, resolution_id, u)
    votes = service.list_votes(s, r)
    return jsonify({"resolution": _with_summary(r, votes, service.vote_summary(r, votes), include_votes=True)})


@bp.patch("/<int:resolution_id>")
@require_permission("resolutions.edit")
def update_resolution(resolution_id: int):
    s = db_session()
    u = _current_user()
    r = service.update_resolution(s, resolution_id, _json_body(), u)
    s.commit()
    return jsonify({"resolution": resolution_to_dict(r)})


@bp.delete("/<int:resolution_id>")
@require_permission("resolutions.delete")
def delete_resolution(resolution_id: int):
    s = db_session()
    u = _current_user()
    service.delete_resolution(s, resolution_id, u)
    s.commit()
    return jsonify({"success": True})


@bp.post("/<int:resolution_id>/open")
@require_permission("resolutions.manage")
def open_resolution(resolution_id: int):
    s = db_session()
    u = _current_user()
    r = service.open_resolution(s, resolution_id, u)
    s.commit()
    return jsonify({"resolution": resolution_to_dict(r)})


@bp.post("/<int:resolution_id>/close")
@require_permission("resolutions.manage")
def close_resolution(resolution_id: int):
    s = db_session()
    u = _current_user()
    r, summary = service.close_resolution(s, resolution_id, u)
    s.commit()
    return jsonify({"resolution": resolution_to_dict(r), "vote_summary": summary.as_dict()})


@bp.post("/<int:resolution_id>/vote")
@require_permission("votes.cast")
def cast_vote(resolution_id: int):
    s = db_session()
    u = _current_user()
    v = service.cast_vote(s, resolution_id, _json_body(), u)
    s.commit()
    return jsonify({"vote": vote_to_dict(v)})


@bp.delete("/<int:resolution_id>/vote")
@require_permission("votes.cast")
def retract_vote(resolution_id: int):
    s = db_session()
    u = _current_user()

    errors: dict[str, list[str]] = {}
    member_id = service.parse_id(request.args.get("board_member_id"), "board_member_id", errors, required=False)
    if errors:
        raise ValidationFailed(errors)

    removed = service.retract_vote(s, resolution_id, member_id, u)
    s.commit()
    return jsonify({"success": True, "removed": removed})


@bp.get("/<int:resolution_id>/votes")
@require_permission("resolutions.view")
def list_votes(resolution_id: int):
    s = db_session()
    u = _current_user()
    r = service.get_resolution(s, resolution_id, u)
    votes = service.list_votes(s, r)
    return jsonify({
        "resolution_id": r.id,
        "status": r.status,
        "votes": [vote_to_dict(v) for v in votes],
        "vote_summary": service.vote_summary(r, votes).as_dict(),
    })


@bp.post("/<int:resolution_id>/signatures")
@require_permission("signatures.create")
def create_signature(resolution_id: int):
    s = db_session()
    u = _current_user()
    sig = service.sign_resolution(
        s,
        resolution_id,
        _json_body(),
        u,
        ip_address=client_ip(),
        user_agent=client_user_agent(),
    )
    s.commit()
    return jsonify({"signature": signature_to_dict(sig)}), 201


@bp.get("/<int:resolution_id>/signatures")
@require_permission("signatures.view")
def list_signatures(resolution_id: int):
    s = db_session()
    u = _current_user()
    r = service.get_resolution(s, resolution_id, u)
    return jsonify({"signatures": [signature_to_dict(sig) for sig in service.list_signatures(s, r)]})
