"""
Resolutions service layer.
Lifecycle transitions, vote ledger, signature ledger, payload validation.

Functions here flush but never commit; the calling request handler owns the
transaction so a business write and its audit event land together.
"""
from __future__ import annotations

import base64
import binascii
import dataclasses
import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import g, has_request_context

from app.boardroom.audit import record_event
from app.boardroom.errors import Conflict, InvalidStateTransition, NotFound, ValidationFailed
from app.boardroom.modules.directory.service import get_org_meeting

from . import membership, repository
from .models import Resolution, Signature, Vote
from .tally import VOTE_CHOICES, VOTING_TYPES, VoteSummary, summarize

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.boardroom.models import User

logger = logging.getLogger(__name__)


TERMINAL_STATUSES = ("passed", "failed")

SIGNATURE_TYPES = ("drawn", "typed")

TITLE_MIN = 3
TITLE_MAX = 255
COMMENT_MAX = 500
TYPED_NAME_MAX = 255

_DATA_URL_RE = re.compile(r"^data:image/(png|svg\+xml);base64,(?P<data>[A-Za-z0-9+/=\s]+)$")


def _rid() -> str | None:
    return getattr(g, "request_id", None) if has_request_context() else None


def _reject(resolution: Resolution, requested: str, current: str | None = None) -> InvalidStateTransition:
    current = current or resolution.status
    logger.warning(
        "Rejected %s on resolution=%s status=%s request_id=%s",
        requested,
        resolution.id,
        current,
        _rid(),
    )
    return InvalidStateTransition(current, requested)


def _reject_after_race(s: "Session", resolution: Resolution, requested: str) -> InvalidStateTransition:
    """A guarded write matched nothing: report the status another writer left behind."""
    current = repository.current_status(s, resolution.id)
    if current is None:
        logger.warning("Resolution vanished during %s: resolution=%s request_id=%s", requested, resolution.id, _rid())
        raise NotFound("Resolution not found")
    return _reject(resolution, requested, current)


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------


def _add(errors: dict[str, list[str]], field: str, message: str) -> None:
    errors.setdefault(field, []).append(message)


def parse_id(value: Any, field: str, errors: dict[str, list[str]], *, required: bool = True) -> int | None:
    """Coerce an id from JSON/query input. Records a field error instead of raising."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            _add(errors, field, f"{field} is required")
        return None
    if isinstance(value, bool):
        _add(errors, field, f"{field} must be an integer")
        return None
    if isinstance(value, float) and not value.is_integer():
        _add(errors, field, f"{field} must be an integer")
        return None
    try:
        n = int(value)
    except (TypeError, ValueError, OverflowError):
        _add(errors, field, f"{field} must be an integer")
        return None
    if n <= 0:
        _add(errors, field, f"{field} must be positive")
        return None
    return n


def _check_title(payload: dict, errors: dict[str, list[str]]) -> str | None:
    title = payload.get("title")
    if not isinstance(title, str):
        _add(errors, "title", "Title is required")
        return None
    title = title.strip()
    if len(title) < TITLE_MIN:
        _add(errors, "title", f"Title must be at least {TITLE_MIN} characters")
    elif len(title) > TITLE_MAX:
        _add(errors, "title", f"Title must be less than {TITLE_MAX} characters")
    return title


def _check_description(payload: dict, errors: dict[str, list[str]]) -> str | None:
    description = payload.get("description")
    if description is None:
        return None
    if not isinstance(description, str):
        _add(errors, "description", "Description must be a string")
        return None
    return description.strip() or None


def _check_voting_type(payload: dict, errors: dict[str, list[str]]) -> str | None:
    voting_type = payload.get("voting_type")
    if voting_type not in VOTING_TYPES:
        _add(errors, "voting_type", f"Invalid voting type. Must be one of: {', '.join(VOTING_TYPES)}")
        return None
    return voting_type


def _check_quorum(payload: dict, errors: dict[str, list[str]]) -> int | None:
    quorum = payload.get("quorum_required")
    if isinstance(quorum, bool) or not isinstance(quorum, int):
        _add(errors, "quorum_required", "Quorum must be an integer")
        return None
    if quorum < 0:
        _add(errors, "quorum_required", "Quorum must be at least 0")
        return None
    return quorum


def validate_create_payload(payload: dict) -> tuple[dict[str, Any], dict[str, list[str]]]:
    errors: dict[str, list[str]] = {}
    clean: dict[str, Any] = {
        "meeting_id": parse_id(payload.get("meeting_id"), "meeting_id", errors),
        "title": _check_title(payload, errors),
        "description": _check_description(payload, errors),
        "voting_type": "simple_majority",
        "quorum_required": 0,
    }
    if payload.get("voting_type") is not None:
        clean["voting_type"] = _check_voting_type(payload, errors)
    if payload.get("quorum_required") is not None:
        clean["quorum_required"] = _check_quorum(payload, errors)
    if payload.get("status") not in (None, "draft"):
        _add(errors, "status", "New resolutions always start as draft")
    return clean, errors


def validate_update_payload(payload: dict) -> tuple[dict[str, Any], dict[str, list[str]]]:
    errors: dict[str, list[str]] = {}
    clean: dict[str, Any] = {}
    if "status" in payload:
        _add(errors, "status", "Status changes go through the open and close actions")
    if "title" in payload:
        clean["title"] = _check_title(payload, errors)
    if "description" in payload:
        clean["description"] = _check_description(payload, errors)
    if "voting_type" in payload:
        clean["voting_type"] = _check_voting_type(payload, errors)
    if "quorum_required" in payload:
        clean["quorum_required"] = _check_quorum(payload, errors)
    if not clean and not errors:
        _add(errors, "_", "No updatable fields supplied")
    return clean, errors


def validate_vote_payload(payload: dict) -> tuple[dict[str, Any], dict[str, list[str]]]:
    errors: dict[str, list[str]] = {}
    vote = payload.get("vote")
    if vote is None:
        _add(errors, "vote", "Vote choice is required")
    elif vote not in VOTE_CHOICES:
        _add(errors, "vote", "Vote must be approve, reject, or abstain")

    comment = payload.get("comment")
    if comment is not None:
        if not isinstance(comment, str):
            _add(errors, "comment", "Comment must be a string")
            comment = None
        else:
            comment = comment.strip() or None
            if comment and len(comment) > COMMENT_MAX:
                _add(errors, "comment", f"Comment must be less than {COMMENT_MAX} characters")

    member_id = parse_id(payload.get("board_member_id"), "board_member_id", errors, required=False)
    return {"vote": vote, "comment": comment, "board_member_id": member_id}, errors


def _valid_data_url(data: str) -> bool:
    m = _DATA_URL_RE.match(data.strip())
    if not m:
        return False
    try:
        decoded = base64.b64decode("".join(m.group("data").split()), validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(decoded) > 0


def validate_signature_payload(payload: dict) -> tuple[dict[str, Any], dict[str, list[str]]]:
    errors: dict[str, list[str]] = {}
    member_id = parse_id(payload.get("board_member_id"), "board_member_id", errors, required=False)

    signature_type = payload.get("signature_type")
    if signature_type is None:
        _add(errors, "signature_type", "Signature type is required")
    elif signature_type not in SIGNATURE_TYPES:
        _add(errors, "signature_type", "Signature type must be either drawn or typed")

    typed_name = payload.get("typed_name")
    if typed_name is not None and not isinstance(typed_name, str):
        _add(errors, "typed_name", "Typed name must be a string")
        typed_name = None
    typed_name = (typed_name or "").strip() or None
    if typed_name and len(typed_name) > TYPED_NAME_MAX:
        _add(errors, "typed_name", f"Typed name must be less than {TYPED_NAME_MAX} characters")

    signature_data = payload.get("signature_data")
    if signature_data is not None and not isinstance(signature_data, str):
        _add(errors, "signature_data", "Signature data must be a string")
        signature_data = None
    signature_data = (signature_data or "").strip() or None

    if signature_type == "drawn":
        if not signature_data:
            _add(errors, "signature_data", "Signature data is required")
        elif not _valid_data_url(signature_data):
            _add(errors, "signature_data", "Signature data must be a base64 PNG or SVG image")
    elif signature_type == "typed":
        if not typed_name:
            _add(errors, "typed_name", "Typed name is required for typed signatures")
        if signature_data and not _valid_data_url(signature_data):
            _add(errors, "signature_data", "Signature data must be a base64 PNG or SVG image")
        signature_data = signature_data or typed_name

    return {
        "board_member_id": member_id,
        "signature_type": signature_type,
        "signature_data": signature_data,
        "typed_name": typed_name,
    }, errors


def _raise_if(errors: dict[str, list[str]]) -> None:
    if errors:
        raise ValidationFailed(errors)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_resolution(s: "Session", resolution_id: int, user: "User", *, lock: str | None = None) -> Resolution:
    """Resolution in the caller's organization, or NotFound."""
    resolution = repository.load_resolution(s, resolution_id, lock=lock)
    if resolution is None or user.organization_id is None or resolution.organization_id != user.organization_id:
        raise NotFound("Resolution not found")
    return resolution


def list_meeting_resolutions(s: "Session", meeting_id: int, user: "User") -> list[Resolution]:
    meeting = get_org_meeting(s, meeting_id, user.organization_id)
    if meeting is None:
        raise NotFound("Meeting not found")
    return (
        s.query(Resolution)
        .filter(Resolution.meeting_id == meeting.id)
        .order_by(Resolution.created_at.desc(), Resolution.id.desc())
        .all()
    )


def list_votes(s: "Session", resolution: Resolution) -> list[Vote]:
    return repository.list_votes(s, resolution.id)


def vote_summary(resolution: Resolution, votes: list[Vote]) -> VoteSummary:
    """Current tally. Closed resolutions also carry their recorded outcome in recorded_result."""
    summary = summarize(votes, resolution.voting_type, resolution.quorum_required)
    if resolution.status in TERMINAL_STATUSES and summary.result != resolution.status:
        # Votes are frozen at close, so this only fires if rows were edited out of band.
        logger.error(
            "Recorded outcome differs from stored votes: resolution=%s status=%s tally=%s",
            resolution.id,
            resolution.status,
            summary.result,
        )
    if resolution.status in TERMINAL_STATUSES:
        summary = dataclasses.replace(summary, recorded_result=resolution.status)
    return summary


def list_signatures(s: "Session", resolution: Resolution) -> list[Signature]:
    return repository.list_signatures(s, resolution.id)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def create_resolution(s: "Session", payload: dict, user: "User") -> Resolution:
    """Create a draft resolution under one of the caller's meetings."""
    clean, errors = validate_create_payload(payload)
    _raise_if(errors)

    meeting = get_org_meeting(s, clean["meeting_id"], user.organization_id)
    if meeting is None:
        raise NotFound("Meeting not found")

    now = datetime.utcnow()
    resolution = Resolution(
        organization_id=meeting.organization_id,
        meeting_id=meeting.id,
        title=clean["title"],
        description=clean["description"],
        voting_type=clean["voting_type"],
        quorum_required=clean["quorum_required"],
        status="draft",
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(resolution)
    s.flush()

    record_event(
        s,
        actor=user,
        action="resolution.create",
        entity_type="Resolution",
        entity_id=str(resolution.id),
        metadata={
            "meeting_id": meeting.id,
            "title": resolution.title,
            "voting_type": resolution.voting_type,
        },
    )
    logger.info("Resolution created: resolution=%s meeting=%s request_id=%s", resolution.id, meeting.id, _rid())
    return resolution


def update_resolution(s: "Session", resolution_id: int, payload: dict, user: "User") -> Resolution:
    """
    Update metadata. Title/description while draft or open; voting rules only while draft.
    """
    clean, errors = validate_update_payload(payload)
    _raise_if(errors)

    resolution = get_resolution(s, resolution_id, user, lock="update")
    if resolution.status in TERMINAL_STATUSES:
        raise _reject(resolution, "update")
    rule_fields = {"voting_type", "quorum_required"} & clean.keys()
    if rule_fields and resolution.status != "draft":
        raise _reject(resolution, "change voting rules of")

    changes = {}
    for field, new in clean.items():
        old = getattr(resolution, field)
        if new != old:
            changes[field] = {"old": old, "new": new}

    if changes:
        # Rule edits stay draft-only even if an open commits after the check above.
        allowed = ("draft",) if rule_fields else ("draft", "open")
        values = {field: change["new"] for field, change in changes.items()}
        if not repository.update_if_status(
            s, resolution.id, allowed=allowed, updated_at=datetime.utcnow(), **values
        ):
            raise _reject_after_race(s, resolution, "change voting rules of" if rule_fields else "update")
        s.refresh(resolution)
        record_event(
            s,
            actor=user,
            action="resolution.update",
            entity_type="Resolution",
            entity_id=str(resolution.id),
            metadata={"title": resolution.title, "changes": changes},
        )
    s.flush()
    return resolution


def open_resolution(s: "Session", resolution_id: int, user: "User") -> Resolution:
    resolution = get_resolution(s, resolution_id, user)
    if resolution.status != "draft":
        raise _reject(resolution, "open")

    now = datetime.utcnow()
    if not repository.compare_and_swap_status(
        s, resolution.id, expected="draft", new="open", opened_at=now, updated_at=now
    ):
        raise _reject_after_race(s, resolution, "open")
    s.refresh(resolution)

    record_event(
        s,
        actor=user,
        action="resolution.open",
        entity_type="Resolution",
        entity_id=str(resolution.id),
        metadata={"from": "draft", "to": "open", "voting_type": resolution.voting_type},
    )
    logger.info("Resolution opened: resolution=%s request_id=%s", resolution.id, _rid())
    return resolution


def close_resolution(s: "Session", resolution_id: int, user: "User") -> tuple[Resolution, VoteSummary]:
    """
    Close voting: claim the row, read every vote, tally once, then CAS open -> passed/failed.

    The claim is a write, so vote writers wait for this transaction and the
    tally sees a frozen ledger. If another close won the race the claim or the
    CAS matches zero rows and this raises InvalidStateTransition without
    touching the recorded result.
    """
    resolution = get_resolution(s, resolution_id, user, lock="update")
    if resolution.status != "open":
        raise _reject(resolution, "close")
    if not repository.claim_if_status(s, resolution.id, expected="open"):
        raise _reject_after_race(s, resolution, "close")

    votes = repository.list_votes(s, resolution.id)
    summary = summarize(votes, resolution.voting_type, resolution.quorum_required)

    now = datetime.utcnow()
    if not repository.compare_and_swap_status(
        s, resolution.id, expected="open", new=summary.result, closed_at=now, updated_at=now
    ):
        raise _reject_after_race(s, resolution, "close")
    s.refresh(resolution)
    summary = dataclasses.replace(summary, recorded_result=summary.result)

    record_event(
        s,
        actor=user,
        action="resolution.close",
        entity_type="Resolution",
        entity_id=str(resolution.id),
        metadata={"from": "open", "to": summary.result, "voting_type": resolution.voting_type, "summary": summary.as_dict()},
    )
    logger.info(
        "Resolution closed: resolution=%s result=%s approve=%s reject=%s abstain=%s request_id=%s",
        resolution.id,
        summary.result,
        summary.approve,
        summary.reject,
        summary.abstain,
        _rid(),
    )
    return resolution, summary


def delete_resolution(s: "Session", resolution_id: int, user: "User") -> None:
    resolution = get_resolution(s, resolution_id, user)
    if resolution.status != "draft":
        raise _reject(resolution, "delete")

    title = resolution.title
    if not repository.delete_resolution_if_status(s, resolution.id, expected="draft"):
        raise _reject_after_race(s, resolution, "delete")
    s.expunge(resolution)

    record_event(
        s,
        actor=user,
        action="resolution.delete",
        entity_type="Resolution",
        entity_id=str(resolution_id),
        metadata={"title": title},
    )
    logger.info("Resolution deleted: resolution=%s request_id=%s", resolution_id, _rid())


# ---------------------------------------------------------------------------
# Vote ledger
# ---------------------------------------------------------------------------


def cast_vote(s: "Session", resolution_id: int, payload: dict, user: "User") -> Vote:
    """Cast or change a vote. Last write wins; no history of superseded votes."""
    clean, errors = validate_vote_payload(payload)
    _raise_if(errors)

    resolution = get_resolution(s, resolution_id, user, lock="share")
    if resolution.status != "open":
        raise _reject(resolution, "vote on")

    member = membership.resolve_acting_member(
        s, resolution, clean["board_member_id"], user, proxy_permission="votes.record"
    )
    vote = repository.upsert_vote(
        s,
        resolution_id=resolution.id,
        board_member_id=member.id,
        vote=clean["vote"],
        comment=clean["comment"],
        voted_at=datetime.utcnow(),
    )
    if vote is None:
        raise _reject_after_race(s, resolution, "vote on")

    record_event(
        s,
        actor=user,
        action="vote.cast",
        entity_type="Resolution",
        entity_id=str(resolution.id),
        metadata={"board_member_id": member.id, "vote": vote.vote},
    )
    logger.info(
        "Vote cast: resolution=%s member=%s vote=%s request_id=%s", resolution.id, member.id, vote.vote, _rid()
    )
    return vote


def retract_vote(s: "Session", resolution_id: int, board_member_id: int | None, user: "User") -> bool:
    """Remove a vote while open. Retracting a vote that does not exist is not an error."""
    resolution = get_resolution(s, resolution_id, user, lock="share")
    if resolution.status != "open":
        raise _reject(resolution, "retract a vote on")

    member = membership.resolve_acting_member(
        s, resolution, board_member_id, user, proxy_permission="votes.record"
    )
    removed = repository.delete_vote(s, resolution.id, member.id)
    if not removed and repository.current_status(s, resolution.id) != "open":
        raise _reject_after_race(s, resolution, "retract a vote on")
    if removed:
        record_event(
            s,
            actor=user,
            action="vote.retract",
            entity_type="Resolution",
            entity_id=str(resolution.id),
            metadata={"board_member_id": member.id},
        )
        logger.info("Vote retracted: resolution=%s member=%s request_id=%s", resolution.id, member.id, _rid())
    return removed


# ---------------------------------------------------------------------------
# Signature ledger
# ---------------------------------------------------------------------------


def sign_resolution(
    s: "Session",
    resolution_id: int,
    payload: dict,
    user: "User",
    *,
    ip_address: str = "unknown",
    user_agent: str = "unknown",
) -> Signature:
    """
    Append a signature to a passed resolution. A second signature by the same
    member raises Conflict; nothing is overwritten.
    """
    clean, errors = validate_signature_payload(payload)
    _raise_if(errors)

    resolution = get_resolution(s, resolution_id, user)
    if resolution.status != "passed":
        raise _reject(resolution, "sign")

    member = membership.resolve_acting_member(
        s, resolution, clean["board_member_id"], user, proxy_permission="signatures.record"
    )
    signature = repository.insert_signature_if_absent(
        s,
        resolution_id=resolution.id,
        board_member_id=member.id,
        signature_data=clean["signature_data"],
        signature_type=clean["signature_type"],
        typed_name=clean["typed_name"],
        ip_address=(ip_address or "unknown")[:64],
        user_agent=(user_agent or "unknown")[:512],
        signed_by_user_id=user.id,
        signed_at=datetime.utcnow(),
    )
    if signature is None:
        logger.warning(
            "Duplicate signature refused: resolution=%s member=%s request_id=%s", resolution.id, member.id, _rid()
        )
        raise Conflict("You have already signed this resolution")

    record_event(
        s,
        actor=user,
        action="signature.create",
        entity_type="Signature",
        entity_id=str(signature.id),
        metadata={
            "resolution_id": resolution.id,
            "board_member_id": member.id,
            "signature_type": signature.signature_type,
            "ip_address": signature.ip_address,
            "user_agent": signature.user_agent,
        },
    )
    logger.info("Resolution signed: resolution=%s member=%s request_id=%s", resolution.id, member.id, _rid())
    return signature
