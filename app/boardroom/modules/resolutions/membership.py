from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from app.boardroom.errors import Forbidden, NotFound
from app.boardroom.modules.directory.models import BoardMember
from app.boardroom.rbac import user_has_permission

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.boardroom.models import User
    from .models import Resolution


def _find_member(s: "Session", resolution: "Resolution", member_id: int) -> BoardMember | None:
    return s.execute(
        select(BoardMember).where(
            BoardMember.id == member_id,
            BoardMember.organization_id == resolution.organization_id,
            BoardMember.status == "active",
        )
    ).scalar_one_or_none()


def validate(s: "Session", resolution: "Resolution", member_id: int) -> bool:
    """True iff member_id is an active board member of the resolution's organization."""
    return _find_member(s, resolution, member_id) is not None


def require_member(s: "Session", resolution: "Resolution", member_id: int) -> BoardMember:
    member = _find_member(s, resolution, member_id)
    if member is None:
        # Same answer whether the member is missing or belongs to another tenant.
        raise NotFound("Board member not found")
    return member


def resolve_acting_member(
    s: "Session",
    resolution: "Resolution",
    member_id: int | None,
    user: "User",
    *,
    proxy_permission: str,
) -> BoardMember:
    """
    Work out which board member a vote/retract/sign request acts for.

    No member_id means the caller's own board seat. Acting for someone else
    (a clerk recording a show of hands) needs `proxy_permission`.
    """
    if member_id is None:
        member = s.execute(
            select(BoardMember).where(
                BoardMember.user_id == user.id,
                BoardMember.organization_id == resolution.organization_id,
                BoardMember.status == "active",
            )
        ).scalars().first()
        if member is None:
            raise NotFound("Board member not found")
        return member

    member = require_member(s, resolution, member_id)
    if member.user_id != user.id and not user_has_permission(user, proxy_permission):
        raise Forbidden("Cannot act for another board member", missing_permission=proxy_permission)
    return member
