from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from .models import Meeting

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def get_org_meeting(s: "Session", meeting_id: int, organization_id: int | None) -> Meeting | None:
    """Meeting lookup scoped to a tenant. Another organization's meeting reads as missing."""
    if organization_id is None:
        return None
    return s.execute(
        select(Meeting).where(Meeting.id == meeting_id, Meeting.organization_id == organization_id)
    ).scalar_one_or_none()
