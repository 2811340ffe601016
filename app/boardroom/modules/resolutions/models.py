from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.boardroom.models import Base
from app.boardroom.modules.directory.models import BoardMember


class Resolution(Base):
    __tablename__ = "resolutions"
    __table_args__ = (
        Index("idx_resolutions_meeting", "meeting_id"),
        Index("idx_resolutions_organization_status", "organization_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    meeting_id: Mapped[int] = mapped_column(ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # simple_majority, two_thirds, unanimous
    voting_type: Mapped[str] = mapped_column(String(32), nullable=False, default="simple_majority")
    quorum_required: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # draft -> open -> passed | failed
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    # Set iff status is passed/failed.
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    votes: Mapped[list["Vote"]] = relationship(
        "Vote",
        back_populates="resolution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="Vote.voted_at",
    )
    signatures: Mapped[list["Signature"]] = relationship(
        "Signature",
        back_populates="resolution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="Signature.signed_at",
    )


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("resolution_id", "board_member_id", name="uq_votes_resolution_member"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    resolution_id: Mapped[int] = mapped_column(ForeignKey("resolutions.id", ondelete="CASCADE"), nullable=False)
    board_member_id: Mapped[int] = mapped_column(ForeignKey("board_members.id", ondelete="RESTRICT"), nullable=False)

    # approve, reject, abstain
    vote: Mapped[str] = mapped_column(String(16), nullable=False)
    comment: Mapped[str | None] = mapped_column(String(500), nullable=True)
    voted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    resolution: Mapped[Resolution] = relationship("Resolution", back_populates="votes", lazy="selectin")
    board_member: Mapped[BoardMember] = relationship("BoardMember", lazy="selectin")


class Signature(Base):
    """
    E-signature on a passed resolution. No update or delete path exists.
    """

    __tablename__ = "signatures"
    __table_args__ = (
        UniqueConstraint("resolution_id", "board_member_id", name="uq_signatures_resolution_member"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    resolution_id: Mapped[int] = mapped_column(ForeignKey("resolutions.id", ondelete="CASCADE"), nullable=False)
    board_member_id: Mapped[int] = mapped_column(ForeignKey("board_members.id", ondelete="RESTRICT"), nullable=False)

    signature_data: Mapped[str] = mapped_column(Text, nullable=False)  # data URL, or the typed name
    signature_type: Mapped[str] = mapped_column(String(16), nullable=False)  # drawn, typed
    typed_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Request provenance
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False, default="unknown")

    signed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    signed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    resolution: Mapped[Resolution] = relationship("Resolution", back_populates="signatures", lazy="selectin")
    board_member: Mapped[BoardMember] = relationship("BoardMember", lazy="selectin")
