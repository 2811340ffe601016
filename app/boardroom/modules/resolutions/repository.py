"""
Atomic store operations for resolutions, votes and signatures.

Each write here is a single statement so correctness never depends on
read-then-write sequences in Python:

- upsert_vote: INSERT .. SELECT .. WHERE <resolution is open> ON CONFLICT (resolution_id, board_member_id) DO UPDATE
- delete_vote: DELETE .. WHERE <resolution is open>
- compare_and_swap_status: UPDATE resolutions .. WHERE id = :id AND status = :expected
- claim_if_status: UPDATE resolutions SET status = status WHERE id = :id AND status = :expected
- update_if_status: UPDATE resolutions .. WHERE id = :id AND status IN (:allowed)
- insert_signature_if_absent: INSERT .. ON CONFLICT DO NOTHING

The status condition lives inside the write, so a transition that commits
between a caller's status check and its write makes the write match zero rows
rather than land on a resolution in the wrong state. SQLite ignores the
row-lock clauses, so there these guards are the only protection.

Postgres and SQLite get native conflict clauses; any other dialect falls back
to a SAVEPOINT insert that treats IntegrityError as "row already there".
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, exists, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import Resolution, Signature, Vote


def _dialect_insert(s: Session):
    name = s.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert
    if name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert
    return None


def load_resolution(s: Session, resolution_id: int, *, lock: str | None = None) -> Resolution | None:
    """
    Fetch a resolution fresh from the database.

    lock="share" takes FOR SHARE (vote writers), lock="update" takes FOR UPDATE (close).
    Dialects without row locks (SQLite) ignore the clause; the status CAS still guards close.
    """
    stmt = select(Resolution).where(Resolution.id == resolution_id).execution_options(populate_existing=True)
    if lock == "update":
        stmt = stmt.with_for_update()
    elif lock == "share":
        stmt = stmt.with_for_update(read=True)
    return s.execute(stmt).scalar_one_or_none()


def current_status(s: Session, resolution_id: int) -> str | None:
    return s.execute(select(Resolution.status).where(Resolution.id == resolution_id)).scalar_one_or_none()


def _has_status(resolution_id: int, *statuses: str):
    return exists().where(Resolution.id == resolution_id, Resolution.status.in_(statuses))


def compare_and_swap_status(
    s: Session,
    resolution_id: int,
    *,
    expected: str,
    new: str,
    **values: Any,
) -> bool:
    """Flip status only if it is still `expected`. False means another writer got there first."""
    result = s.execute(
        update(Resolution)
        .where(Resolution.id == resolution_id, Resolution.status == expected)
        .values(status=new, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def claim_if_status(s: Session, resolution_id: int, *, expected: str) -> bool:
    """
    No-op write on the resolution row while it is still `expected`.

    Takes the write lock before a read-tally-write sequence: on SQLite that is
    the database write lock, so guarded vote writes queue behind it.
    """
    result = s.execute(
        update(Resolution)
        .where(Resolution.id == resolution_id, Resolution.status == expected)
        .values(status=Resolution.status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def update_if_status(s: Session, resolution_id: int, *, allowed: tuple[str, ...], **values: Any) -> bool:
    """Write `values` only while the status is one of `allowed`."""
    result = s.execute(
        update(Resolution)
        .where(Resolution.id == resolution_id, Resolution.status.in_(allowed))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def delete_resolution_if_status(s: Session, resolution_id: int, *, expected: str) -> bool:
    result = s.execute(
        delete(Resolution)
        .where(Resolution.id == resolution_id, Resolution.status == expected)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def list_votes(s: Session, resolution_id: int) -> list[Vote]:
    stmt = (
        select(Vote)
        .where(Vote.resolution_id == resolution_id)
        .order_by(Vote.voted_at.asc(), Vote.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(s.execute(stmt).scalars().all())


def get_vote(s: Session, resolution_id: int, board_member_id: int) -> Vote | None:
    stmt = (
        select(Vote)
        .where(Vote.resolution_id == resolution_id, Vote.board_member_id == board_member_id)
        .execution_options(populate_existing=True)
    )
    return s.execute(stmt).scalar_one_or_none()


def upsert_vote(
    s: Session,
    *,
    resolution_id: int,
    board_member_id: int,
    vote: str,
    comment: str | None,
    voted_at: datetime,
) -> Vote | None:
    """
    Insert or replace the member's vote while the resolution is open.
    Returns the stored row, or None when the resolution is no longer open.
    """
    cols = Vote.__table__.c
    values = {
        "resolution_id": resolution_id,
        "board_member_id": board_member_id,
        "vote": vote,
        "comment": comment,
        "voted_at": voted_at,
    }
    # SELECT <values> WHERE the resolution is open; yields no row otherwise.
    # SQLite needs the WHERE here to parse INSERT .. SELECT .. ON CONFLICT.
    guarded_row = select(*(literal(v, cols[k].type) for k, v in values.items())).where(
        _has_status(resolution_id, "open")
    )

    dialect_insert = _dialect_insert(s)
    if dialect_insert is not None:
        stmt = dialect_insert(Vote).from_select(list(values), guarded_row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Vote.resolution_id, Vote.board_member_id],
            set_={
                "vote": stmt.excluded.vote,
                "comment": stmt.excluded.comment,
                "voted_at": stmt.excluded.voted_at,
            },
        )
        written = s.execute(stmt).rowcount
    else:
        try:
            with s.begin_nested():
                written = s.execute(insert(Vote).from_select(list(values), guarded_row)).rowcount
        except IntegrityError:
            written = s.execute(
                update(Vote)
                .where(
                    Vote.resolution_id == resolution_id,
                    Vote.board_member_id == board_member_id,
                    _has_status(resolution_id, "open"),
                )
                .values(vote=vote, comment=comment, voted_at=voted_at)
                .execution_options(synchronize_session=False)
            ).rowcount

    if not written:
        return None
    row = get_vote(s, resolution_id, board_member_id)
    if row is None:
        raise RuntimeError(f"Vote upsert for resolution {resolution_id} member {board_member_id} returned no row")
    return row


def delete_vote(s: Session, resolution_id: int, board_member_id: int) -> bool:
    """Remove the member's vote while the resolution is open. False when nothing was removed."""
    result = s.execute(
        delete(Vote)
        .where(
            Vote.resolution_id == resolution_id,
            Vote.board_member_id == board_member_id,
            _has_status(resolution_id, "open"),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def list_signatures(s: Session, resolution_id: int) -> list[Signature]:
    stmt = (
        select(Signature)
        .where(Signature.resolution_id == resolution_id)
        .order_by(Signature.signed_at.asc(), Signature.id.asc())
    )
    return list(s.execute(stmt).scalars().all())


def insert_signature_if_absent(s: Session, **values: Any) -> Signature | None:
    """
    Insert a signature unless (resolution_id, board_member_id) already signed.
    Returns the new row, or None when the pair already exists.
    """
    dialect_insert = _dialect_insert(s)
    if dialect_insert is not None:
        stmt = dialect_insert(Signature).values(**values).on_conflict_do_nothing(
            index_elements=[Signature.resolution_id, Signature.board_member_id],
        )
        if s.execute(stmt).rowcount == 0:
            return None
    else:
        try:
            with s.begin_nested():
                s.execute(insert(Signature).values(**values))
        except IntegrityError:
            return None

    return s.execute(
        select(Signature).where(
            Signature.resolution_id == values["resolution_id"],
            Signature.board_member_id == values["board_member_id"],
        )
    ).scalar_one()
