import pytest

from app.boardroom.db import session_scope
from app.boardroom.errors import Forbidden, NotFound
from app.boardroom.models import BoardMember, Resolution, User
from app.boardroom.modules.resolutions import membership, service


@pytest.fixture()
def draft(app, world):
    with session_scope(app) as s:
        secretary = s.query(User).filter(User.email == "secretary@acme.test").one()
        r = service.create_resolution(s, {"meeting_id": world.meeting_id, "title": "Appoint auditors"}, secretary)
        return r.id


def test_validate(app, world, draft):
    with session_scope(app) as s:
        r = s.get(Resolution, draft)
        assert membership.validate(s, r, world.alice) is True
        assert membership.validate(s, r, world.dave) is False  # inactive
        assert membership.validate(s, r, world.erin) is False  # other organization
        assert membership.validate(s, r, 424242) is False


def test_pending_member_cannot_vote(app, world, draft):
    with session_scope(app) as s:
        s.get(BoardMember, world.carol).status = "pending"
    with session_scope(app) as s:
        r = s.get(Resolution, draft)
        with pytest.raises(NotFound):
            membership.require_member(s, r, world.carol)


def test_resolve_acting_member(app, world, draft):
    with session_scope(app) as s:
        r = s.get(Resolution, draft)
        alice = s.query(User).filter(User.email == "alice@acme.test").one()
        secretary = s.query(User).filter(User.email == "secretary@acme.test").one()

        assert membership.resolve_acting_member(s, r, None, alice, proxy_permission="votes.record").id == world.alice
        with pytest.raises(Forbidden) as exc:
            membership.resolve_acting_member(s, r, world.bob, alice, proxy_permission="votes.record")
        assert exc.value.missing_permission == "votes.record"

        member = membership.resolve_acting_member(s, r, world.bob, secretary, proxy_permission="votes.record")
        assert member.id == world.bob
        with pytest.raises(NotFound):
            membership.resolve_acting_member(s, r, None, secretary, proxy_permission="votes.record")
