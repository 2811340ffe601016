from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app.boardroom import auth, create_app
from app.boardroom.constants import PERMISSIONS, ROLE_NAMES, ROLE_PERMISSIONS
from app.boardroom.db import session_scope
from app.boardroom.models import Base, BoardMember, Meeting, Organization, Permission, Role, User


def _seed_roles(s) -> dict[str, Role]:
    perms = {key: Permission(key=key, name=name) for key, name in PERMISSIONS}
    s.add_all(perms.values())
    roles = {}
    for role_key, perm_keys in ROLE_PERMISSIONS.items():
        r = Role(key=role_key, name=ROLE_NAMES[role_key])
        r.permissions.extend(perms[k] for k in perm_keys)
        s.add(r)
        roles[role_key] = r
    return roles


def _user(s, email: str, org: Organization, role: Role) -> User:
    u = User(email=email, password_hash=generate_password_hash("pw"), is_active=True, organization_id=org.id)
    u.roles.append(role)
    s.add(u)
    return u


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    auth._login_attempts.clear()
    yield
    auth._login_attempts.clear()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def world(app):
    """
    Two organizations. Acme has a secretary, three active members with logins
    (alice, bob, carol) and an inactive member (dave). Globex has its own
    secretary and one member.
    """
    with session_scope(app) as s:
        roles = _seed_roles(s)
        acme = Organization(name="Acme", slug="acme")
        globex = Organization(name="Globex", slug="globex")
        s.add_all([acme, globex])
        s.flush()

        _user(s, "secretary@acme.test", acme, roles["secretary"])
        alice = _user(s, "alice@acme.test", acme, roles["board_member"])
        bob = _user(s, "bob@acme.test", acme, roles["board_member"])
        carol = _user(s, "carol@acme.test", acme, roles["board_member"])
        _user(s, "secretary@globex.test", globex, roles["secretary"])
        erin_user = _user(s, "erin@globex.test", globex, roles["board_member"])
        s.flush()

        m_alice = BoardMember(organization_id=acme.id, user_id=alice.id, full_name="Alice Archer", position="Chair")
        m_bob = BoardMember(organization_id=acme.id, user_id=bob.id, full_name="Bob Baker")
        m_carol = BoardMember(organization_id=acme.id, user_id=carol.id, full_name="Carol Chen")
        m_dave = BoardMember(organization_id=acme.id, full_name="Dave Dunn", status="inactive")
        m_erin = BoardMember(organization_id=globex.id, user_id=erin_user.id, full_name="Erin Evans")
        meeting = Meeting(organization_id=acme.id, title="Q3 board meeting")
        other_meeting = Meeting(organization_id=globex.id, title="Globex AGM")
        s.add_all([m_alice, m_bob, m_carol, m_dave, m_erin, meeting, other_meeting])
        s.flush()

        return SimpleNamespace(
            acme_id=acme.id,
            globex_id=globex.id,
            meeting_id=meeting.id,
            other_meeting_id=other_meeting.id,
            alice=m_alice.id,
            bob=m_bob.id,
            carol=m_carol.id,
            dave=m_dave.id,
            erin=m_erin.id,
        )


@pytest.fixture()
def login(app, world):
    """Returns a factory: login("alice@acme.test") -> logged-in test client with CSRF header set."""

    def _login(email: str, password: str = "pw"):
        c = app.test_client()
        r = c.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        c.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]
        return c

    return _login


@pytest.fixture()
def secretary(login):
    return login("secretary@acme.test")


def create_resolution(client, meeting_id, **fields):
    payload = {"meeting_id": meeting_id, "title": "Approve the annual budget"}
    payload.update(fields)
    r = client.post("/api/resolutions", json=payload)
    assert r.status_code == 201, r.json
    return r.json["resolution"]


def open_resolution(client, meeting_id, **fields):
    res = create_resolution(client, meeting_id, **fields)
    r = client.post(f"/api/resolutions/{res['id']}/open")
    assert r.status_code == 200, r.json
    return r.json["resolution"]


def cast(client, resolution_id, vote, **fields):
    return client.post(f"/api/resolutions/{resolution_id}/vote", json={"vote": vote, **fields})
