from app.boardroom.db import session_scope
from app.boardroom.models import AuditEvent


def test_health_ok(app):
    c = app.test_client()
    r = c.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = c.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_anonymous_api_is_unauthorized(app, world):
    c = app.test_client()
    r = c.get(f"/api/resolutions?meeting_id={world.meeting_id}")
    assert r.status_code == 401
    assert r.json["kind"] == "unauthorized"

    r = c.post("/api/resolutions", json={"meeting_id": world.meeting_id, "title": "Anything"})
    assert r.status_code == 401


def test_login_me_logout(app, world):
    c = app.test_client()
    r = c.post("/auth/login", json={"email": "alice@acme.test", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["email"] == "alice@acme.test"
    assert r.json["user"]["organization_id"] == world.acme_id
    assert "votes.cast" in r.json["user"]["permissions"]
    token = r.json["csrf_token"]

    r = c.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["roles"] == ["board_member"]

    r = c.post("/auth/logout", headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert c.get("/auth/me").status_code == 401


def test_bad_login_is_audited(app, world):
    c = app.test_client()
    r = c.post("/auth/login", json={"email": "alice@acme.test", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials"

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "alice@acme.test"
        assert ev.actor_user_id is None


def test_login_rate_limited(app, world):
    c = app.test_client()
    for _ in range(5):
        assert c.post("/auth/login", json={"email": "alice@acme.test", "password": "wrong"}).status_code == 401
    r = c.post("/auth/login", json={"email": "alice@acme.test", "password": "pw"})
    assert r.status_code == 429
    assert r.json["kind"] == "rate_limited"


def test_mutation_without_csrf_token_rejected(login, world):
    c = login("secretary@acme.test")
    del c.environ_base["HTTP_X_CSRF_TOKEN"]
    r = c.post("/api/resolutions", json={"meeting_id": world.meeting_id, "title": "No token"})
    assert r.status_code == 400
    assert r.json["kind"] == "csrf"


def test_csrf_token_accepted_in_json_body(login, world):
    c = login("secretary@acme.test")
    token = c.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = c.post(
        "/api/resolutions",
        json={"meeting_id": world.meeting_id, "title": "Body token", "csrf_token": token},
    )
    assert r.status_code == 201


def test_unknown_route_returns_json(app):
    r = app.test_client().get("/nope")
    assert r.status_code == 404
    assert r.json["kind"] == "not_found"
