"""Resolution lifecycle: create, update, open, close, delete, tenant scoping."""
import json

from conftest import cast, create_resolution, open_resolution

from app.boardroom.db import session_scope
from app.boardroom.models import AuditEvent, Resolution


def test_create_starts_as_draft(secretary, world):
    res = create_resolution(secretary, world.meeting_id, voting_type="two_thirds", description="  FY budget  ")
    assert res["status"] == "draft"
    assert res["voting_type"] == "two_thirds"
    assert res["description"] == "FY budget"
    assert res["organization_id"] == world.acme_id
    assert res["closed_at"] is None
    assert res["opened_at"] is None


def test_create_defaults_to_simple_majority(secretary, world):
    res = create_resolution(secretary, world.meeting_id)
    assert res["voting_type"] == "simple_majority"
    assert res["quorum_required"] == 0


def test_create_validation(secretary, world):
    r = secretary.post(
        "/api/resolutions",
        json={"meeting_id": world.meeting_id, "title": "ab", "voting_type": "plurality", "quorum_required": -1},
    )
    assert r.status_code == 400
    assert r.json["kind"] == "validation_failed"
    assert set(r.json["details"]) == {"title", "voting_type", "quorum_required"}

    r = secretary.post("/api/resolutions", json={"title": "No meeting given"})
    assert r.status_code == 400
    assert "meeting_id" in r.json["details"]

    r = secretary.post("/api/resolutions", json={"meeting_id": world.meeting_id, "title": "Open", "status": "open"})
    assert r.status_code == 400
    assert "status" in r.json["details"]

    r = secretary.post("/api/resolutions", data="not json", content_type="application/json")
    assert r.status_code == 400


def test_create_in_other_org_meeting_is_not_found(secretary, world):
    r = secretary.post("/api/resolutions", json={"meeting_id": world.other_meeting_id, "title": "Sneaky"})
    assert r.status_code == 404


def test_create_requires_permission(login, world):
    alice = login("alice@acme.test")
    r = alice.post("/api/resolutions", json={"meeting_id": world.meeting_id, "title": "From a member"})
    assert r.status_code == 403
    assert r.json["missing_permission"] == "resolutions.create"


def test_list_by_meeting_includes_vote_summary(secretary, login, world):
    res = open_resolution(secretary, world.meeting_id)
    create_resolution(secretary, world.meeting_id, title="Second item")
    assert cast(login("alice@acme.test"), res["id"], "approve").status_code == 200

    r = secretary.get(f"/api/resolutions?meeting_id={world.meeting_id}")
    assert r.status_code == 200
    items = {item["id"]: item for item in r.json["resolutions"]}
    assert len(items) == 2
    assert items[res["id"]]["vote_summary"]["approve"] == 1
    assert items[res["id"]]["vote_summary"]["result"] == "passed"

    assert secretary.get("/api/resolutions").status_code == 400
    assert secretary.get(f"/api/resolutions?meeting_id={world.other_meeting_id}").status_code == 404


def test_open_then_close_passes(secretary, login, world):
    res = open_resolution(secretary, world.meeting_id)
    assert res["status"] == "open"
    assert res["opened_at"] is not None

    assert cast(login("alice@acme.test"), res["id"], "approve").status_code == 200
    assert cast(login("bob@acme.test"), res["id"], "approve").status_code == 200
    assert cast(login("carol@acme.test"), res["id"], "reject").status_code == 200

    r = secretary.post(f"/api/resolutions/{res['id']}/close")
    assert r.status_code == 200
    assert r.json["resolution"]["status"] == "passed"
    assert r.json["resolution"]["closed_at"] is not None
    assert r.json["vote_summary"] == {
        "approve": 2,
        "reject": 1,
        "abstain": 0,
        "total": 3,
        "result": "passed",
        "quorum_required": 0,
        "quorum_met": True,
        "recorded_result": "passed",
    }

    with session_scope(secretary.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "resolution.close").one()
        meta = json.loads(ev.metadata_json)
        assert meta["to"] == "passed"
        assert meta["summary"]["approve"] == 2
        assert ev.actor_user_email == "secretary@acme.test"


def test_close_with_no_votes_fails(secretary, world):
    for voting_type in ("simple_majority", "two_thirds", "unanimous"):
        res = open_resolution(secretary, world.meeting_id, voting_type=voting_type)
        r = secretary.post(f"/api/resolutions/{res['id']}/close")
        assert r.status_code == 200
        assert r.json["resolution"]["status"] == "failed"


def test_close_unanimous_with_one_reject_fails(secretary, login, world):
    res = open_resolution(secretary, world.meeting_id, voting_type="unanimous")
    cast(login("alice@acme.test"), res["id"], "approve")
    cast(login("bob@acme.test"), res["id"], "approve")
    cast(login("carol@acme.test"), res["id"], "reject")
    r = secretary.post(f"/api/resolutions/{res['id']}/close")
    assert r.json["resolution"]["status"] == "failed"


def test_invalid_transitions(secretary, world):
    res = create_resolution(secretary, world.meeting_id)
    rid = res["id"]

    r = secretary.post(f"/api/resolutions/{rid}/close")
    assert r.status_code == 409
    assert r.json["kind"] == "invalid_state_transition"
    assert r.json["current"] == "draft"
    assert r.json["requested"] == "close"

    assert secretary.post(f"/api/resolutions/{rid}/open").status_code == 200
    r = secretary.post(f"/api/resolutions/{rid}/open")
    assert r.status_code == 409
    assert r.json["current"] == "open"

    assert secretary.post(f"/api/resolutions/{rid}/close").status_code == 200
    r = secretary.post(f"/api/resolutions/{rid}/close")
    assert r.status_code == 409
    assert r.json["current"] == "failed"

    r = secretary.post(f"/api/resolutions/{rid}/open")
    assert r.status_code == 409


def test_closed_resolution_is_immutable(secretary, world):
    res = open_resolution(secretary, world.meeting_id)
    rid = res["id"]
    secretary.post(f"/api/resolutions/{rid}/close")

    r = secretary.patch(f"/api/resolutions/{rid}", json={"title": "Rewritten history"})
    assert r.status_code == 409
    r = secretary.delete(f"/api/resolutions/{rid}")
    assert r.status_code == 409

    detail = secretary.get(f"/api/resolutions/{rid}").json["resolution"]
    assert detail["title"] == "Approve the annual budget"
    assert detail["status"] == "failed"


def test_update_rules(secretary, world):
    res = create_resolution(secretary, world.meeting_id)
    rid = res["id"]

    r = secretary.patch(f"/api/resolutions/{rid}", json={"voting_type": "unanimous", "quorum_required": 3})
    assert r.status_code == 200
    assert r.json["resolution"]["voting_type"] == "unanimous"
    assert r.json["resolution"]["quorum_required"] == 3

    r = secretary.patch(f"/api/resolutions/{rid}", json={"status": "passed"})
    assert r.status_code == 400
    assert "status" in r.json["details"]

    r = secretary.patch(f"/api/resolutions/{rid}", json={})
    assert r.status_code == 400

    secretary.post(f"/api/resolutions/{rid}/open")
    r = secretary.patch(f"/api/resolutions/{rid}", json={"title": "Approve the revised budget"})
    assert r.status_code == 200
    assert r.json["resolution"]["title"] == "Approve the revised budget"

    r = secretary.patch(f"/api/resolutions/{rid}", json={"voting_type": "simple_majority"})
    assert r.status_code == 409
    assert r.json["requested"] == "change voting rules of"


def test_delete_only_while_draft(secretary, world):
    res = create_resolution(secretary, world.meeting_id)
    rid = res["id"]
    r = secretary.delete(f"/api/resolutions/{rid}")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert secretary.get(f"/api/resolutions/{rid}").status_code == 404

    res = open_resolution(secretary, world.meeting_id)
    r = secretary.delete(f"/api/resolutions/{res['id']}")
    assert r.status_code == 409
    assert r.json["current"] == "open"


def test_other_organization_sees_not_found(secretary, login, world):
    res = open_resolution(secretary, world.meeting_id)
    rid = res["id"]
    outsider = login("secretary@globex.test")

    assert outsider.get(f"/api/resolutions/{rid}").status_code == 404
    assert outsider.get(f"/api/resolutions/{rid}/votes").status_code == 404
    assert outsider.post(f"/api/resolutions/{rid}/close").status_code == 404
    assert outsider.patch(f"/api/resolutions/{rid}", json={"title": "Hijacked"}).status_code == 404
    assert cast(outsider, rid, "approve", board_member_id=world.erin).status_code == 404

    # Same body as a resolution that does not exist at all.
    missing = outsider.get("/api/resolutions/999999")
    assert outsider.get(f"/api/resolutions/{rid}").json == missing.json

    with session_scope(secretary.application) as s:
        assert s.get(Resolution, rid).status == "open"


def test_closed_at_tracks_terminal_status(secretary, world):
    draft = create_resolution(secretary, world.meeting_id)
    opened = open_resolution(secretary, world.meeting_id)
    closed = open_resolution(secretary, world.meeting_id)
    secretary.post(f"/api/resolutions/{closed['id']}/close")

    with session_scope(secretary.application) as s:
        for rid in (draft["id"], opened["id"], closed["id"]):
            r = s.get(Resolution, rid)
            assert (r.closed_at is not None) == (r.status in ("passed", "failed"))
