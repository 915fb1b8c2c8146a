import time

from sqlalchemy import update
from sqlalchemy.orm import Session

from umbrax.models import TimeRequest
from umbrax.time_tracking import TIME_REQUEST_TTL_SECONDS


def _ask(client, subject_id, notes=None):
    body = {"subjectUserId": subject_id}
    if notes is not None:
        body["notes"] = notes
    return client.post("/api/admin/time-requests", json=body)


def test_cupula_creates_pending_request(client, make_user, login_as):
    make_user("Boss", 2)
    member = make_user("Member", 7)
    login_as("Boss")

    before = int(time.time())
    res = _ask(client, member, notes="door duty")
    assert res.status_code == 200, res.text
    tr = res.json()["timeRequest"]
    assert tr["status"] == "PENDING"
    assert tr["notes"] == "door duty"
    assert tr["subjectUser"]["habboName"] == "Member"
    assert tr["createdBy"]["habboName"] == "Boss"
    assert tr["respondedBy"] is None
    assert before + TIME_REQUEST_TTL_SECONDS <= tr["expiresAt"] <= int(time.time()) + TIME_REQUEST_TTL_SECONDS


def test_second_pending_request_is_refused(client, make_user, login_as):
    make_user("Boss", 1)
    member = make_user("Member", 6)
    login_as("Boss")

    assert _ask(client, member).status_code == 200
    res = _ask(client, member)
    assert res.status_code == 400
    assert "pending" in res.json()["error"]


def test_expired_request_does_not_block_a_new_one(client, engine, make_user, login_as):
    make_user("Boss", 1)
    member = make_user("Member", 6)
    login_as("Boss")
    assert _ask(client, member).status_code == 200

    with Session(engine) as s:
        s.execute(update(TimeRequest).values(expires_at=int(time.time()) - 1))
        s.commit()

    assert _ask(client, member).status_code == 200


def test_only_subordinates_can_be_asked(client, make_user, login_as):
    make_user("Boss", 1)
    watcher = make_user("Watcher", 4)
    login_as("Boss")

    res = _ask(client, watcher)
    assert res.status_code == 400


def test_sovereign_only_asks_own_rank(client, make_user, login_as):
    make_user("King", 6, is_sovereign=True)
    same = make_user("Same", 6)
    other = make_user("Other", 8)
    login_as("King")

    assert _ask(client, same).status_code == 200
    assert _ask(client, other).status_code == 403


def test_plain_member_cannot_create(client, make_user, login_as):
    make_user("Member", 7)
    target = make_user("Target", 7)
    login_as("Member")
    assert _ask(client, target).status_code == 403


def test_create_unknown_subject_is_404(client, make_user, login_as):
    make_user("Boss", 1)
    login_as("Boss")
    res = _ask(client, "00000000-0000-4000-8000-000000000000")
    assert res.status_code == 404


def test_create_rejects_bad_subject_id(client, make_user, login_as):
    make_user("Boss", 1)
    login_as("Boss")
    res = _ask(client, "not-a-uuid")
    assert res.status_code == 400
    assert "subjectUserId" in res.json()["details"]


def test_create_without_session_is_401(client):
    res = _ask(client, "00000000-0000-4000-8000-000000000000")
    assert res.status_code == 401


def test_subject_approves_request(client, make_user, login_as):
    make_user("Boss", 1)
    member = make_user("Member", 7)
    login_as("Boss")
    req_id = _ask(client, member).json()["timeRequest"]["id"]

    login_as("Member")
    res = client.patch(f"/api/admin/time-requests/{req_id}", json={"action": "approve", "responseNotes": "on it"})
    assert res.status_code == 200, res.text
    tr = res.json()["timeRequest"]
    assert tr["status"] == "APPROVED"
    assert tr["responseNotes"] == "on it"
    assert tr["respondedBy"]["habboName"] == "Member"
    assert isinstance(tr["respondedAt"], int)

    again = client.patch(f"/api/admin/time-requests/{req_id}", json={"action": "reject"})
    assert again.status_code == 400


def test_only_subject_can_answer(client, make_user, login_as):
    make_user("Boss", 1)
    member = make_user("Member", 7)
    login_as("Boss")
    req_id = _ask(client, member).json()["timeRequest"]["id"]

    res = client.patch(f"/api/admin/time-requests/{req_id}", json={"action": "reject"})
    assert res.status_code == 403


def test_answering_a_lapsed_request_marks_it_expired(client, engine, make_user, login_as):
    make_user("Boss", 1)
    member = make_user("Member", 7)
    login_as("Boss")
    req_id = _ask(client, member).json()["timeRequest"]["id"]

    with Session(engine) as s:
        s.execute(update(TimeRequest).values(expires_at=int(time.time()) - 5))
        s.commit()

    login_as("Member")
    res = client.patch(f"/api/admin/time-requests/{req_id}", json={"action": "approve"})
    assert res.status_code == 400
    with Session(engine) as s:
        assert s.get(TimeRequest, req_id).status == "EXPIRED"


def test_answer_validation_and_unknown_id(client, make_user, login_as):
    make_user("Member", 7)
    login_as("Member")
    assert client.patch("/api/admin/time-requests/nope", json={"action": "maybe"}).status_code == 400
    assert client.patch("/api/admin/time-requests/nope", json={"action": "reject"}).status_code == 404


def test_listing_is_scoped_by_role(client, make_user, login_as):
    make_user("Boss", 1)
    make_user("King", 6, is_sovereign=True)
    a = make_user("Alpha", 6)
    b = make_user("Beta", 8)

    login_as("Boss")
    assert _ask(client, a).status_code == 200
    assert _ask(client, b).status_code == 200
    assert len(client.get("/api/admin/time-requests").json()["timeRequests"]) == 2

    login_as("King")
    names = [tr["subjectUser"]["habboName"] for tr in client.get("/api/admin/time-requests").json()["timeRequests"]]
    assert names == ["Alpha"]

    login_as("Beta")
    names = [tr["subjectUser"]["habboName"] for tr in client.get("/api/admin/time-requests").json()["timeRequests"]]
    assert names == ["Beta"]


def test_listing_filters(client, engine, make_user, login_as):
    make_user("Boss", 1)
    a = make_user("Alpha", 6)
    b = make_user("Beta", 8)
    login_as("Boss")
    lapsed = _ask(client, a).json()["timeRequest"]["id"]
    with Session(engine) as s:
        s.execute(update(TimeRequest).where(TimeRequest.id == lapsed).values(expires_at=int(time.time()) - 5))
        s.commit()
    live = _ask(client, b).json()["timeRequest"]["id"]

    pending = client.get("/api/admin/time-requests", params={"onlyPending": "true"}).json()["timeRequests"]
    assert [tr["id"] for tr in pending] == [live]

    by_status = client.get("/api/admin/time-requests", params={"status": "pending"}).json()["timeRequests"]
    assert {tr["id"] for tr in by_status} == {lapsed, live}

    assert client.get("/api/admin/time-requests", params={"status": "LOST"}).status_code == 400


def test_listing_without_session_is_401(client):
    assert client.get("/api/admin/time-requests").status_code == 401
