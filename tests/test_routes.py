from extensions import db
from models import MonthlyReportSubmission, Notification, User
from utils import clock


def _current_month(app):
    with app.app_context():
        return clock.month_key_of(clock.today())


def test_login_and_me(app, people, login):
    client = login(people["employee"])
    resp = client.get("/users/me")
    assert resp.status_code == 200
    assert resp.get_json()["mentorId"] == people["mentor"]


def test_login_accepts_nip_and_rejects_bad_password(app, people):
    client = app.test_client()
    assert client.post("/users/login", json={"nip": "3001", "password": "secret-pw"}).status_code == 200
    resp = app.test_client().post("/users/login", json={"nip": "3001", "password": "nope"})
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "invalid_credentials"


def test_inactive_user_cannot_login(app, people):
    with app.app_context():
        db.session.get(User, people["solo"]).is_active_user = False
        db.session.commit()
    resp = app.test_client().post("/users/login", json={"nip": "3002", "password": "secret-pw"})
    assert resp.status_code == 403


def test_login_required_returns_json_401(app, people):
    resp = app.test_client().get("/mutabaah/catalog")
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "unauthorized"


def test_catalog(app, people, login):
    data = login(people["employee"]).get("/mutabaah/catalog").get_json()
    assert len(data) == 12
    assert data[0]["id"] == "infaq"
    assert data[0]["entryKind"] == "manual"


def test_activate_and_check_off_current_month(app, people, login):
    client = login(people["employee"])
    month_key = _current_month(app)

    resp = client.put(f"/mutabaah/months/{month_key}/days/1/tadarus", json={"done": True})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "month_not_activated"

    resp = client.post(f"/mutabaah/months/{month_key}/activate")
    assert resp.status_code == 200
    assert resp.get_json()["activatedMonths"] == [month_key]

    resp = client.put(f"/mutabaah/months/{month_key}/days/1/tadarus", json={"done": True})
    assert resp.get_json()["progress"] == {"01": {"tadarus": True}}

    view = client.get(f"/mutabaah/months/{month_key}").get_json()
    assert view["activated"] is True
    assert view["editState"]["editable"] is True
    assert view["submission"] is None
    assert view["weeks"]

    perf = client.get(f"/mutabaah/months/{month_key}/performance").get_json()
    tadarus = [a for c in perf["categories"] for a in c["activities"] if a["activityId"] == "tadarus"][0]
    assert tadarus["achieved"] == 1


def test_domain_errors_map_to_json(app, people, login):
    client = login(people["employee"])

    resp = client.post("/workflow/submissions", json={"monthKey": "2099-01"})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "window_not_open"

    resp = client.get("/mutabaah/months/2026-13")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation_error"

    resp = client.get("/mutabaah/months/2026-01/weeks/9")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"

    resp = client.put("/mutabaah/months/2026-01/days/1/tadarus", json={"done": "yes"})
    assert resp.status_code == 400


def test_manual_entry_routes(app, people, login):
    client = login(people["employee"])
    month_key = _current_month(app)
    today = f"{month_key}-01"

    resp = client.post(f"/mutabaah/months/{month_key}/reports/infaq/entries", json={"date": today, "note": "jumat"})
    assert resp.status_code == 201
    assert resp.get_json()["count"] == 1

    resp = client.post(f"/mutabaah/months/{month_key}/reports/infaq/entries", json={"date": today})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "duplicate_date"

    entries = client.get(f"/mutabaah/months/{month_key}/reports/infaq/entries").get_json()
    assert [e["date"] for e in entries] == [today]


def test_reviewer_routes_are_gated(app, people, login):
    assert login(people["employee"]).get("/workflow/queue").status_code == 403
    assert login(people["mentor"]).get("/workflow/queue").get_json() == []


def test_admin_routes_are_admin_only(app, people, login):
    assert login(people["employee"]).get("/admin/employees").status_code == 403
    resp = login(people["admin"]).get("/admin/employees")
    assert resp.status_code == 200
    assert {"3001", "3002"} <= {u["nip"] for u in resp.get_json()}


def test_relations_patch_notifies(app, people, login):
    client = login(people["admin"])
    resp = client.patch(
        f"/admin/employees/{people['solo']}/relations",
        json={"supervisorId": people["supervisor"]},
    )
    assert resp.status_code == 200
    assert resp.get_json()["supervisorId"] == people["supervisor"]

    with app.app_context():
        assert Notification.query.filter_by(user_id=people["solo"], type="role_assignment").count() == 1
        assert Notification.query.filter_by(user_id=people["supervisor"], type="role_assignment").count() == 1

    resp = client.patch(f"/admin/employees/{people['solo']}/relations", json={"managerId": people["mentor"]})
    assert resp.status_code == 400

    resp = client.patch(f"/admin/employees/{people['solo']}/relations", json={"bossId": 1})
    assert resp.status_code == 400


def test_notifications_mark_read(app, people, login):
    admin = login(people["admin"])
    admin.patch(f"/admin/employees/{people['solo']}/relations", json={"supervisorId": people["supervisor"]})

    client = login(people["solo"])
    unread = client.get("/users/me/notifications?unread=1").get_json()
    assert len(unread) == 1
    resp = client.post(f"/users/me/notifications/{unread[0]['id']}/read")
    assert resp.status_code == 200
    assert client.get("/users/me/notifications?unread=1").get_json() == []


def test_missing_submission_reads_as_null(app, people, login):
    client = login(people["employee"])
    resp = client.get("/workflow/submissions/2026-01")
    assert resp.status_code == 200
    assert resp.get_json() is None

    assert client.get("/workflow/submissions/2026-1").status_code == 400


def test_admin_cannot_change_approved_month(app, people, login):
    emp = people["employee"]
    with app.app_context():
        db.session.add(MonthlyReportSubmission(employee_id=emp, month_key="2025-12", status="approved"))
        db.session.commit()

    client = login(people["admin"])
    resp = client.post(f"/admin/employees/{emp}/reports/2025-12/tadarus/increment")
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "month_locked"
    resp = client.delete(f"/admin/employees/{emp}/reports/2025-12")
    assert resp.status_code == 409
