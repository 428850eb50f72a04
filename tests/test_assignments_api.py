from datetime import datetime

from conftest import auth, make_user
from schedule_api.extensions import db
from schedule_api.models.assignment import Assignment
from schedule_api.models.notification import Notification


def _create(client, who, user, wp, start, end=None, **extra):
    body = {"user_id": user.id, "workplace_id": wp.id, "starts_at": start, "ends_at": end}
    body.update(extra)
    return client.post("/api/v1/assignments", json=body, headers=auth(who))


def test_create_returns_advisory_and_invalidation(client, manager, employee, workplace):
    r = _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00")
    assert r.status_code == 201
    body = r.get_json()
    assert body["data"]["status"] == "ACTIVE"
    assert body["meta"]["advisory"] == {"active_count": 1, "warning": False}
    assert "planner-matrix" in body["meta"]["invalidate"]


def test_overlap_is_rejected_with_conflicting_ids(client, manager, employee, workplace):
    first = _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00")
    first_id = first.get_json()["data"]["id"]

    r = _create(client, manager, employee, workplace, "2025-03-05T08:00:00", "2025-03-20T18:00:00")
    assert r.status_code == 409
    err = r.get_json()["error"]
    assert err["code"] == "ASSIGNMENT_OVERLAP"
    assert err["detail"]["conflicting_ids"] == [first_id]
    assert Assignment.query.count() == 1


def test_back_to_back_is_allowed_and_warns(client, manager, employee, workplace):
    _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00")
    r = _create(client, manager, employee, workplace, "2025-03-10T18:00:00", "2025-03-20T18:00:00")
    assert r.status_code == 201
    # advisory only: two active assignments reach the warning threshold
    assert r.get_json()["meta"]["advisory"] == {"active_count": 2, "warning": True}


def test_open_ended_blocks_later_ranges(client, manager, employee, workplace):
    _create(client, manager, employee, workplace, "2025-03-01T08:00:00", None)
    r = _create(client, manager, employee, workplace, "2026-01-01T08:00:00", "2026-01-02T08:00:00")
    assert r.status_code == 409


def test_archived_and_other_employees_do_not_conflict(client, manager, employee, other_employee, workplace):
    r = _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00",
                status="ARCHIVED")
    assert r.status_code == 201
    assert _create(client, manager, employee, workplace, "2025-03-02T08:00:00", "2025-03-05T18:00:00").status_code == 201
    assert _create(client, manager, other_employee, workplace, "2025-03-02T08:00:00", "2025-03-05T18:00:00").status_code == 201


def test_end_before_start_is_validation_error(client, manager, employee, workplace):
    r = _create(client, manager, employee, workplace, "2025-03-10T08:00:00", "2025-03-01T08:00:00")
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "VALIDATION_ERROR"


def test_employee_cannot_manage_assignments(client, employee, workplace):
    r = _create(client, employee, employee, workplace, "2025-03-01T08:00:00", "2025-03-02T08:00:00")
    assert r.status_code == 403


def test_shifts_accept_clock_times_and_overnight(client, manager, employee, workplace):
    r = _create(client, manager, employee, workplace, "2025-03-01T00:00:00", "2025-03-05T00:00:00", shifts=[
        {"date": "2025-03-01", "starts_at": "09:00", "ends_at": "17:00", "kind": "OFFICE"},
        {"date": "2025-03-02", "starts_at": "22:00", "ends_at": "06:00"},
        {"date": "2025-03-03", "kind": "DAY_OFF"},
    ])
    assert r.status_code == 201
    shifts = r.get_json()["data"]["shifts"]
    assert shifts[0]["kind"] == "OFFICE"
    assert shifts[1]["ends_at"] == "2025-03-03T06:00:00"
    assert shifts[2]["kind"] == "DAY_OFF" and shifts[2]["ends_at"] is None


def test_shift_outside_range_is_rejected(client, manager, employee, workplace):
    r = _create(client, manager, employee, workplace, "2025-03-01T00:00:00", "2025-03-05T00:00:00", shifts=[
        {"date": "2025-03-09", "starts_at": "09:00", "ends_at": "17:00"},
    ])
    assert r.status_code == 422


def test_update_into_overlap_leaves_row_unchanged(client, manager, employee, workplace):
    _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00")
    second = _create(client, manager, employee, workplace, "2025-03-15T08:00:00", "2025-03-20T18:00:00")
    sid = second.get_json()["data"]["id"]

    r = client.patch(f"/api/v1/assignments/{sid}", json={"starts_at": "2025-03-09T08:00:00"},
                     headers=auth(manager))
    assert r.status_code == 409
    assert db.session.get(Assignment, sid).starts_at == datetime(2025, 3, 15, 8)

    # editing itself never conflicts with its own old range
    r = client.patch(f"/api/v1/assignments/{sid}", json={"ends_at": "2025-03-25T18:00:00"},
                     headers=auth(manager))
    assert r.status_code == 200
    assert r.get_json()["data"]["ends_at"] == "2025-03-25T18:00:00"


def test_move_to_other_employee_notifies_both(client, manager, employee, other_employee, workplace):
    a = _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00").get_json()["data"]
    r = client.patch(f"/api/v1/assignments/{a['id']}", json={"user_id": other_employee.id}, headers=auth(manager))
    assert r.status_code == 200

    types_for = lambda u: {n.type for n in Notification.query.filter_by(user_id=u.id)}
    assert "ASSIGNMENT_CANCELLED" in types_for(employee)
    assert types_for(other_employee) == {"ASSIGNMENT_CREATED"}
    # managers of the org get every event
    assert Notification.query.filter_by(user_id=manager.id).count() == 3


def test_complete_closes_open_end(client, manager, employee, workplace):
    a = _create(client, manager, employee, workplace, "2025-03-01T08:00:00", None).get_json()["data"]
    r = client.post(f"/api/v1/assignments/{a['id']}/complete", headers=auth(manager))
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["status"] == "ARCHIVED"
    assert data["ends_at"] is not None


def test_trash_restore_and_purge(client, manager, employee, workplace):
    a = _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00").get_json()["data"]
    assert client.delete(f"/api/v1/assignments/{a['id']}", headers=auth(manager)).status_code == 200

    trash = client.get("/api/v1/assignments/trash", headers=auth(manager)).get_json()
    assert [x["id"] for x in trash["data"]] == [a["id"]]
    # trashed rows free the calendar
    b = _create(client, manager, employee, workplace, "2025-03-05T08:00:00", "2025-03-06T18:00:00")
    assert b.status_code == 201

    r = client.post(f"/api/v1/assignments/{a['id']}/restore", headers=auth(manager))
    assert r.status_code == 409

    client.delete(f"/api/v1/assignments/{b.get_json()['data']['id']}", headers=auth(manager))
    r = client.post(f"/api/v1/assignments/{a['id']}/restore", headers=auth(manager))
    assert r.status_code == 200
    assert r.get_json()["data"]["trashed"] is False

    r = client.post("/api/v1/assignments/trash/delete", json={"ids": [b.get_json()["data"]["id"], a["id"]]},
                    headers=auth(manager))
    # only the row still in trash is removed
    assert r.get_json()["data"] == {"deleted_count": 1}
    assert Assignment.query.count() == 1


def test_active_count_endpoint(client, manager, employee, workplace):
    _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00")
    r = client.get(f"/api/v1/assignments/active-count?user_id={employee.id}", headers=auth(manager))
    assert r.get_json()["data"]["active_count"] == 1


def test_other_org_is_invisible(client, app, manager, workplace):
    from schedule_api.models.org import Org
    far = Org(name="Far", slug="far"); db.session.add(far); db.session.commit()
    stranger = make_user(far, "x@far.test")
    r = _create(client, manager, stranger, workplace, "2025-03-01T08:00:00", "2025-03-02T08:00:00")
    assert r.status_code == 404


def test_current_workplace_for_employee(client, manager, employee, workplace):
    _create(client, manager, employee, workplace, "2020-01-01T00:00:00", None)
    r = client.get("/api/v1/me/current-workplace", headers=auth(employee))
    data = r.get_json()["data"]
    assert data["workplace"]["code"] == "HQ"
    assert len(data["history"]) == 1


def test_non_numeric_ids_are_validation_errors(client, manager, employee, workplace):
    a = _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00").get_json()["data"]
    for body in ({"user_id": "abc"}, {"workplace_id": "hq"}):
        r = client.patch(f"/api/v1/assignments/{a['id']}", json=body, headers=auth(manager))
        assert r.status_code == 422
        assert r.get_json()["error"]["code"] == "VALIDATION_ERROR"

    r = client.post("/api/v1/assignments", json={"user_id": "abc", "workplace_id": workplace.id,
                                                 "starts_at": "2025-04-01T08:00:00"}, headers=auth(manager))
    assert r.status_code == 422


def test_shift_kind_must_be_text(client, manager, employee, workplace):
    r = _create(client, manager, employee, workplace, "2025-03-01T00:00:00", "2025-03-05T00:00:00", shifts=[
        {"date": "2025-03-01", "starts_at": "09:00", "ends_at": "17:00", "kind": 7},
    ])
    assert r.status_code == 422
    assert Assignment.query.count() == 0


def test_narrowing_range_with_kept_shifts_outside_is_rejected(client, manager, employee, workplace):
    a = _create(client, manager, employee, workplace, "2025-03-01T08:00:00", "2025-03-10T18:00:00", shifts=[
        {"date": "2025-03-02", "starts_at": "09:00", "ends_at": "17:00"},
        {"date": "2025-03-08", "starts_at": "09:00", "ends_at": "17:00"},
    ]).get_json()["data"]

    r = client.patch(f"/api/v1/assignments/{a['id']}", json={"ends_at": "2025-03-05T18:00:00"},
                     headers=auth(manager))
    assert r.status_code == 422
    db.session.expire_all()
    kept = db.session.get(Assignment, a["id"])
    assert kept.ends_at == datetime(2025, 3, 10, 18)
    assert len(kept.shifts) == 2

    # replacing the shifts in the same request is fine
    r = client.patch(f"/api/v1/assignments/{a['id']}", json={
        "ends_at": "2025-03-05T18:00:00",
        "shifts": [{"date": "2025-03-02", "starts_at": "09:00", "ends_at": "17:00"}],
    }, headers=auth(manager))
    assert r.status_code == 200
    assert len(r.get_json()["data"]["shifts"]) == 1


def test_current_for_user_end_is_inclusive_and_falls_back_to_open_ended(employee, workplace):
    from schedule_api.services.assignments import current_for_user

    ends = datetime(2025, 3, 10, 18)
    closed = Assignment(user_id=employee.id, workplace_id=workplace.id, status="ACTIVE",
                        starts_at=datetime(2025, 3, 1, 8), ends_at=ends)
    db.session.add(closed); db.session.commit()
    assert current_for_user(employee.id, now=ends).id == closed.id

    upcoming = Assignment(user_id=employee.id, workplace_id=workplace.id, status="ACTIVE",
                          starts_at=datetime(2025, 4, 1, 8), ends_at=None)
    db.session.add(upcoming); db.session.commit()
    assert current_for_user(employee.id, now=datetime(2025, 3, 20)).id == upcoming.id
    assert current_for_user(employee.id, now=datetime(2025, 3, 5)).id == closed.id
