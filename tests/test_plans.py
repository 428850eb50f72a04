from conftest import auth, make_user, make_workplace
from schedule_api.extensions import db
from schedule_api.models.notification import Notification
from schedule_api.models.org import Org
from schedule_api.models.plan import Plan, Slot, SlotStatus


def _plan(client, who, name="March roster", start="2025-03-01T00:00:00", end="2025-03-31T23:59:59"):
    return client.post("/api/v1/plans", json={"name": name, "starts_at": start, "ends_at": end}, headers=auth(who))


def _slot(user, wp, start="2025-03-03T08:00:00", end="2025-03-07T18:00:00", **extra):
    body = {"user_id": user.id, "workplace_id": wp.id, "date_start": start, "date_end": end}
    body.update(extra)
    return body


def _bulk(client, who, plan_id, *slots):
    return client.post(f"/api/v1/plans/{plan_id}/slots/bulk-assign", json={"slots": list(slots)}, headers=auth(who))


# ---------- plan lifecycle ----------

def test_plan_lifecycle(client, manager):
    r = _plan(client, manager)
    assert r.status_code == 201
    p = r.get_json()["data"]
    assert p["status"] == "DRAFT"
    assert p["org_id"] == manager.org_id

    r = client.patch(f"/api/v1/plans/{p['id']}/publish", headers=auth(manager))
    assert r.get_json()["data"]["status"] == "PUBLISHED"
    # publishing twice is a no-op
    assert client.patch(f"/api/v1/plans/{p['id']}/publish", headers=auth(manager)).status_code == 200

    r = client.delete(f"/api/v1/plans/{p['id']}", headers=auth(manager))
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "PLAN_NOT_DRAFT"

    assert client.patch(f"/api/v1/plans/{p['id']}/archive", headers=auth(manager)).status_code == 200
    r = client.patch(f"/api/v1/plans/{p['id']}/publish", headers=auth(manager))
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "PLAN_ARCHIVED"

    lst = client.get("/api/v1/plans?status=archived", headers=auth(manager)).get_json()
    assert lst["meta"]["total"] == 1
    assert lst["data"][0]["slots_count"] == 0


def test_plan_validation(client, manager):
    assert _plan(client, manager, name=" ").status_code == 422
    assert _plan(client, manager, start="2025-03-10T00:00:00", end="2025-03-01T00:00:00").status_code == 422
    assert _plan(client, manager, end=None).status_code == 422


def test_draft_plan_is_deleted_with_its_slots(client, manager, employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    _bulk(client, manager, pid, _slot(employee, workplace))
    r = client.delete(f"/api/v1/plans/{pid}", headers=auth(manager))
    assert r.status_code == 200
    assert Plan.query.count() == 0
    assert Slot.query.count() == 0


def test_other_org_plan_is_invisible(client, manager):
    far = Org(name="Far", slug="far"); db.session.add(far); db.session.commit()
    stranger = make_user(far, "boss@far.test", role="MANAGER")
    pid = _plan(client, stranger).get_json()["data"]["id"]
    assert client.get(f"/api/v1/plans/{pid}", headers=auth(manager)).status_code == 404


def test_employee_cannot_manage_plans(client, employee):
    assert _plan(client, employee).status_code == 403
    assert client.get("/api/v1/plans", headers=auth(employee)).status_code == 403


# ---------- slots ----------

def test_bulk_assign_creates_slots_and_notifies(client, manager, employee, other_employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    r = _bulk(client, manager, pid, _slot(employee, workplace), _slot(other_employee, workplace, note="cover"))
    assert r.status_code == 201
    slots = r.get_json()["data"]
    assert [s["status"] for s in slots] == ["PLANNED", "PLANNED"]
    # falls back to the workplace colour
    assert slots[0]["color_code"] == "#4f46e5"
    assert slots[1]["note"] == "cover"
    assert Notification.query.filter_by(user_id=employee.id, type="ASSIGNMENT_CREATED").count() == 1

    r = client.get(f"/api/v1/plans/{pid}?size=1", headers=auth(manager))
    body = r.get_json()
    assert body["data"]["plan"]["id"] == pid
    assert len(body["data"]["slots"]) == 1
    assert body["meta"]["total"] == 2


def test_bulk_assign_is_all_or_nothing(client, manager, employee, workplace):
    far = Org(name="Far", slug="far"); db.session.add(far); db.session.commit()
    stranger = make_user(far, "x@far.test")
    pid = _plan(client, manager).get_json()["data"]["id"]

    r = _bulk(client, manager, pid, _slot(employee, workplace), _slot(stranger, workplace))
    assert r.status_code == 404
    assert Slot.query.count() == 0

    r = _bulk(client, manager, pid, _slot(employee, workplace, start="2025-03-09T00:00:00", end="2025-03-08T00:00:00"))
    assert r.status_code == 422
    r = _bulk(client, manager, pid, _slot(employee, workplace, status="LOST"))
    assert r.status_code == 422
    assert client.post(f"/api/v1/plans/{pid}/slots/bulk-assign", json={"slots": []},
                       headers=auth(manager)).status_code == 422


def test_archived_plan_rejects_slot_changes(client, manager, employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    client.patch(f"/api/v1/plans/{pid}/archive", headers=auth(manager))
    r = _bulk(client, manager, pid, _slot(employee, workplace))
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "PLAN_ARCHIVED"


def test_locked_slot_keeps_its_place(client, manager, employee, other_employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    sid = _bulk(client, manager, pid, _slot(employee, workplace, locked=True)).get_json()["data"][0]["id"]

    r = client.patch(f"/api/v1/plans/{pid}/slots/{sid}", json={"date_end": "2025-03-08T18:00:00"},
                     headers=auth(manager))
    assert r.status_code == 403
    assert r.get_json()["error"]["code"] == "SLOT_LOCKED"

    r = client.patch(f"/api/v1/plans/{pid}/slots/bulk-move",
                     json={"slot_ids": [sid], "new_user_id": other_employee.id}, headers=auth(manager))
    assert r.status_code == 403
    assert client.delete(f"/api/v1/plans/{pid}/slots/{sid}", headers=auth(manager)).status_code == 403

    # non-placement fields stay editable
    r = client.patch(f"/api/v1/plans/{pid}/slots/{sid}", json={"note": "bring keys", "locked": False},
                     headers=auth(manager))
    assert r.status_code == 200
    assert r.get_json()["data"]["note"] == "bring keys"
    assert client.delete(f"/api/v1/plans/{pid}/slots/{sid}", headers=auth(manager)).status_code == 200
    assert Slot.query.count() == 0


def test_bulk_move_shifts_dates_and_people(client, manager, employee, other_employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    ids = [s["id"] for s in _bulk(client, manager, pid, _slot(employee, workplace)).get_json()["data"]]

    r = client.patch(f"/api/v1/plans/{pid}/slots/bulk-move", json={"slot_ids": ids}, headers=auth(manager))
    assert r.status_code == 422

    r = client.patch(f"/api/v1/plans/{pid}/slots/bulk-move", json={"slot_ids": ids + [9999],
                     "new_date_start": "2025-03-04T08:00:00"}, headers=auth(manager))
    assert r.status_code == 404

    r = client.patch(f"/api/v1/plans/{pid}/slots/bulk-move", json={
        "slot_ids": ids, "new_date_start": "2025-03-10T08:00:00", "new_date_end": "2025-03-12T18:00:00",
        "new_user_id": other_employee.id,
    }, headers=auth(manager))
    assert r.status_code == 200
    moved = r.get_json()["data"][0]
    assert moved["user_id"] == other_employee.id
    assert moved["date_start"] == "2025-03-10T08:00:00"
    assert Notification.query.filter_by(user_id=other_employee.id, type="ASSIGNMENT_MOVED").count() == 1


def test_auto_assign_respects_load_and_constraints(client, manager, employee, other_employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    _bulk(client, manager, pid, _slot(employee, workplace))
    r = client.post("/api/v1/plans/constraints", json={
        "type": "WORKPLACE_BLACKLIST", "user_id": manager.id, "payload": {"workplace_ids": [workplace.id]},
    }, headers=auth(manager))
    assert r.status_code == 201

    body = {"workplace_id": workplace.id, "team_size": 1,
            "date_start": "2025-03-04T08:00:00", "date_end": "2025-03-05T18:00:00"}
    r = client.post(f"/api/v1/plans/{pid}/slots/auto-assign", json=body, headers=auth(manager))
    assert r.status_code == 201
    assert [s["user_id"] for s in r.get_json()["data"]] == [other_employee.id]

    # everybody is now busy or excluded
    r = client.post(f"/api/v1/plans/{pid}/slots/auto-assign", json=body, headers=auth(manager))
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "NOT_ENOUGH_EMPLOYEES"

    body["respect_constraints"] = False
    r = client.post(f"/api/v1/plans/{pid}/slots/auto-assign", json=body, headers=auth(manager))
    assert [s["user_id"] for s in r.get_json()["data"]] == [manager.id]


def test_auto_assign_validation(client, manager, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    base = {"workplace_id": workplace.id, "date_start": "2025-03-04T08:00:00", "date_end": "2025-03-05T18:00:00"}
    for extra in ({"team_size": 0}, {"team_size": 101}, {"team_size": 1, "date_start": "2025-05-01T00:00:00",
                                                           "date_end": "2025-05-02T00:00:00"}):
        r = client.post(f"/api/v1/plans/{pid}/slots/auto-assign", json=dict(base, **extra), headers=auth(manager))
        assert r.status_code == 422


def test_constraint_payloads_are_checked(client, manager, employee):
    r = client.post("/api/v1/plans/constraints", json={"type": "MAX_SLOTS_PER_WEEK", "payload": {"limit": 0}},
                    headers=auth(manager))
    assert r.status_code == 422
    r = client.post("/api/v1/plans/constraints", json={"type": "NAP", "payload": {}}, headers=auth(manager))
    assert r.status_code == 422

    r = client.post("/api/v1/plans/constraints", json={
        "type": "availability", "user_id": employee.id,
        "payload": {"unavailable": [{"from": "2025-03-01T00:00:00", "to": "2025-03-02T00:00:00"}]},
    }, headers=auth(manager))
    assert r.status_code == 201
    cid = r.get_json()["data"]["id"]

    r = client.post("/api/v1/plans/constraints", json={"id": cid, "type": "MAX_SLOTS_PER_WEEK",
                                                       "payload": {"limit": 2}}, headers=auth(manager))
    assert r.status_code == 200
    lst = client.get("/api/v1/plans/constraints", headers=auth(manager)).get_json()["data"]
    assert [(c["type"], c["payload"], c["user_id"]) for c in lst] == [("MAX_SLOTS_PER_WEEK", {"limit": 2}, None)]


# ---------- employee side ----------

def test_employee_confirms_own_slot_and_sees_it(client, manager, employee, other_employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    sid = _bulk(client, manager, pid, _slot(employee, workplace)).get_json()["data"][0]["id"]

    assert client.patch(f"/api/v1/me/slots/{sid}/confirm", headers=auth(other_employee)).status_code == 404

    r = client.patch(f"/api/v1/me/slots/{sid}/confirm", headers=auth(employee))
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "CONFIRMED"
    assert Notification.query.filter_by(user_id=manager.id, type="ASSIGNMENT_UPDATED").count() == 1

    r = client.get("/api/v1/me/schedule?from=2025-03-01&to=2025-03-31", headers=auth(employee))
    slots = r.get_json()["data"]["plan_slots"]
    assert [s["id"] for s in slots] == [sid]
    assert slots[0]["plan"]["name"] == "March roster"

    # archived plans drop out of the personal view
    client.patch(f"/api/v1/plans/{pid}/archive", headers=auth(manager))
    r = client.get("/api/v1/me/schedule?from=2025-03-01&to=2025-03-31", headers=auth(employee))
    assert r.get_json()["data"]["plan_slots"] == []


def test_cancelled_slot_cannot_be_confirmed_or_swapped(client, manager, employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    sid = _bulk(client, manager, pid, _slot(employee, workplace, status="CANCELLED")).get_json()["data"][0]["id"]

    r = client.patch(f"/api/v1/me/slots/{sid}/confirm", headers=auth(employee))
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "SLOT_CANCELLED"
    r = client.post(f"/api/v1/me/slots/{sid}/request-swap", json={"comment": "sick"}, headers=auth(employee))
    assert r.status_code == 422
    assert db.session.get(Slot, sid).status == SlotStatus.CANCELLED


def test_swap_request_marks_slot_replaced(client, manager, employee, workplace):
    pid = _plan(client, manager).get_json()["data"]["id"]
    sid = _bulk(client, manager, pid, _slot(employee, workplace, note="morning")).get_json()["data"][0]["id"]

    assert client.post(f"/api/v1/me/slots/{sid}/request-swap", json={"comment": " "},
                       headers=auth(employee)).status_code == 422
    assert client.post(f"/api/v1/me/slots/{sid}/request-swap", json={"comment": "x" * 501},
                       headers=auth(employee)).status_code == 422

    r = client.post(f"/api/v1/me/slots/{sid}/request-swap", json={"comment": "Family event"}, headers=auth(employee))
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["status"] == "REPLACED"
    first, second = data["note"].split("\n")
    assert first == "morning"
    assert second.startswith("[swap] ") and second.endswith("Family event")

    n = Notification.query.filter_by(user_id=manager.id).order_by(Notification.id.desc()).first()
    assert n.payload["comment"] == "Family event"
    assert n.payload["requested_by"] == employee.id


def test_slot_workplace_must_be_active(client, manager, employee, org):
    closed = make_workplace(org, "OLD", "Closed site")
    closed.is_active = False
    db.session.commit()
    pid = _plan(client, manager).get_json()["data"]["id"]
    assert _bulk(client, manager, pid, _slot(employee, closed)).status_code == 422
    assert Slot.query.count() == 0
