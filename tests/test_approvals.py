from datetime import date, datetime

import pytest
from sqlalchemy.orm import Session

from conftest import auth
from schedule_api.common.errors import AlreadyProcessed
from schedule_api.extensions import db
from schedule_api.models.assignment import Assignment, AssignmentShift
from schedule_api.models.requests import AssignmentRequest, ScheduleAdjustmentRequest
from schedule_api.services import approvals


def _assignment(user, wp, start, end, shifts=()):
    a = Assignment(user_id=user.id, workplace_id=wp.id, status="ACTIVE", starts_at=start, ends_at=end)
    for day, s, e in shifts:
        a.shifts.append(AssignmentShift(date=day, starts_at=s, ends_at=e, kind="DEFAULT"))
    db.session.add(a); db.session.commit()
    return a


def _adjustment_body(**extra):
    body = {
        "comment": "Doctor appointment in the morning",
        "proposal": [{"date": "2025-03-03", "starts_at": "12:00", "ends_at": "20:00", "kind": "REMOTE"}],
    }
    body.update(extra)
    return body


# ---------- schedule adjustments ----------

def test_owner_submits_and_manager_approves(client, manager, employee, workplace):
    a = _assignment(employee, workplace, datetime(2025, 3, 1), datetime(2025, 3, 10), shifts=[
        (date(2025, 3, 3), datetime(2025, 3, 3, 9), datetime(2025, 3, 3, 17)),
        (date(2025, 3, 4), datetime(2025, 3, 4, 9), datetime(2025, 3, 4, 17)),
    ])

    r = client.post(f"/api/v1/assignments/{a.id}/adjustments", json=_adjustment_body(), headers=auth(employee))
    assert r.status_code == 201
    req = r.get_json()["data"]
    assert req["status"] == "PENDING"
    assert req["proposal"][0]["starts_at"] == "2025-03-03T12:00:00"
    assert len(req["current_shifts"]) == 2

    r = client.post(f"/api/v1/adjustments/{req['id']}/approve", json={"manager_comment": "ok"}, headers=auth(manager))
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "APPROVED"
    assert "planner-matrix" in r.get_json()["meta"]["invalidate"]

    db.session.expire_all()
    shifts = {s.date: s for s in db.session.get(Assignment, a.id).shifts}
    assert shifts[date(2025, 3, 3)].kind == "REMOTE"
    assert shifts[date(2025, 3, 3)].starts_at == datetime(2025, 3, 3, 12)
    # untouched date keeps its shift
    assert shifts[date(2025, 3, 4)].starts_at == datetime(2025, 3, 4, 9)


def test_second_decision_is_already_processed(client, manager, employee, workplace):
    a = _assignment(employee, workplace, datetime(2025, 3, 1), datetime(2025, 3, 10))
    req = client.post(f"/api/v1/assignments/{a.id}/adjustments", json=_adjustment_body(),
                      headers=auth(employee)).get_json()["data"]

    assert client.post(f"/api/v1/adjustments/{req['id']}/reject", headers=auth(manager)).status_code == 200
    r = client.post(f"/api/v1/adjustments/{req['id']}/approve", headers=auth(manager))
    assert r.status_code == 409
    err = r.get_json()["error"]
    assert err["code"] == "ALREADY_PROCESSED"
    assert err["detail"]["status"] == "REJECTED"
    # rejection did not touch the shifts
    assert db.session.get(Assignment, a.id).shifts == []


def test_claim_pending_only_once(app, manager, employee, workplace):
    a = _assignment(employee, workplace, datetime(2025, 3, 1), datetime(2025, 3, 10))
    req = ScheduleAdjustmentRequest(assignment_id=a.id, user_id=employee.id, proposal=[], comment="x")
    db.session.add(req); db.session.commit()

    approvals.claim_pending(ScheduleAdjustmentRequest, req.id, "APPROVED", manager.id, None)
    db.session.commit()
    with pytest.raises(AlreadyProcessed) as exc:
        approvals.claim_pending(ScheduleAdjustmentRequest, req.id, "REJECTED", manager.id, None)
    assert exc.value.current_status == "APPROVED"


def test_only_owner_can_submit(client, employee, other_employee, workplace):
    a = _assignment(employee, workplace, datetime(2025, 3, 1), datetime(2025, 3, 10))
    r = client.post(f"/api/v1/assignments/{a.id}/adjustments", json=_adjustment_body(), headers=auth(other_employee))
    assert r.status_code == 403


def test_comment_is_required(client, employee, workplace):
    a = _assignment(employee, workplace, datetime(2025, 3, 1), datetime(2025, 3, 10))
    r = client.post(f"/api/v1/assignments/{a.id}/adjustments", json=_adjustment_body(comment="  "),
                    headers=auth(employee))
    assert r.status_code == 422


def test_single_day_form_is_accepted(client, employee, workplace):
    a = _assignment(employee, workplace, datetime(2025, 3, 1), datetime(2025, 3, 10))
    body = {"comment": "swap", "date": "2025-03-05", "starts_at": "10:00", "ends_at": "14:00"}
    r = client.post(f"/api/v1/assignments/{a.id}/adjustments", json=body, headers=auth(employee))
    assert r.status_code == 201
    assert r.get_json()["data"]["proposal"][0]["date"] == "2025-03-05"


# ---------- assignment requests ----------

def _request_body(workplace, start="2025-04-01T08:00:00", end="2025-04-10T18:00:00"):
    return {"workplace_id": workplace.id, "starts_at": start, "ends_at": end, "comment": "please"}


def test_approval_creates_assignment(client, manager, employee, workplace):
    r = client.post("/api/v1/assignment-requests", json=_request_body(workplace), headers=auth(employee))
    assert r.status_code == 201
    rid = r.get_json()["data"]["id"]

    r = client.post(f"/api/v1/assignment-requests/{rid}/approve", json={}, headers=auth(manager))
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["status"] == "APPROVED"
    created = db.session.get(Assignment, data["created_assignment_id"])
    assert created.user_id == employee.id
    assert created.starts_at == datetime(2025, 4, 1, 8)


def test_approval_overrides_range(client, manager, employee, workplace):
    rid = client.post("/api/v1/assignment-requests", json=_request_body(workplace),
                      headers=auth(employee)).get_json()["data"]["id"]
    r = client.post(f"/api/v1/assignment-requests/{rid}/approve",
                    json={"starts_at": "2025-04-02T08:00:00", "ends_at": "2025-04-05T18:00:00"},
                    headers=auth(manager))
    created = db.session.get(Assignment, r.get_json()["data"]["created_assignment_id"])
    assert created.starts_at == datetime(2025, 4, 2, 8)
    assert created.ends_at == datetime(2025, 4, 5, 18)


def test_failed_effect_keeps_request_pending(client, manager, employee, workplace):
    _assignment(employee, workplace, datetime(2025, 4, 5), datetime(2025, 4, 20))
    rid = client.post("/api/v1/assignment-requests", json=_request_body(workplace),
                      headers=auth(employee)).get_json()["data"]["id"]

    r = client.post(f"/api/v1/assignment-requests/{rid}/approve", json={}, headers=auth(manager))
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "ASSIGNMENT_OVERLAP"

    db.session.expire_all()
    req = db.session.get(AssignmentRequest, rid)
    assert req.status == "PENDING"
    assert req.decided_at is None
    assert Assignment.query.count() == 1

    # still decidable afterwards
    r = client.post(f"/api/v1/assignment-requests/{rid}/reject", json={"manager_comment": "busy"},
                    headers=auth(manager))
    assert r.get_json()["data"]["status"] == "REJECTED"


def test_requests_visible_to_employee(client, employee, workplace):
    client.post("/api/v1/assignment-requests", json=_request_body(workplace), headers=auth(employee))
    r = client.get("/api/v1/me/requests", headers=auth(employee))
    data = r.get_json()["data"]
    assert len(data["assignment_requests"]) == 1
    assert data["adjustments"] == []


def test_employee_cannot_decide(client, employee, workplace):
    rid = client.post("/api/v1/assignment-requests", json=_request_body(workplace),
                      headers=auth(employee)).get_json()["data"]["id"]
    assert client.post(f"/api/v1/assignment-requests/{rid}/approve", headers=auth(employee)).status_code == 403


def test_stale_pending_read_cannot_decide_again(app, manager, employee, workplace):
    a = _assignment(employee, workplace, datetime(2025, 3, 1), datetime(2025, 3, 10))
    req = ScheduleAdjustmentRequest(assignment_id=a.id, user_id=employee.id,
                                    proposal=_adjustment_body()["proposal"], comment="x")
    db.session.add(req); db.session.commit()
    req_id, a_id, manager_id = req.id, a.id, manager.id

    stale = db.session.get(ScheduleAdjustmentRequest, req_id)
    assert stale.status == "PENDING"

    # another worker decides and applies the proposal in its own session
    with Session(db.engine) as other:
        other_req = other.get(ScheduleAdjustmentRequest, req_id)
        other_req.status = "APPROVED"
        other_req.decided_by_user_id = manager_id
        approvals.apply_proposal(other.get(Assignment, a_id), other_req.proposal)
        other.commit()

    assert stale.status == "PENDING"
    with pytest.raises(AlreadyProcessed) as exc:
        approvals.decide_adjustment(req_id, "APPROVED", manager)
    assert exc.value.current_status == "APPROVED"

    db.session.expire_all()
    shifts = db.session.get(Assignment, a_id).shifts
    assert [(s.date, s.kind) for s in shifts] == [(date(2025, 3, 3), "REMOTE")]


def test_non_numeric_workplace_in_request_is_validation_error(client, employee, workplace):
    body = _request_body(workplace)
    body["workplace_id"] = "HQ"
    r = client.post("/api/v1/assignment-requests", json=body, headers=auth(employee))
    assert r.status_code == 422


def test_non_numeric_workplace_override_is_validation_error(client, manager, employee, workplace):
    rid = client.post("/api/v1/assignment-requests", json=_request_body(workplace),
                      headers=auth(employee)).get_json()["data"]["id"]
    r = client.post(f"/api/v1/assignment-requests/{rid}/approve", json={"workplace_id": "nope"},
                    headers=auth(manager))
    assert r.status_code == 422
    db.session.expire_all()
    assert db.session.get(AssignmentRequest, rid).status == "PENDING"
