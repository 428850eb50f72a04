from datetime import date
from decimal import Decimal

import pytest

from conftest import auth
from schedule_api.common.errors import ValidationError
from schedule_api.models.work_report import WorkReport
from schedule_api.services import work_reports


def test_parse_hours():
    assert work_reports.parse_hours("7,5") == Decimal("7.50")
    assert work_reports.parse_hours(0) == Decimal("0.00")
    for bad in ("-1", "abc", "", None, "24.5", "nan"):
        with pytest.raises(ValidationError):
            work_reports.parse_hours(bad)


def test_resubmission_overwrites(app, employee):
    work_reports.upsert(employee.id, "2025-03-03", 8)
    row = work_reports.upsert(employee.id, "2025-03-03", "6.25")
    assert WorkReport.query.count() == 1
    assert float(row.hours) == 6.25


def test_list_by_range(app, employee, other_employee):
    for day, h in (("2025-03-01", 8), ("2025-03-02", 4), ("2025-03-10", 8)):
        work_reports.upsert(employee.id, day, h)
    work_reports.upsert(other_employee.id, "2025-03-02", 5)

    rows = work_reports.list_reports(user_id=employee.id, date_from=date(2025, 3, 1), date_to=date(2025, 3, 5)).all()
    assert [r.date.isoformat() for r in rows] == ["2025-03-01", "2025-03-02"]
    assert work_reports.total_hours(rows) == 12.0


def test_me_work_reports_endpoints(client, employee):
    r = client.post("/api/v1/me/work-reports", json={"date": "2025-03-03", "hours": 7.5}, headers=auth(employee))
    assert r.status_code == 201
    assert r.get_json()["data"]["hours"] == 7.5

    r = client.post("/api/v1/me/work-reports", json={"date": "2025-03-03", "hours": -2}, headers=auth(employee))
    assert r.status_code == 422

    r = client.get("/api/v1/me/work-reports?from=2025-03-01&to=2025-03-31", headers=auth(employee))
    body = r.get_json()
    assert len(body["data"]) == 1
    assert body["meta"]["total_hours"] == 7.5


def test_manager_report_view(client, manager, employee):
    work_reports.upsert(employee.id, "2025-03-03", 8)
    r = client.get(f"/api/v1/reports/work?from=2025-03-01&to=2025-03-31&user_id={employee.id}", headers=auth(manager))
    assert r.status_code == 200
    body = r.get_json()
    assert body["data"][0]["user"]["id"] == employee.id
    assert body["meta"]["total"] == 1

    assert client.get("/api/v1/reports/work", headers=auth(employee)).status_code == 403
