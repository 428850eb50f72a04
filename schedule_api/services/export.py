# schedule_api/services/export.py
from __future__ import annotations

from datetime import date, datetime, timedelta
from io import BytesIO
from typing import Iterable, List

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font

from schedule_api.models.assignment import AssignmentStatus

STATUS_LABELS = {
    AssignmentStatus.ACTIVE: "Active",
    AssignmentStatus.ARCHIVED: "Archived",
}


def _fmt_day(d: date) -> str:
    return d.strftime("%d.%m.%Y")


def _fmt_time(dt) -> str:
    return dt.strftime("%H:%M") if dt is not None else ""


def day_keys(d_from: date, d_to: date) -> List[date]:
    out = []
    cur = d_from
    while cur <= d_to:
        out.append(cur)
        cur += timedelta(days=1)
    return out


def shift_cell_lines(a, d_from: date, d_to: date) -> dict:
    """date -> cell text; several shifts on one day are newline-joined."""
    cells = {}
    label = STATUS_LABELS.get(a.status, a.status)
    for s in a.shifts:
        day = s.date or (s.starts_at.date() if s.starts_at else None)
        if day is None or day < d_from or day > d_to:
            continue
        start, end = _fmt_time(s.starts_at), _fmt_time(s.ends_at)
        if not start and not end:
            continue
        line = f"{start}–{end} ({label})"
        cells[day] = f"{cells[day]}\n{line}" if day in cells else line
    return cells


def _workbook_bytes(wb: Workbook) -> bytes:
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def planner_workbook(assignments: Iterable, d_from: date, d_to: date) -> bytes:
    """
    Row 1: "Period: dd.mm.yyyy — dd.mm.yyyy" (merged across all columns)
    Row 2: Employee | Workplace | one column per day
    Then one row per assignment; day cells list "HH:MM–HH:MM (Status)".
    """
    days = day_keys(d_from, d_to)
    wb = Workbook()
    ws = wb.active
    ws.title = "Schedule"

    headers = ["Employee", "Workplace"] + [_fmt_day(d) for d in days]
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(headers))
    ws.cell(row=1, column=1, value=f"Period: {_fmt_day(d_from)} — {_fmt_day(d_to)}").font = Font(bold=True)
    ws.append(headers)
    for cell in ws[2]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "A3"

    ws.column_dimensions["A"].width = 40
    ws.column_dimensions["B"].width = 35
    for idx in range(3, len(headers) + 1):
        ws.column_dimensions[ws.cell(row=2, column=idx).column_letter].width = 18

    wrap = Alignment(vertical="top", horizontal="left", wrap_text=True)
    for a in assignments:
        u, w = a.user, a.workplace
        cells = shift_cell_lines(a, d_from, d_to)
        ws.append(
            [u.display_name if u is not None else "", w.label if w is not None else ""]
            + [cells.get(d) for d in days]
        )
        for cell in ws[ws.max_row][2:]:
            cell.alignment = wrap

    return _workbook_bytes(wb)


def trash_workbook(assignments: Iterable) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Trash"
    ws.append(["ID", "Employee", "Email", "Workplace", "Status", "Starts at", "Ends at", "Deleted at", "Shifts"])
    for cell in ws[1]:
        cell.font = Font(bold=True)

    def _dt(v):
        return v.strftime("%Y-%m-%d %H:%M") if isinstance(v, datetime) else ""

    for a in assignments:
        u, w = a.user, a.workplace
        ws.append([
            a.id,
            u.display_name if u is not None else "",
            u.email if u is not None else "",
            w.label if w is not None else "",
            STATUS_LABELS.get(a.status, a.status),
            _dt(a.starts_at),
            _dt(a.ends_at),
            _dt(a.deleted_at),
            len(a.shifts),
        ])
    return _workbook_bytes(wb)
