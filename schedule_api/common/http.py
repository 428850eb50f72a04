# schedule_api/common/http.py
from io import BytesIO

from flask import jsonify, send_file

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def ok(data=None, status=200, invalidate=None, **meta):
    """
    Success envelope.

    `invalidate` lists the client cache keys a mutation makes stale
    (e.g. ["assignments", "planner-matrix"]); it is echoed under meta.invalidate.
    """
    payload = {"success": True, "data": data}
    if invalidate:
        meta["invalidate"] = list(invalidate)
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def fail(message="Bad Request", status=400, code=None, detail=None, errors=None):
    err = {"message": message}
    if code: err["code"] = code
    if detail: err["detail"] = detail
    if errors: err["errors"] = errors
    return jsonify({"success": False, "error": err}), status


def send_xlsx(content: bytes, file_name: str):
    return send_file(
        BytesIO(content),
        mimetype=XLSX_MIME,
        as_attachment=True,
        download_name=file_name,
    )


def json_body() -> dict:
    from flask import request
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
