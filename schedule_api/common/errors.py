# schedule_api/common/errors.py
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from schedule_api.common.http import fail


class APIError(Exception):
    """Base API error: carries a machine code, a message and an HTTP status."""
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message, code=None, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload


class ValidationError(APIError):
    """Malformed input (bad dates, end before start, negative hours, ...)."""
    status_code = 422
    code = "VALIDATION_ERROR"


class NotFound(APIError):
    status_code = 404
    code = "NOT_FOUND"


class Forbidden(APIError):
    status_code = 403
    code = "FORBIDDEN"


class OverlapConflict(APIError):
    """Candidate assignment overlaps another ACTIVE assignment of the same employee."""
    status_code = 409
    code = "ASSIGNMENT_OVERLAP"

    def __init__(self, conflicting_ids=(), message="Assignment overlaps an existing active assignment"):
        super().__init__(message, payload={"conflicting_ids": list(conflicting_ids)})
        self.conflicting_ids = list(conflicting_ids)


class AlreadyProcessed(APIError):
    """A decision was attempted on a request that already left PENDING."""
    status_code = 409
    code = "ALREADY_PROCESSED"

    def __init__(self, current_status=None, message="Request has already been processed"):
        super().__init__(message, payload={"status": current_status})
        self.current_status = current_status


def register_error_handlers(app):
    from schedule_api.extensions import db

    @app.errorhandler(APIError)
    def _api_error(e: APIError):
        db.session.rollback()
        return fail(e.message, status=e.status_code, code=e.code, detail=e.payload)

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _integrity(e: IntegrityError):
        db.session.rollback()
        return fail(
            "Duplicate or FK constraint failed",
            status=409,
            code="CONSTRAINT_ERROR",
            detail=str(e.orig) if getattr(e, "orig", None) else None,
        )

    @app.errorhandler(Exception)
    def _500(e: Exception):
        db.session.rollback()
        app.logger.exception(e)
        return fail("Internal server error", status=500)
