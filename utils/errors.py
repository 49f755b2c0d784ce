from typing import Optional


class AttendanceError(Exception):
    """Base error for the attendance service.

    Carries the HTTP status the service answers with and the message shown
    in the page banner.
    """
    status_code = 500
    category = "error"
    retryable = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return "Unexpected attendance error"


class AuthRequired(AttendanceError):
    status_code = 401
    category = "auth_required"

    def default_message(self) -> str:
        return "Authentication required"


class PermissionDenied(AttendanceError):
    status_code = 403
    category = "permission_denied"

    def default_message(self) -> str:
        return "Access Denied"


class NotFound(AttendanceError):
    status_code = 404
    category = "not_found"

    def default_message(self) -> str:
        return "Not found"


class InvalidRequest(AttendanceError):
    status_code = 400
    category = "invalid_request"

    def default_message(self) -> str:
        return "Invalid request"


class TransientFetchFailure(AttendanceError):
    status_code = 502
    category = "transient"
    retryable = True

    def __init__(self, message: Optional[str] = None, upstream_status: Optional[int] = None):
        self.upstream_status = upstream_status
        super().__init__(message)

    def default_message(self) -> str:
        return "Failed to reach the attendance service. Please try again."


class PartialBulkFailure(AttendanceError):
    status_code = 207
    category = "partial_bulk_failure"
    retryable = True

    def __init__(self, success_count: int, error_count: int):
        self.success_count = success_count
        self.error_count = error_count
        super().__init__(f"Failed to save {error_count} attendance records")
