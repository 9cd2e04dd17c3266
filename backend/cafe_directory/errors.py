"""Error taxonomy shared by services and the HTTP layer.

Every error carries a wire ``code`` and an HTTP status. The handlers in
``cafe_directory.main`` render them as ``{"error": {code, message, details?}}``.
"""
from typing import Any, Optional


class APIError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class InvalidArgument(APIError):
    code = "invalid_argument"
    status_code = 400


class Unauthorized(APIError):
    code = "unauthorized"
    status_code = 401


class Forbidden(APIError):
    code = "forbidden"
    status_code = 403


class NotFound(APIError):
    code = "not_found"
    status_code = 404


class Conflict(APIError):
    code = "conflict"
    status_code = 409


class AlreadyExists(APIError):
    code = "already_exists"
    status_code = 409


class ServiceUnavailable(APIError):
    code = "service_unavailable"
    status_code = 503


class UpstreamError(APIError):
    code = "upstream_error"
    status_code = 502


class Internal(APIError):
    code = "internal"
    status_code = 500


class DeadlineExceeded(APIError):
    code = "deadline_exceeded"
    status_code = 504


class Unsupported(InvalidArgument):
    """Submission kinds that are stored but have no apply path."""


class PhotoInvalidError(InvalidArgument):
    def __init__(self, message: str):
        super().__init__(message, {"reason": "invalid"})


class PhotoTooLargeError(InvalidArgument):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, {"reason": "too_large", **(details or {})})


class ObjectNotFoundError(Exception):
    """Raised by object stores when a key does not exist."""

    def __init__(self, key: str):
        super().__init__(f"object {key} not found")
        self.key = key


STATUS_CODES = {
    400: "invalid_argument",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "invalid_argument",
    409: "conflict",
    502: "upstream_error",
    503: "service_unavailable",
    504: "deadline_exceeded",
}


def code_for_status(status_code: int) -> str:
    return STATUS_CODES.get(status_code, "internal" if status_code >= 500 else "invalid_argument")
