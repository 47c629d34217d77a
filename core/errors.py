"""
core/errors.py -- Domain error classes mapped to HTTP responses.

Services and stores raise these; api/main.py has one exception handler that
turns any APIError into the standard ErrorResponse envelope. Route handlers
never build error JSON by hand.

Taxonomy:
  ValidationError       400  malformed field, bad identifier format
  UnauthorizedError     401  bad or missing credentials
  ForbiddenError        403  authenticated, but not the owner
  NotFoundError         404  unknown/expired token or resource
  ConflictError         409  duplicate unique key
  UpstreamFailureError  500  identity provider non-2xx or malformed response
  InternalError         500  store error, random-source failure
  ServiceBusyError      500  connection pool exhausted; safe to retry

5xx errors carry a generic public message. The detailed cause is kept on the
exception (and chained via `raise ... from`) for server-side logging only.

Layer rule: core/ is the kernel. No imports from api/, auth/ or mods/.
"""

from __future__ import annotations


class APIError(Exception):
    """Base class for API errors.

    Attributes:
        code: Machine-readable error code (e.g. "not_found").
        message: Human-readable message returned to the caller.
        status_code: HTTP status code to return.
    """

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class ValidationError(APIError):
    status_code = 400
    code = "validation_error"


class UnauthorizedError(APIError):
    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Authentication required.", code: str | None = None) -> None:
        super().__init__(message, code)


class ForbiddenError(APIError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Access denied.", code: str | None = None) -> None:
        super().__init__(message, code)


class NotFoundError(APIError):
    status_code = 404
    code = "not_found"


class ConflictError(APIError):
    status_code = 409
    code = "conflict"


class UpstreamFailureError(APIError):
    """The identity provider failed or answered with something unusable."""

    status_code = 500
    code = "upstream_error"

    def __init__(self, message: str = "The identity provider could not be reached.", code: str | None = None) -> None:
        super().__init__(message, code)


class InternalError(APIError):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "An unexpected error occurred.", code: str | None = None) -> None:
        super().__init__(message, code)


class ServiceBusyError(InternalError):
    """No database connection became free within the pool timeout.

    Nothing was written; the caller may retry after `retry_after` seconds.
    """

    code = "service_busy"

    def __init__(self, retry_after: int = 1) -> None:
        super().__init__("The server is busy. Please retry shortly.")
        self.retry_after = retry_after
