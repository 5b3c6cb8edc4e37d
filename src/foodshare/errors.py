"""Error taxonomy shared by the service layer and the HTTP surface.

Each error carries the HTTP status it is rendered with, so the API needs a
single exception handler instead of translating errors route by route.
"""

from typing import Any, Dict


class FoodShareError(Exception):
    """Base class for errors reported to API callers."""

    status_code = 500
    default_detail = "Server error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail}


class ValidationError(FoodShareError):
    """Missing or malformed input."""

    status_code = 400
    default_detail = "Invalid request"


class AuthorizationError(FoodShareError):
    """Absent, invalid or stale credentials.

    The detail never says which check failed.
    """

    status_code = 401
    default_detail = "Not authorized"


class ForbiddenError(AuthorizationError):
    """Authenticated, but the role or ownership does not permit the action."""

    status_code = 403
    default_detail = "Forbidden"


class NotFoundError(FoodShareError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(FoodShareError):
    """Request is well formed but conflicts with the stored state."""

    status_code = 409
    default_detail = "Conflict"

    def __init__(self, detail: str | None = None, reason: str | None = None) -> None:
        super().__init__(detail)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.reason:
            body["reason"] = self.reason
        return body


class StorageError(FoodShareError):
    """Persistence layer failure, reported without internals."""

    status_code = 500
    default_detail = "Database error"
