"""
Review workflow errors.

Every error a caller can see maps to exactly one HTTP status code. Validation
errors (BadRequest, Unauthorized, Forbidden, NotFound, Conflict) are raised
before any mutation. StoreFailure wraps backing-store errors on the primary
write path.
"""

from __future__ import annotations


class ReviewWorkflowError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_message: str = "Server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(ReviewWorkflowError):
    status_code = 400
    default_message = "Bad request"


class Unauthorized(ReviewWorkflowError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ReviewWorkflowError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ReviewWorkflowError):
    status_code = 404
    default_message = "Not found"


class Conflict(ReviewWorkflowError):
    status_code = 409
    default_message = "Conflict"


class StoreFailure(ReviewWorkflowError):
    status_code = 500
    default_message = "Backing store failure"
