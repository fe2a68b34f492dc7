"""Domain errors raised by the referral lifecycle engine.

Each error carries the HTTP status the API layer maps it to. They are plain
exceptions (not HTTPException) so the engine can be called outside a request.
"""

from fastapi import status


class ReferralError(Exception):
    """Base class for domain errors surfaced to callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ReferralError):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")


class GoneError(ReferralError):
    """Raised when a resource exists but has been retired."""

    status_code = status.HTTP_410_GONE


class ForbiddenError(ReferralError):
    """Raised when the caller may not perform an operation (e.g. self-referral)."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Not authorized to perform this operation"):
        super().__init__(message)


class ConflictError(ReferralError):
    """Raised when an operation conflicts with already-recorded state."""

    status_code = status.HTTP_409_CONFLICT
