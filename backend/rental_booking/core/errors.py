"""
Domain error taxonomy.

Services raise these; the exception handler registered in main.py turns
them into structured JSON responses. Anything not derived from AppError
is an unexpected failure and surfaces as a 500.
"""

from typing import Optional


class AppError(Exception):
    status_code = 500
    code = "server_error"

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class BadRequestError(AppError):
    status_code = 400
    code = "bad_request"


class UnauthorizedError(AppError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class InvalidTransitionError(ConflictError):
    """Raised when a booking status change is not in the transition table."""

    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition: {from_status} -> {to_status}")


class SlotNotFoundError(NotFoundError):
    code = "slot_not_found"

    def __init__(self, slot_id: str):
        self.slot_id = slot_id
        super().__init__("Delivery slot not found or no longer available")


class SlotFullError(ConflictError):
    code = "slot_full"

    def __init__(self, slot_id: str):
        self.slot_id = slot_id
        super().__init__("This delivery window is full. Please pick another.")


class ValidationFailedError(AppError):
    status_code = 422
    code = "validation_failed"

    def __init__(self, errors: dict[str, list[str]], message: str = "Validation failed"):
        self.errors = errors
        super().__init__(message)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "errors": self.errors}


class RateLimitedError(AppError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__("Too many requests. Please try again later.")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "retry_after": self.retry_after_seconds}


class ServerError(AppError):
    status_code = 500
    code = "server_error"


class TransientError(ServerError):
    """Retries were exhausted on a conflicting transaction; the caller may try again."""

    status_code = 503
    code = "transient_conflict"
