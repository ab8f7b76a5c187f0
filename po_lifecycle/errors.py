"""
Typed lifecycle errors.

Every failure the engine reports is a LifecycleError carrying a stable
machine code and the HTTP status the API layer maps it to. The exception
handler in main.py renders them as {"error": {"code": ..., "message": ...}}.
"""

from typing import Optional


class LifecycleError(Exception):
    code = "LIFECYCLE_ERROR"
    http_status = 400

    def __init__(self, message: str, code: Optional[str] = None, **details):
        self.message = message
        if code:
            self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LifecycleError):
    code = "VALIDATION_ERROR"
    http_status = 422


class ConfigurationError(LifecycleError):
    code = "CONFIGURATION_ERROR"
    http_status = 422


class NotFoundError(LifecycleError):
    code = "NOT_FOUND"
    http_status = 404


class NotAuthorizedError(LifecycleError):
    code = "NOT_AUTHORIZED"
    http_status = 403


class IllegalTransitionError(LifecycleError):
    code = "ILLEGAL_TRANSITION"
    http_status = 409

    def __init__(self, current_state: str, trigger: str, message: Optional[str] = None):
        self.current_state = current_state
        self.trigger = trigger
        super().__init__(
            message or f"Cannot apply '{trigger}' to a purchase order in '{current_state}' status",
            current_state=current_state,
            trigger=trigger,
        )


class InvalidStateError(IllegalTransitionError):
    code = "INVALID_STATE"


class OverReceiptError(LifecycleError):
    code = "OVER_RECEIPT"
    http_status = 409


class AlreadyResolvedError(LifecycleError):
    code = "APPROVAL_ALREADY_RESOLVED"
    http_status = 409


class TokenInvalidError(LifecycleError):
    code = "VENDOR_TOKEN_INVALID"
    http_status = 410
