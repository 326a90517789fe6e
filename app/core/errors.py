from __future__ import annotations


class DomainError(Exception):
    """Base for every error the engine reports to its caller.

    `reason` is a stable machine-readable code; the message is for humans.
    """

    status_code = 400
    reason = "Error"

    def __init__(self, message: str | None = None, *, reason: str | None = None):
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(DomainError):
    status_code = 422
    reason = "ValidationError"


class NotFoundError(DomainError):
    status_code = 404
    reason = "NotFound"


class BusinessRuleError(DomainError):
    status_code = 400
    reason = "BusinessRule"


class ConflictError(BusinessRuleError):
    status_code = 409
    reason = "Conflict"


class PermissionDenied(DomainError):
    status_code = 403
    reason = "Forbidden"


class GatewayError(DomainError):
    """Payment processor failure, message passed through verbatim."""

    status_code = 502
    reason = "GatewayError"
