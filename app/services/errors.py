"""Domain error taxonomy.

Services raise these; the single exception handler registered in
app.main turns them into ``{"detail": ..., "code": ...}`` responses.
Each class carries its HTTP status so routers never map errors by hand.
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code = 400
    code = "SERVICE_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(ServiceError):
    """Bad input.  Raised before any side effect."""

    status_code = 422
    code = "VALIDATION_ERROR"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class PermissionDeniedError(ServiceError):
    status_code = 403
    code = "PERMISSION_DENIED"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"


class InsufficientBalanceError(ConflictError):
    code = "INSUFFICIENT_BALANCE"


class GatewayError(ServiceError):
    """The payment provider was unreachable or answered with an error.

    ``message`` is safe to show to end users; provider details go to
    ``internal_code`` and the logs only.
    """

    status_code = 502
    code = "GATEWAY_ERROR"

    def __init__(
        self,
        message: str = "Payment gateway is temporarily unavailable, please retry",
        *,
        internal_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.internal_code = internal_code


class GatewayRejectedError(GatewayError):
    """The provider answered, but with a non-success status code."""

    code = "GATEWAY_REJECTED"

    def __init__(self, message: str, *, gateway_code: int) -> None:
        super().__init__(message, internal_code=str(gateway_code))
        self.gateway_code = gateway_code
