"""Error taxonomy shared by the order core and its HTTP surface.

Every error carries a stable ``code`` for API clients and the HTTP status the
FastAPI handler in :mod:`outlet_orders.main` renders it with.
"""

from typing import Any, Dict, Optional


class OrderCoreError(Exception):
    code = "ORDER_CORE_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context: Dict[str, Any] = context

    def to_detail(self, correlation_id: str) -> Dict[str, Any]:
        detail = {"code": self.code, "message": self.message, "correlationId": correlation_id}
        detail.update(self.context)
        return detail


class ValidationError(OrderCoreError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidArgument(ValidationError):
    code = "INVALID_ARGUMENT"


class InvalidProduct(ValidationError):
    code = "INVALID_PRODUCT"


class NotFound(OrderCoreError):
    code = "NOT_FOUND"
    status_code = 404


class NoOutletAvailable(NotFound):
    code = "NO_OUTLET_AVAILABLE"


class InvalidState(OrderCoreError):
    code = "INVALID_STATE"
    status_code = 409


class AlreadyInitiated(InvalidState):
    code = "ALREADY_INITIATED"


class Expired(OrderCoreError):
    code = "ORDER_EXPIRED"
    status_code = 410


class ProviderError(OrderCoreError):
    code = "PROVIDER_ERROR"
    status_code = 502


class InternalError(OrderCoreError):
    code = "INTERNAL_ERROR"
    status_code = 500
