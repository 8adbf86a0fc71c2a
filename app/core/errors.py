"""
Typed errors for the order lifecycle.

Every error carries a stable ``kind`` and an HTTP ``status_code`` so the API
layer can render it without knowing the individual classes. Ownership
failures are reported as NotFoundError so callers cannot discover other
actors' orders.
"""
from typing import Optional, Any, Dict
import uuid


class OrderWorkflowError(Exception):
    """Base class for expected, caller-recoverable workflow failures."""
    kind: str = "ORDER_WORKFLOW_ERROR"
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "error": self.message}


class NotFoundError(OrderWorkflowError):
    kind = "NOT_FOUND"
    status_code = 404


class InvalidTransitionError(OrderWorkflowError):
    kind = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.current_status is not None:
            data["current_status"] = self.current_status
        return data


class InvalidOtpError(OrderWorkflowError):
    kind = "INVALID_OTP"
    status_code = 400


class OtpAttemptsExceededError(InvalidOtpError):
    kind = "OTP_ATTEMPTS_EXCEEDED"
    status_code = 429


class InsufficientStockError(OrderWorkflowError):
    kind = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, product_id: uuid.UUID, product_name: str):
        super().__init__(f"{product_name} is out of stock")
        self.product_id = product_id
        self.product_name = product_name

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["product_id"] = str(self.product_id)
        data["product_name"] = self.product_name
        return data


class DuplicateActiveReturnError(OrderWorkflowError):
    kind = "DUPLICATE_ACTIVE_RETURN"
    status_code = 409


class ReturnWindowExpiredError(OrderWorkflowError):
    kind = "RETURN_WINDOW_EXPIRED"
    status_code = 422


class ItemNotReturnableError(OrderWorkflowError):
    kind = "ITEM_NOT_RETURNABLE"
    status_code = 422


class OrderNotDeliveredError(OrderWorkflowError):
    kind = "ORDER_NOT_DELIVERED"
    status_code = 422


class OrderValidationError(OrderWorkflowError):
    kind = "VALIDATION_ERROR"
    status_code = 400


class RiderAtCapacityError(OrderWorkflowError):
    kind = "RIDER_AT_CAPACITY"
    status_code = 409
